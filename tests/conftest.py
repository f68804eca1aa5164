# tests/conftest.py
# Отдельная SQLite-база в temp-каталоге. Файл, а не :memory:: чтобы две сессии
# видели одни и те же данные (сценарии с «устаревшим» чтением).

import os
import tempfile
from itertools import count

_TMP_DIR = tempfile.mkdtemp(prefix="sharelist-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'test.db')}"
os.environ.setdefault("TELEGRAM_BOT_TOKEN", "123456:TEST-TOKEN")

import pytest  # noqa: E402
from fastapi import Depends, HTTPException, Request  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from src.db import Base, SessionLocal, engine, get_db  # noqa: E402
from src.models.user import User  # noqa: E402

_telegram_ids = count(1000)


@pytest.fixture(autouse=True)
def schema():
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_user(db):
    def _make(username=None):
        tg_id = next(_telegram_ids)
        user = User(
            telegram_id=tg_id,
            username=username or f"user{tg_id}",
            first_name=(username or f"user{tg_id}").capitalize(),
            name=(username or f"user{tg_id}").capitalize(),
            allows_write_to_pm=True,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


def _user_from_header(request: Request, db: Session = Depends(get_db)) -> User:
    """Вместо проверки initData: пользователь берётся из заголовка X-Test-User."""
    raw = request.headers.get("x-test-user")
    user = db.get(User, int(raw)) if raw else None
    if user is None:
        raise HTTPException(status_code=401, detail={"code": "init_data_required", "message": "no test user"})
    return user


@pytest.fixture
def client():
    from src.main import app
    from src.utils.telegram_dep import get_current_telegram_user, get_current_telegram_user_or_create

    app.dependency_overrides[get_current_telegram_user] = _user_from_header
    app.dependency_overrides[get_current_telegram_user_or_create] = _user_from_header
    try:
        with TestClient(app) as c:
            yield c
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def as_user():
    def _headers(user):
        return {"X-Test-User": str(user.id)}

    return _headers
