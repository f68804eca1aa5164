# src/utils/telegram_dep.py
"""
Авторизация через Telegram WebApp initData.
- validate_and_sync_user: валидация initData + ленивое обновление полей пользователя в БД
- get_current_telegram_user: FastAPI-зависимость (не создаёт пользователя)
- get_current_telegram_user_or_create: то же, но заводит пользователя при первом входе
  (новичок приходит по инвайт-ссылке)
"""

import logging
import os
from functools import lru_cache
from typing import Optional

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session
from starlette import status
from telegram_webapp_auth.auth import TelegramAuthenticator, generate_secret_key

from src.db import get_db
from src.models.user import User
from src.utils.user import get_display_name

log = logging.getLogger(__name__)

SUPPORTED_LANGS = {"ru", "en", "es"}


@lru_cache(maxsize=1)
def get_authenticator() -> TelegramAuthenticator:
    """Аутентификатор создаётся при первом запросе: без токена бота приложение стартует, но не авторизует."""
    token = os.environ.get("TELEGRAM_BOT_TOKEN")
    if not token:
        raise RuntimeError("TELEGRAM_BOT_TOKEN is not set")
    return TelegramAuthenticator(generate_secret_key(token))


def _unauthorized(code: str, message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail={"code": code, "message": message})


def _normalize_lang(code: Optional[str]) -> str:
    """Код языка схлопываем до SUPPORTED_LANGS; нет языка → 'en'."""
    if not code:
        return "en"
    c = code.lower().split("-")[0]
    return c if c in SUPPORTED_LANGS else "en"


def _get_init_data_from_request(request: Request, body: Optional[dict]) -> Optional[str]:
    """
    initData ищем:
      - в JSON body (ключ 'initData')
      - в заголовке 'x-telegram-initdata'
      - в query (?init_data=...)
    """
    if body and isinstance(body, dict):
        v = body.get("initData")
        if isinstance(v, str) and v.strip():
            return v

    header_v = request.headers.get("x-telegram-initdata")
    if header_v:
        return header_v

    return request.query_params.get("init_data") or None


def _apply_user_fields_from_tg(u: User, tg_user) -> bool:
    """Копируем в User поля Telegram-профиля. True: если что-то изменилось."""
    fields = {
        "first_name": getattr(tg_user, "first_name", None),
        "last_name": getattr(tg_user, "last_name", None),
        "username": getattr(tg_user, "username", None),
        "photo_url": getattr(tg_user, "photo_url", None),
        "language_code": _normalize_lang(getattr(tg_user, "language_code", None)),
        "allows_write_to_pm": getattr(tg_user, "allows_write_to_pm", u.allows_write_to_pm),
    }
    fields["name"] = get_display_name(
        first_name=fields["first_name"],
        last_name=fields["last_name"],
        username=fields["username"],
        telegram_id=u.telegram_id,
    )

    changed = False
    for key, value in fields.items():
        if getattr(u, key) != value:
            setattr(u, key, value)
            changed = True
    return changed


def validate_and_sync_user(init_data: str, db: Session, *, create_if_missing: bool) -> User:
    """Валидирует initData, находит/создаёт пользователя и лениво обновляет его поля."""
    if not init_data:
        raise _unauthorized("init_data_required", "initData is required")

    try:
        result = get_authenticator().validate(init_data)
    except RuntimeError:
        raise
    except Exception as e:
        log.warning("initData rejected: %s", e)
        raise _unauthorized("auth_failed", "Invalid initData")

    tg_user = result.user
    user: Optional[User] = db.query(User).filter_by(telegram_id=tg_user.id).first()

    if not user:
        if not create_if_missing:
            raise _unauthorized("user_not_registered", "User is not registered")
        user = User(telegram_id=tg_user.id, allows_write_to_pm=True)
        _apply_user_fields_from_tg(user, tg_user)
        db.add(user)
        db.commit()
        db.refresh(user)
        log.info("user %s registered (telegram_id=%s)", user.id, user.telegram_id)
        return user

    if _apply_user_fields_from_tg(user, tg_user):
        db.commit()
        db.refresh(user)

    return user


async def _init_data(request: Request) -> Optional[str]:
    body = None
    if request.method in {"POST", "PUT", "PATCH"}:
        try:
            body = await request.json()
        except ValueError:
            body = None
    return _get_init_data_from_request(request, body)


async def get_current_telegram_user(request: Request, db: Session = Depends(get_db)) -> User:
    """Зависимость для защищённых ручек: только существующий пользователь."""
    init_data = await _init_data(request)
    if not init_data:
        raise _unauthorized(
            "init_data_required",
            "initData required (JSON 'initData', header 'x-telegram-initdata' or '?init_data=...')",
        )
    return validate_and_sync_user(init_data, db, create_if_missing=False)


async def get_current_telegram_user_or_create(request: Request, db: Session = Depends(get_db)) -> User:
    """Как get_current_telegram_user, но с create_if_missing=True (акцепт инвайта новичком)."""
    init_data = await _init_data(request)
    if not init_data:
        raise _unauthorized(
            "init_data_required",
            "initData required (JSON 'initData', header 'x-telegram-initdata' or '?init_data=...')",
        )
    return validate_and_sync_user(init_data, db, create_if_missing=True)
