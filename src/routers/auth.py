# src/routers/auth.py
"""
Роутер авторизации через Telegram WebApp.
Валидирует initData, создаёт (если нет) или лениво обновляет пользователя и возвращает его.
"""

from fastapi import APIRouter, Body, Depends, HTTPException
from sqlalchemy.orm import Session
from starlette import status

from src.db import get_db
from src.models.user import User
from src.schemas.user import UserOut
from src.utils.telegram_dep import validate_and_sync_user

router = APIRouter()


@router.post("/telegram", response_model=UserOut)
def auth_via_telegram(payload: dict = Body(...), db: Session = Depends(get_db)) -> User:
    """
    Точка входа фронта (/api/auth/telegram).
    JSON: { "initData": "<строка из Telegram.WebApp.initData>" }
    """
    init_data = payload.get("initData")
    if not isinstance(init_data, str) or not init_data.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "init_data_required", "message": "initData is required"},
        )

    # первый вход: регистрация, дальше: ленивое обновление профиля
    return validate_and_sync_user(init_data, db, create_if_missing=True)
