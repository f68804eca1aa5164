# src/routers/users.py
from fastapi import APIRouter, Depends

from src.models.user import User
from src.schemas.user import UserOut
from src.utils.telegram_dep import get_current_telegram_user

router = APIRouter()


@router.get("/me", response_model=UserOut)
def get_me(current_user: User = Depends(get_current_telegram_user)):
    """Текущий пользователь по Telegram WebApp initData."""
    return current_user
