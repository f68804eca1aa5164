# src/schemas/user.py

from pydantic import BaseModel
from typing import Optional
from datetime import datetime


class UserOut(BaseModel):
    id: int
    telegram_id: int
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    name: Optional[str] = None
    photo_url: Optional[str] = None
    language_code: Optional[str] = None
    allows_write_to_pm: Optional[bool] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class UserShortOut(BaseModel):
    """Пользователь в составе группы: без служебных полей профиля."""
    id: int
    username: Optional[str] = None
    name: Optional[str] = None
    photo_url: Optional[str] = None

    class Config:
        from_attributes = True
