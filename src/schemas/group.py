# src/schemas/group.py
# -----------------------------------------------------------------------------
# СХЕМЫ Pydantic: Group
# -----------------------------------------------------------------------------

from __future__ import annotations

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .group_member import GroupMemberOut


class GroupCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=120, description="Название группы")
    # принимаем и пустую строку, и null: сервер приведёт к ""
    description: Optional[str] = Field(None, max_length=500, description="Описание группы (необязательно)")
    icon: Optional[str] = Field(None, max_length=64, description="Иконка (по умолчанию default-icon)")
    color: Optional[str] = Field(None, max_length=32, description="Цвет карточки (по умолчанию white)")


class GroupUpdate(BaseModel):
    """Частичное обновление: меняются только переданные поля."""
    name: Optional[str] = Field(None, max_length=120)
    description: Optional[str] = Field(None, max_length=500)
    icon: Optional[str] = Field(None, max_length=64)
    color: Optional[str] = Field(None, max_length=32)


class GroupOut(BaseModel):
    id: int = Field(..., description="ID группы")
    name: str = Field(..., description="Название группы")
    description: Optional[str] = Field(None, description="Описание группы")
    icon: str = Field(..., description="Иконка группы")
    color: str = Field(..., description="Цвет карточки")
    author_id: int = Field(..., description="ID создателя группы")
    created_at: datetime
    updated_at: datetime

    members: List[GroupMemberOut] = Field(default_factory=list, description="Состав группы")

    class Config:
        from_attributes = True


class GroupDeleteOut(BaseModel):
    group_id: int
    group_deleted: bool = True
    deleted: Dict[str, int] = Field(default_factory=dict, description="Сколько удалено по категориям")


class ContentDeleteOut(BaseModel):
    kind: str
    content_id: int
    deleted: Dict[str, int] = Field(default_factory=dict)
