# src/schemas/group_member.py

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field

from src.services.permissions import GroupRole
from .user import UserShortOut


class GroupMemberCreate(BaseModel):
    group_id: int
    user_id: int


class GroupMemberOut(BaseModel):
    id: int
    group_id: int
    user_id: int
    role: GroupRole
    joined_at: datetime
    is_pinned: bool = False
    notification_preferences: Dict[str, bool] = Field(default_factory=dict)
    user: Optional[UserShortOut] = None

    class Config:
        from_attributes = True


class MemberRoleUpdate(BaseModel):
    # строка, а не GroupRole: неизвестную роль отклоняет сервис со своим кодом ошибки
    role: str = Field(..., description="owner|moderator|member")


class MyMembershipUpdate(BaseModel):
    is_pinned: Optional[bool] = Field(None, description="Закрепить группу в своём списке")
    notification_preferences: Optional[Dict[str, bool]] = Field(
        None, description="Категории уведомлений: ASSIGNMENT|MENTION|GROUP|REMINDER|POLL"
    )


class LeaveOut(BaseModel):
    group_id: int
    group_deleted: bool = False
    deleted: Dict[str, int] = Field(default_factory=dict)
