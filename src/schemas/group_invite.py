# src/schemas/group_invite.py

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from .group import GroupOut


class GroupInviteCreate(BaseModel):
    max_uses: Optional[int] = Field(None, description="Лимит использований; -1: без лимита; по умолчанию 1")


class GroupInviteOut(BaseModel):
    token: str
    expires_at: datetime
    deep_link: Optional[str] = None


class InviteGroupSummary(BaseModel):
    id: Optional[int] = None
    name: str
    member_count: int


class InviteLookupOut(BaseModel):
    status: str = Field(..., description="valid|expired|exhausted")
    group: InviteGroupSummary
    inviter_username: Optional[str] = None
    max_uses: Optional[int] = None
    uses_count: Optional[int] = None
    expires_at: Optional[datetime] = None


class GroupInviteAccept(BaseModel):
    token: Optional[str] = None


class GroupInviteAcceptOut(BaseModel):
    joined: bool = Field(..., description="False: пользователь уже был участником")
    group: GroupOut
