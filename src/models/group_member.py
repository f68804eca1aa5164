# src/models/group_member.py
# Модель участника группы + уникальность (group_id, user_id) + роль и личные настройки

from sqlalchemy import (
    Column,
    Integer,
    Boolean,
    ForeignKey,
    UniqueConstraint,
    DateTime,
    Enum,
    Index,
    JSON,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from ..db import Base
from ..services.permissions import GroupRole


class GroupMember(Base):
    __tablename__ = "group_members"

    id = Column(Integer, primary_key=True, index=True)
    group_id = Column(Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    role = Column(
        Enum(GroupRole, name="group_member_role"),
        nullable=False,
        default=GroupRole.member,
        server_default=text("'member'"),
        comment="Роль в группе: owner|moderator|member",
    )
    joined_at = Column(DateTime, nullable=False, default=func.now())
    is_pinned = Column(Boolean, nullable=False, default=False, server_default=text("false"))

    # {"ASSIGNMENT": true, "MENTION": true, "GROUP": true, "REMINDER": true, "POLL": true}
    notification_preferences = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict)

    __table_args__ = (
        UniqueConstraint("group_id", "user_id", name="uq_group_members_group_user"),
        Index("ix_group_members_user_pinned", "user_id", "is_pinned"),
    )

    group = relationship("Group", back_populates="members")
    user = relationship("User")
