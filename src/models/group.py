# src/models/group.py
# -----------------------------------------------------------------------------
# МОДЕЛЬ: Group (SQLAlchemy)
# -----------------------------------------------------------------------------
# Группа владеет своим составом (GroupMember): участники не существуют
# вне группы. Пустая группа не хранится: последний выход/удаление каскадит
# удаление всей группы (см. src/services/groups.py).

from __future__ import annotations

from sqlalchemy import (
    Column,
    Integer,
    String,
    ForeignKey,
    DateTime,
    Index,
    func,
    text,
)
from sqlalchemy.orm import relationship

from ..db import Base

DEFAULT_ICON = "default-icon"
DEFAULT_COLOR = "white"


class Group(Base):
    __tablename__ = "groups"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(120), nullable=False, index=True)
    description = Column(String(500), nullable=False, default="", server_default=text("''"))

    icon = Column(
        String(64),
        nullable=False,
        default=DEFAULT_ICON,
        server_default=text("'default-icon'"),
        comment="Идентификатор иконки группы",
    )
    color = Column(
        String(32),
        nullable=False,
        default=DEFAULT_COLOR,
        server_default=text("'white'"),
        comment="Цвет карточки группы",
    )

    # создатель группы; роль owner живёт в group_members, здесь только история
    author_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    author = relationship("User")

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    # порядок вставки сохраняем через id участника
    members = relationship(
        "GroupMember",
        order_by="GroupMember.id",
        back_populates="group",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_groups_author_id", "author_id"),
        Index("ix_groups_updated_at", "updated_at"),
    )

    def __repr__(self):
        return f"<Group(id={self.id}, name={self.name!r})>"
