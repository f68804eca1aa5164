# src/models/group_invite.py

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Index, func, text
from sqlalchemy.orm import relationship
from src.db import Base

# max_uses = -1: инвайт без ограничения числа использований
UNLIMITED_USES = -1


class GroupInvite(Base):
    """
    Инвайт-приглашение в группу.
    Токен случайный (secrets), живёт ограниченное время (expires_at)
    и ограниченное число использований (max_uses / uses_count).
    Исчерпанный инвайт удаляется при очередном обращении.
    """
    __tablename__ = "group_invites"

    id = Column(Integer, primary_key=True, index=True)
    group_id = Column(Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True)
    created_by = Column(Integer, ForeignKey("users.id"), nullable=False)
    token = Column(String(64), unique=True, index=True, nullable=False)
    created_at = Column(DateTime, nullable=False, default=func.now())
    expires_at = Column(DateTime, nullable=False)
    max_uses = Column(Integer, nullable=False, default=1, server_default=text("1"))
    uses_count = Column(Integer, nullable=False, default=0, server_default=text("0"))

    group = relationship("Group", foreign_keys=[group_id])
    creator = relationship("User", foreign_keys=[created_by])

    __table_args__ = (
        Index("ix_group_invites_expires_at", "expires_at"),
    )

    @property
    def is_unlimited(self) -> bool:
        return self.max_uses == UNLIMITED_USES

    @property
    def is_exhausted(self) -> bool:
        return not self.is_unlimited and self.uses_count >= self.max_uses

    def is_expired(self, now) -> bool:
        return self.expires_at <= now

    def __repr__(self):
        return (
            f"<GroupInvite(id={self.id}, group_id={self.group_id}, "
            f"uses={self.uses_count}/{self.max_uses}, expires_at={self.expires_at})>"
        )
