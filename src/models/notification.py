# src/models/notification.py

from sqlalchemy import Column, Integer, String, Boolean, DateTime, JSON, Index, func, text
from sqlalchemy.dialects.postgresql import JSONB
from src.db import Base


class Notification(Base):
    """
    Уведомление конкретному получателю. Доставку (push/бот) делает внешний сервис,
    здесь: только запись «что и кому».
    """
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    recipient_id = Column(Integer, nullable=False, index=True)
    author_id = Column(Integer, nullable=True)
    group_id = Column(Integer, nullable=True)
    category = Column(String(32), nullable=False)  # ASSIGNMENT|MENTION|GROUP|REMINDER|POLL
    message = Column(String(500), nullable=False)
    data = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True, default=dict)
    is_read = Column(Boolean, nullable=False, default=False, server_default=text("false"))
    created_at = Column(DateTime, nullable=False, server_default=func.now())

    __table_args__ = (
        Index("ix_notifications_recipient_unread", "recipient_id", "is_read"),
    )

    def __repr__(self):
        return f"<Notification(id={self.id}, recipient_id={self.recipient_id}, category={self.category})>"
