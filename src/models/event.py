# src/models/event.py
from sqlalchemy import Column, Integer, String, DateTime, JSON, func, UniqueConstraint, Index
from sqlalchemy.dialects.postgresql import JSONB
from src.db import Base

class Event(Base):
    """Лента активности группы (append-only)."""
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, index=True)

    # кто совершил действие
    actor_id = Column(Integer, nullable=False)

    # к какой группе относится; FK нет: события переживают удалённую группу
    group_id = Column(Integer, nullable=True)

    # над кем действие (кик, смена роли): может быть NULL
    target_user_id = Column(Integer, nullable=True)

    # тип события
    type = Column(String(64), nullable=False)

    # произвольные данные события
    data = Column(JSON().with_variant(JSONB, "postgresql"), nullable=True, default=dict)

    created_at = Column(DateTime, nullable=False, server_default=func.now())

    # идемпотентный ключ, чтобы не записывать дубль при ретраях
    idempotency_key = Column(String(64), nullable=True)

    __table_args__ = (
        UniqueConstraint("idempotency_key", name="uq_events_idempotency_key"),
        Index("ix_events_group_created", "group_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<Event id={self.id} type={self.type} actor={self.actor_id} group={self.group_id}>"
