# src/models/poll.py

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, func
from src.db import Base


class Poll(Base):
    __tablename__ = "polls"

    id = Column(Integer, primary_key=True, index=True)
    group_id = Column(Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    question = Column(String(300), nullable=False)
    created_at = Column(DateTime, nullable=False, default=func.now())

    def __repr__(self):
        return f"<Poll(id={self.id}, group_id={self.group_id})>"
