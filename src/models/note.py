# src/models/note.py

from sqlalchemy import Column, Integer, String, Text, ForeignKey, DateTime, func
from src.db import Base


class Note(Base):
    __tablename__ = "notes"

    id = Column(Integer, primary_key=True, index=True)
    group_id = Column(Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    title = Column(String(200), nullable=False)
    body = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, nullable=False, default=func.now())

    def __repr__(self):
        return f"<Note(id={self.id}, group_id={self.group_id}, title={self.title!r})>"
