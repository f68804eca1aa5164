# src/models/shopping_list.py
# Список покупок группы. Здесь только то, что нужно каскаду и модерации.

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, func
from sqlalchemy.orm import relationship
from src.db import Base


class ShoppingList(Base):
    __tablename__ = "shopping_lists"

    id = Column(Integer, primary_key=True, index=True)
    group_id = Column(Integer, ForeignKey("groups.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    name = Column(String(200), nullable=False)
    created_at = Column(DateTime, nullable=False, default=func.now())

    items = relationship("ShoppingListItem", back_populates="list", passive_deletes=True)

    def __repr__(self):
        return f"<ShoppingList(id={self.id}, group_id={self.group_id}, name={self.name!r})>"
