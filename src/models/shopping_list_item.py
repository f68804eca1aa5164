# src/models/shopping_list_item.py

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, func
from sqlalchemy.orm import relationship
from src.db import Base


class ShoppingListItem(Base):
    __tablename__ = "shopping_list_items"

    id = Column(Integer, primary_key=True, index=True)
    list_id = Column(Integer, ForeignKey("shopping_lists.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    name = Column(String(200), nullable=False)
    created_at = Column(DateTime, nullable=False, default=func.now())

    list = relationship("ShoppingList", back_populates="items")

    def __repr__(self):
        return f"<ShoppingListItem(id={self.id}, list_id={self.list_id}, name={self.name!r})>"
