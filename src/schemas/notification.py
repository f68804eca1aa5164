# src/schemas/notification.py
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel


class NotificationOut(BaseModel):
    id: int
    recipient_id: int
    author_id: Optional[int] = None
    group_id: Optional[int] = None
    category: str
    message: str
    data: Optional[Dict[str, Any]] = None
    is_read: bool
    created_at: datetime

    class Config:
        from_attributes = True


class NotificationsAffectedOut(BaseModel):
    count: int
