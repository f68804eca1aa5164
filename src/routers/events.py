# src/routers/events.py
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from src.db import get_db
from src.models.user import User
from src.schemas.event import EventOut
from src.services.events import list_events_for_user
from src.utils.telegram_dep import get_current_telegram_user

router = APIRouter()


@router.get("/", response_model=List[EventOut])
def list_events(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_telegram_user),
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
    types: Optional[List[str]] = Query(None, description="Чипы (group|member|invite|content) или точные типы"),
    group_id: Optional[int] = Query(None, description="Только события этой группы"),
):
    """
    Лента активности текущего пользователя:
      - события, где я actor или target;
      - события групп, в которых я сейчас состою.
    """
    return list_events_for_user(
        db,
        current_user.id,
        group_id=group_id,
        types=types,
        limit=limit,
        offset=offset,
    )
