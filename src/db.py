# src/db.py
# Инициализация SQLAlchemy: движок, сессии, Base и явные импорты моделей.

from __future__ import annotations

import os
from dotenv import load_dotenv
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

load_dotenv()
DATABASE_URL = os.getenv("DATABASE_URL")
if not DATABASE_URL:
    raise RuntimeError("DATABASE_URL is not set")

if DATABASE_URL.startswith("sqlite"):
    # SQLite (тесты/локальная разработка): пул по умолчанию, одно соединение на поток
    engine = create_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False},
        pool_pre_ping=True,
    )
else:
    engine = create_engine(
        DATABASE_URL,
        pool_size=20,
        max_overflow=20,
        pool_timeout=60,
        pool_recycle=1800,
        pool_pre_ping=True,
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

from src.models import (
    user,
    group,
    group_member,
    group_invite,
    shopping_list,
    shopping_list_item,
    note,
    poll,
    event,
    notification,
)

def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
