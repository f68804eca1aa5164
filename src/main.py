# src/main.py
# Главная точка входа FastAPI для Sharelist.

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

from src.db import engine  # noqa: E402  инициализация БД/пула соединений

from src.routers.auth import router as auth_router  # noqa: E402
from src.routers.users import router as users_router  # noqa: E402
from src.routers.group_invites import router as group_invites_router  # noqa: E402
from src.routers.groups import router as groups_router  # noqa: E402
from src.routers.group_members import router as group_members_router  # noqa: E402
from src.routers.events import router as events_router  # noqa: E402
from src.routers.notifications import router as notifications_router  # noqa: E402

DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:5173",
    "http://127.0.0.1:3000",
    "http://127.0.0.1:5173",
]


def _cors_origins() -> list:
    raw = os.getenv("CORS_ORIGINS")
    if not raw:
        return DEFAULT_CORS_ORIGINS
    return [o.strip() for o in raw.split(",") if o.strip()]


app = FastAPI(
    title="Sharelist Backend",
    description="Backend для Sharelist: авторизация через Telegram, группы, участники и роли, инвайты.",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# инвайты раньше групп: /api/groups/invite/... не должен уйти в /api/groups/{group_id}
app.include_router(auth_router,          prefix="/api/auth",          tags=["Авторизация"])
app.include_router(users_router,         prefix="/api/users",         tags=["Пользователи"])
app.include_router(group_invites_router, prefix="/api")
app.include_router(groups_router,        prefix="/api/groups",        tags=["Группы"])
app.include_router(group_members_router, prefix="/api/group-members", tags=["Участники групп"])
app.include_router(events_router,        prefix="/api/events",        tags=["События"])
app.include_router(notifications_router, prefix="/api/notifications", tags=["Уведомления"])


@app.get("/")
def root():
    """Простой healthcheck."""
    return {"message": "Sharelist backend работает!", "docs": "/docs"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("src.main:app", host="0.0.0.0", port=8000, reload=False)
