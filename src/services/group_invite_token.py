# src/services/group_invite_token.py

from __future__ import annotations

import os
import re
import secrets
from typing import Optional

# 24 байта энтропии → 32 символа base64url
TOKEN_BYTES = int(os.environ.get("GROUP_INVITE_TOKEN_BYTES") or 24)

_TOKEN_RE = re.compile(r"^[A-Za-z0-9_-]{16,64}$")


def generate_invite_token() -> str:
    """Случайный URL-safe токен из криптостойкого источника (secrets)."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def normalize_token(raw: Optional[str]) -> Optional[str]:
    """
    Токен может прийти из deep-link обёрнутым: join:<t>, g:<t>, token=<t>.
    Снимаем обёртки и пробелы; всё, что не похоже на токен, → None.
    """
    if not raw:
        return None
    t = raw.strip()
    for pref in ("join:", "g:", "token="):
        if t.lower().startswith(pref):
            t = t[len(pref):].strip()
    if not _TOKEN_RE.match(t):
        return None
    return t
