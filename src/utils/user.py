# src/utils/user.py

from typing import Optional


def get_display_name(
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    username: Optional[str] = None,
    telegram_id: Optional[int] = None,
) -> str:
    """
    Отображаемое имя участника: «Имя Фамилия» → username → Telegram ID → "".
    """
    name = " ".join(part.strip() for part in (first_name, last_name) if part and part.strip())
    if name:
        return name
    if username:
        return username
    return str(telegram_id) if telegram_id is not None else ""
