# src/services/errors.py
# Ошибки сервисного слоя. Роутеры переводят их в HTTPException через
# src.utils.groups.http_error: сервисы про HTTP ничего не знают.

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

log = logging.getLogger(__name__)


class ServiceError(Exception):
    kind = "Internal"
    status_code = 500

    def __init__(self, code: str, message: str, extra: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.code = code
        self.message = message
        self.extra = extra or {}

    def as_detail(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "kind": self.kind} | self.extra


class NotFoundError(ServiceError):
    kind = "NotFound"
    status_code = 404


class ForbiddenError(ServiceError):
    kind = "Forbidden"
    status_code = 403


class ConflictError(ServiceError):
    kind = "Conflict"
    status_code = 409


class GoneError(ServiceError):
    kind = "Gone"
    status_code = 410


class ValidationError(ServiceError):
    kind = "Validation"
    status_code = 422


class InternalError(ServiceError):
    kind = "Internal"
    status_code = 500


class PartialDeletionError(InternalError):
    """Каскад отработал не полностью: дети удалены, а сама группа: нет."""

    def __init__(self, counts: Dict[str, int]):
        super().__init__(
            "group_delete_incomplete",
            "Group content was deleted but the group record was not",
            extra={"deleted": dict(counts)},
        )
        self.counts = dict(counts)


@contextmanager
def unit_of_work(db: Session, *, error_code: str = "store_error"):
    """
    Обёртка над мутацией: при любой ошибке: rollback.
    Ошибки хранилища наружу не светим: логируем и отдаём InternalError(error_code).
    """
    try:
        yield db
    except SQLAlchemyError as e:
        db.rollback()
        log.exception("store error (%s)", error_code)
        raise InternalError(error_code, "Internal storage error") from e
    except Exception:
        db.rollback()
        raise
