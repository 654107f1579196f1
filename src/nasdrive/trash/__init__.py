"""Soft-delete support: quarantine, restore, purge and expiry."""

from .models import TrashEntry
from .service import DEFAULT_RETENTION, QUARANTINE_DIRNAME, TrashService

__all__ = ["TrashEntry", "TrashService", "DEFAULT_RETENTION", "QUARANTINE_DIRNAME"]
