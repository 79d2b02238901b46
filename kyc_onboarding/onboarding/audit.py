"""Append-only record of merchant status transitions."""

import threading

from .models import AuditEntry


class AuditLog:
    """In-memory audit trail; entries are never modified or removed."""

    def __init__(self) -> None:
        self._entries: list[AuditEntry] = []
        self._lock = threading.Lock()

    def record(self, entry: AuditEntry) -> AuditEntry:
        with self._lock:
            self._entries.append(entry)
        return entry

    def for_merchant(self, merchant_id: str) -> list[AuditEntry]:
        """Entries for one merchant, oldest first."""
        with self._lock:
            return [e for e in self._entries if e.merchant_id == merchant_id]

    def entries(self) -> list[AuditEntry]:
        with self._lock:
            return list(self._entries)
