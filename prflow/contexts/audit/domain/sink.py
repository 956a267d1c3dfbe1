from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class AuditEntry:
    table_name: str
    record_id: int
    action: str
    user_id: int | None
    old_data: Dict[str, Any] | None = None
    new_data: Dict[str, Any] | None = None


class AuditSink(ABC):
    """Write-only compliance trail; a failed write never fails the caller."""

    @abstractmethod
    def record(self, db, entry: AuditEntry) -> None:
        raise NotImplementedError
