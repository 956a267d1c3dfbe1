from __future__ import annotations

import logging

from prflow.contexts.audit.domain.sink import AuditEntry, AuditSink
from prflow.infrastructure.repositories.base import BaseRepository


class SqlAuditSink(BaseRepository, AuditSink):
    def __init__(self, *, tenant_id: str | None = None) -> None:
        super().__init__(tenant_id=tenant_id)
        self._logger = logging.getLogger("prflow")

    def record(self, db, entry: AuditEntry) -> None:
        try:
            with db.savepoint():
                db.execute(
                    """
                    INSERT INTO audit_logs (table_name, record_id, action, user_id, old_data, new_data, tenant_id)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        entry.table_name,
                        int(entry.record_id),
                        entry.action,
                        entry.user_id,
                        self.dump_json(entry.old_data),
                        self.dump_json(entry.new_data),
                        self.tenant_id,
                    ),
                )
        except Exception:  # noqa: BLE001
            self._logger.exception(
                "audit_write_failed",
                extra={"table_name": entry.table_name, "record_id": entry.record_id, "audit_action": entry.action},
            )

    def list_for_record(self, db, table_name: str, record_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT id, table_name, record_id, action, user_id, old_data, new_data, created_at
            FROM audit_logs
            WHERE table_name = ? AND record_id = ? AND tenant_id = ?
            ORDER BY id
            """,
            (table_name, record_id, self.tenant_id),
        ).fetchall()
        return self.rows_to_dicts(rows)
