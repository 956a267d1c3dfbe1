from __future__ import annotations

from typing import Any

from prflow.infrastructure.repositories.base import BaseRepository


class NotificationRepository(BaseRepository):
    def find_unread(self, db, *, user_id: int, notification_type: str, related_id: int | None, related_type: str | None) -> dict | None:
        row = db.execute(
            """
            SELECT *
            FROM notifications
            WHERE tenant_id = ? AND user_id = ? AND type = ? AND related_id = ? AND related_type = ?
              AND status = 'UNREAD'
            ORDER BY id
            LIMIT 1
            """,
            (self.tenant_id, user_id, notification_type, related_id, related_type),
        ).fetchone()
        return self.row_to_dict(row)

    def create(
        self,
        db,
        *,
        user_id: int,
        role: str | None,
        notification_type: str,
        title: str,
        message: str,
        related_id: int | None,
        related_type: str | None,
        metadata: dict[str, Any] | None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO notifications (
                user_id, role, type, title, message, related_id, related_type, metadata_json, status, tenant_id
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'UNREAD', ?)
            RETURNING id
            """,
            (
                user_id,
                role,
                notification_type,
                title,
                message,
                related_id,
                related_type,
                self.dump_json(metadata or {}),
                self.tenant_id,
            ),
        )
        return self.row_id(cursor)

    def get_by_id(self, db, notification_id: int) -> dict | None:
        row = db.execute(
            "SELECT * FROM notifications WHERE id = ? AND tenant_id = ? LIMIT 1",
            (notification_id, self.tenant_id),
        ).fetchone()
        return self.row_to_dict(row)

    def mark_read(self, db, notification_id: int, *, user_id: int) -> bool:
        cursor = db.execute(
            """
            UPDATE notifications
            SET status = 'READ', read_at = CURRENT_TIMESTAMP
            WHERE id = ? AND user_id = ? AND tenant_id = ? AND status = 'UNREAD'
            """,
            (notification_id, user_id, self.tenant_id),
        )
        return int(cursor.rowcount or 0) == 1

    def resolve(self, db, *, related_id: int, related_type: str, notification_type: str) -> int:
        cursor = db.execute(
            """
            UPDATE notifications
            SET status = 'RESOLVED', resolved_at = CURRENT_TIMESTAMP
            WHERE tenant_id = ? AND related_id = ? AND related_type = ? AND type = ?
              AND status IN ('UNREAD', 'READ')
            """,
            (self.tenant_id, related_id, related_type, notification_type),
        )
        return int(cursor.rowcount or 0)

    def count_unread(self, db, *, user_id: int) -> int:
        row = db.execute(
            """
            SELECT COUNT(*) AS total
            FROM notifications
            WHERE tenant_id = ? AND user_id = ? AND status = 'UNREAD'
            """,
            (self.tenant_id, user_id),
        ).fetchone()
        return int(row["total"] if row else 0)

    def list_for_user(self, db, *, user_id: int, status: str | None = None, limit: int = 50) -> list[dict]:
        params: list[Any] = [self.tenant_id, user_id]
        status_clause = ""
        if status:
            status_clause = " AND status = ?"
            params.append(status)
        params.append(int(limit))
        rows = db.execute(
            f"""
            SELECT id, user_id, role, type, title, message, related_id, related_type, metadata_json,
                   status, read_at, resolved_at, created_at
            FROM notifications
            WHERE tenant_id = ? AND user_id = ?{status_clause}
            ORDER BY id DESC
            LIMIT ?
            """,
            tuple(params),
        ).fetchall()
        items = self.rows_to_dicts(rows)
        for item in items:
            item["metadata"] = self.load_json(item.pop("metadata_json", None), default={})
        return items
