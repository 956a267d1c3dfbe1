from __future__ import annotations

from prflow.infrastructure.repositories.base import BaseRepository


class ApprovalRepository(BaseRepository):
    def add(
        self,
        db,
        *,
        purchase_request_id: int,
        approver_id: int,
        tier: str,
        action: str,
        comment: str | None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO pr_approvals (purchase_request_id, approver_id, tier, action, comment, tenant_id)
            VALUES (?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (purchase_request_id, approver_id, tier, action, comment, self.tenant_id),
        )
        return self.row_id(cursor)

    def list_for_request(self, db, purchase_request_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT id, purchase_request_id, approver_id, tier, action, comment, created_at
            FROM pr_approvals
            WHERE purchase_request_id = ? AND tenant_id = ?
            ORDER BY id
            """,
            (purchase_request_id, self.tenant_id),
        ).fetchall()
        return self.rows_to_dicts(rows)
