from __future__ import annotations

from prflow.infrastructure.repositories.base import BaseRepository


class SupplierSelectionRepository(BaseRepository):
    def create(
        self,
        db,
        *,
        purchase_request_id: int,
        quotation_id: int,
        buyer_leader_id: int,
        selection_reason: str,
        over_budget_reason: str | None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO supplier_selections (
                purchase_request_id, quotation_id, buyer_leader_id, selection_reason, over_budget_reason, tenant_id
            )
            VALUES (?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (purchase_request_id, quotation_id, buyer_leader_id, selection_reason, over_budget_reason, self.tenant_id),
        )
        return self.row_id(cursor)

    def get_by_quotation(self, db, quotation_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT *
            FROM supplier_selections
            WHERE quotation_id = ? AND tenant_id = ?
            LIMIT 1
            """,
            (quotation_id, self.tenant_id),
        ).fetchone()
        return self.row_to_dict(row)

    def list_for_request(self, db, purchase_request_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT id, purchase_request_id, quotation_id, buyer_leader_id, selection_reason, over_budget_reason, created_at
            FROM supplier_selections
            WHERE purchase_request_id = ? AND tenant_id = ?
            ORDER BY id
            """,
            (purchase_request_id, self.tenant_id),
        ).fetchall()
        return self.rows_to_dicts(rows)
