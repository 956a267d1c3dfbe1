from __future__ import annotations

from prflow.infrastructure.repositories.base import BaseRepository


class RfqRepository(BaseRepository):
    def create(
        self,
        db,
        *,
        rfq_number: str,
        purchase_request_id: int,
        buyer_id: int,
        status: str,
        notes: str | None,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO rfqs (rfq_number, purchase_request_id, buyer_id, status, notes, tenant_id)
            VALUES (?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (rfq_number, purchase_request_id, buyer_id, status, notes, self.tenant_id),
        )
        return self.row_id(cursor)

    def get_by_id(self, db, rfq_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT *
            FROM rfqs
            WHERE id = ? AND tenant_id = ? AND deleted_at IS NULL
            LIMIT 1
            """,
            (rfq_id, self.tenant_id),
        ).fetchone()
        return self.row_to_dict(row)

    def list_for_request(self, db, purchase_request_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT id, rfq_number, purchase_request_id, buyer_id, status, notes, sent_at, created_at
            FROM rfqs
            WHERE purchase_request_id = ? AND tenant_id = ? AND deleted_at IS NULL
            ORDER BY id
            """,
            (purchase_request_id, self.tenant_id),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_numbers_with_prefix(self, db, prefix: str) -> list[str]:
        rows = db.execute(
            """
            SELECT rfq_number
            FROM rfqs
            WHERE tenant_id = ? AND deleted_at IS NULL AND rfq_number LIKE ?
            """,
            (self.tenant_id, f"{prefix}%"),
        ).fetchall()
        return [str(row["rfq_number"]) for row in rows]

    def number_exists(self, db, rfq_number: str) -> bool:
        row = db.execute(
            """
            SELECT 1 AS found
            FROM rfqs
            WHERE tenant_id = ? AND rfq_number = ? AND deleted_at IS NULL
            LIMIT 1
            """,
            (self.tenant_id, rfq_number),
        ).fetchone()
        return bool(row)

    def compare_and_set_status(self, db, rfq_id: int, *, expected_status: str, new_status: str) -> bool:
        sent_clause = ", sent_at = CURRENT_TIMESTAMP" if new_status == "SENT" else ""
        cursor = db.execute(
            f"""
            UPDATE rfqs
            SET status = ?{sent_clause}, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND tenant_id = ? AND status = ?
            """,
            (new_status, rfq_id, self.tenant_id, expected_status),
        )
        return int(cursor.rowcount or 0) == 1
