from __future__ import annotations

from typing import Any

from prflow.infrastructure.repositories.base import BaseRepository


class PurchaseRequestRepository(BaseRepository):
    def create(
        self,
        db,
        *,
        pr_number: str,
        requestor_id: int,
        department: str,
        branch_code: str | None,
        title: str | None,
        currency: str,
        tax_percent: float | None,
        declared_amount: float | None,
        notes: str | None,
        required_date: str | None,
        status: str,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO purchase_requests (
                pr_number, requestor_id, department, branch_code, title, currency,
                tax_percent, declared_amount, notes, required_date, status, tenant_id
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                pr_number,
                requestor_id,
                department,
                branch_code,
                title,
                currency,
                tax_percent,
                declared_amount,
                notes,
                required_date,
                status,
                self.tenant_id,
            ),
        )
        return self.row_id(cursor)

    def get_by_id(self, db, purchase_request_id: int, *, for_update: bool = False) -> dict | None:
        row = db.execute(
            f"""
            SELECT *
            FROM purchase_requests
            WHERE id = ? AND tenant_id = ? AND deleted_at IS NULL
            LIMIT 1{db.lock_clause() if for_update else ""}
            """,
            (purchase_request_id, self.tenant_id),
        ).fetchone()
        return self.row_to_dict(row)

    def update_fields(self, db, purchase_request_id: int, fields: dict[str, Any]) -> None:
        if not fields:
            return
        updates = [f"{key} = ?" for key in fields.keys()]
        params = list(fields.values())
        params.extend([purchase_request_id, self.tenant_id])
        db.execute(
            f"""
            UPDATE purchase_requests
            SET {", ".join(updates)}, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND tenant_id = ?
            """,
            tuple(params),
        )

    def compare_and_set_status(
        self,
        db,
        purchase_request_id: int,
        *,
        expected_status: str,
        new_status: str,
        fields: dict[str, Any] | None = None,
    ) -> bool:
        """Write ``new_status`` only if the row still holds ``expected_status``."""
        extra = dict(fields or {})
        updates = ["status = ?"] + [f"{key} = ?" for key in extra.keys()]
        params: list[Any] = [new_status, *extra.values(), purchase_request_id, self.tenant_id, expected_status]
        cursor = db.execute(
            f"""
            UPDATE purchase_requests
            SET {", ".join(updates)}, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND tenant_id = ? AND status = ? AND deleted_at IS NULL
            """,
            tuple(params),
        )
        return int(cursor.rowcount or 0) == 1

    def list_numbers_with_prefix(self, db, prefix: str) -> list[str]:
        rows = db.execute(
            """
            SELECT pr_number
            FROM purchase_requests
            WHERE tenant_id = ? AND deleted_at IS NULL AND pr_number LIKE ?
            """,
            (self.tenant_id, f"{prefix}%"),
        ).fetchall()
        return [str(row["pr_number"]) for row in rows]

    def number_exists(self, db, pr_number: str) -> bool:
        row = db.execute(
            """
            SELECT 1 AS found
            FROM purchase_requests
            WHERE tenant_id = ? AND pr_number = ? AND deleted_at IS NULL
            LIMIT 1
            """,
            (self.tenant_id, pr_number),
        ).fetchone()
        return bool(row)

    def soft_delete(self, db, purchase_request_id: int) -> None:
        db.execute(
            """
            UPDATE purchase_requests
            SET deleted_at = CURRENT_TIMESTAMP, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND tenant_id = ?
            """,
            (purchase_request_id, self.tenant_id),
        )

    def list_summary(
        self,
        db,
        *,
        requestor_id: int | None = None,
        status: str | None = None,
        limit: int = 200,
    ) -> list[dict]:
        clauses = ["tenant_id = ?", "deleted_at IS NULL"]
        params: list[Any] = [self.tenant_id]
        if requestor_id is not None:
            clauses.append("requestor_id = ?")
            params.append(int(requestor_id))
        if status:
            clauses.append("status = ?")
            params.append(status)
        params.append(int(limit))
        rows = db.execute(
            f"""
            SELECT id, pr_number, requestor_id, department, branch_code, title, total_amount, currency, status, created_at
            FROM purchase_requests
            WHERE {" AND ".join(clauses)}
            ORDER BY id DESC
            LIMIT ?
            """,
            tuple(params),
        ).fetchall()
        return self.rows_to_dicts(rows)
