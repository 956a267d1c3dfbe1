from __future__ import annotations

from prflow.infrastructure.repositories.base import BaseRepository


class BudgetExceptionRepository(BaseRepository):
    def create(
        self,
        db,
        *,
        purchase_request_id: int,
        supplier_selection_id: int,
        pr_amount: float,
        purchase_amount: float,
        over_percent: float,
        reason: str,
        status: str,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO budget_exceptions (
                purchase_request_id, supplier_selection_id, pr_amount, purchase_amount,
                over_percent, reason, status, tenant_id
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                purchase_request_id,
                supplier_selection_id,
                float(pr_amount),
                float(purchase_amount),
                float(over_percent),
                reason,
                status,
                self.tenant_id,
            ),
        )
        return self.row_id(cursor)

    def get_by_id(self, db, budget_exception_id: int) -> dict | None:
        row = db.execute(
            "SELECT * FROM budget_exceptions WHERE id = ? AND tenant_id = ? LIMIT 1",
            (budget_exception_id, self.tenant_id),
        ).fetchone()
        return self.row_to_dict(row)

    def resolve(
        self,
        db,
        budget_exception_id: int,
        *,
        new_status: str,
        action: str,
        resolver_id: int,
        comment: str | None,
    ) -> bool:
        cursor = db.execute(
            """
            UPDATE budget_exceptions
            SET status = ?, action = ?, resolver_id = ?, comment = ?,
                resolved_at = CURRENT_TIMESTAMP, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND tenant_id = ? AND status = 'PENDING'
            """,
            (new_status, action, resolver_id, comment, budget_exception_id, self.tenant_id),
        )
        return int(cursor.rowcount or 0) == 1

    def list_for_request(self, db, purchase_request_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT *
            FROM budget_exceptions
            WHERE purchase_request_id = ? AND tenant_id = ?
            ORDER BY id
            """,
            (purchase_request_id, self.tenant_id),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_pending(self, db, *, branch_code: str | None = None) -> list[dict]:
        params: list = [self.tenant_id]
        branch_clause = ""
        if branch_code:
            branch_clause = " AND pr.branch_code = ?"
            params.append(branch_code)
        rows = db.execute(
            f"""
            SELECT be.*, pr.pr_number, pr.branch_code, pr.department
            FROM budget_exceptions be
            JOIN purchase_requests pr ON pr.id = be.purchase_request_id
            WHERE be.tenant_id = ? AND be.status = 'PENDING'{branch_clause}
            ORDER BY be.id
            """,
            tuple(params),
        ).fetchall()
        return self.rows_to_dicts(rows)
