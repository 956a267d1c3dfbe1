from __future__ import annotations

from typing import Any, Iterable

from prflow.domain.contracts import QuotationCreateInput
from prflow.infrastructure.repositories.base import BaseRepository
from prflow.procurement.budget import line_amount


class QuotationRepository(BaseRepository):
    def create(
        self,
        db,
        *,
        rfq_id: int,
        created_by: int,
        currency: str,
        status: str,
        quotation: QuotationCreateInput,
    ) -> int:
        cursor = db.execute(
            """
            INSERT INTO quotations (
                rfq_id, supplier_id, total_amount, currency, lead_time_days, payment_terms,
                delivery_terms, warranty, valid_from, valid_until, status, notes, created_by, tenant_id
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                rfq_id,
                quotation.supplier_id,
                float(quotation.total_amount),
                currency,
                quotation.lead_time_days,
                quotation.payment_terms,
                quotation.delivery_terms,
                quotation.warranty,
                quotation.valid_from,
                quotation.valid_until,
                status,
                quotation.notes,
                created_by,
                self.tenant_id,
            ),
        )
        quotation_id = self.row_id(cursor)
        for item in quotation.items:
            db.execute(
                """
                INSERT INTO quotation_items (
                    quotation_id, purchase_request_item_id, quantity, unit_price, amount, notes, tenant_id
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    quotation_id,
                    int(item.purchase_request_item_id),
                    float(item.quantity),
                    float(item.unit_price),
                    line_amount(item.quantity, item.unit_price),
                    item.notes,
                    self.tenant_id,
                ),
            )
        return quotation_id

    def get_by_id(self, db, quotation_id: int) -> dict | None:
        row = db.execute(
            """
            SELECT q.*, r.purchase_request_id
            FROM quotations q
            JOIN rfqs r ON r.id = q.rfq_id
            WHERE q.id = ? AND q.tenant_id = ?
            LIMIT 1
            """,
            (quotation_id, self.tenant_id),
        ).fetchone()
        return self.row_to_dict(row)

    def list_for_rfq(self, db, rfq_id: int, *, statuses: Iterable[str] | None = None) -> list[dict]:
        params: list[Any] = [rfq_id, self.tenant_id]
        status_clause = ""
        status_values = list(statuses or [])
        if status_values:
            status_clause = f" AND status IN ({self.placeholders(len(status_values))})"
            params.extend(status_values)
        rows = db.execute(
            f"""
            SELECT id, rfq_id, supplier_id, total_amount, currency, lead_time_days, payment_terms,
                   delivery_terms, warranty, valid_from, valid_until, status, recommendation_score,
                   is_recommended, created_by, created_at
            FROM quotations
            WHERE rfq_id = ? AND tenant_id = ?{status_clause}
            ORDER BY id
            """,
            tuple(params),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def list_items(self, db, quotation_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT id, quotation_id, purchase_request_item_id, quantity, unit_price, amount, notes
            FROM quotation_items
            WHERE quotation_id = ? AND tenant_id = ?
            ORDER BY id
            """,
            (quotation_id, self.tenant_id),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def compare_and_set_status(self, db, quotation_id: int, *, expected_statuses: Iterable[str], new_status: str) -> bool:
        expected = list(expected_statuses)
        cursor = db.execute(
            f"""
            UPDATE quotations
            SET status = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND tenant_id = ? AND status IN ({self.placeholders(len(expected))})
            """,
            (new_status, quotation_id, self.tenant_id, *expected),
        )
        return int(cursor.rowcount or 0) == 1

    def set_score(self, db, quotation_id: int, *, score: float | None, is_recommended: bool) -> None:
        db.execute(
            """
            UPDATE quotations
            SET recommendation_score = ?, is_recommended = ?, updated_at = CURRENT_TIMESTAMP
            WHERE id = ? AND tenant_id = ?
            """,
            (score, 1 if is_recommended else 0, quotation_id, self.tenant_id),
        )

    def clear_scores(self, db, rfq_id: int) -> None:
        db.execute(
            """
            UPDATE quotations
            SET recommendation_score = NULL, is_recommended = 0, updated_at = CURRENT_TIMESTAMP
            WHERE rfq_id = ? AND tenant_id = ?
            """,
            (rfq_id, self.tenant_id),
        )
