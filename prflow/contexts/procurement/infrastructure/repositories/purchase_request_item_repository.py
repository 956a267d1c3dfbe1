from __future__ import annotations

from typing import Iterable

from prflow.domain.contracts import PurchaseRequestItemInput
from prflow.infrastructure.repositories.base import BaseRepository
from prflow.procurement.budget import line_amount


class PurchaseRequestItemRepository(BaseRepository):
    def add_items(self, db, purchase_request_id: int, items: Iterable[PurchaseRequestItemInput]) -> list[int]:
        created: list[int] = []
        for line_no, item in enumerate(items, start=1):
            cursor = db.execute(
                """
                INSERT INTO purchase_request_items (
                    purchase_request_id, line_no, description, part_no, spec, unit,
                    quantity, unit_price, amount, tenant_id
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                RETURNING id
                """,
                (
                    purchase_request_id,
                    line_no,
                    item.description.strip(),
                    item.part_no,
                    item.spec,
                    item.unit,
                    float(item.quantity),
                    float(item.unit_price),
                    line_amount(item.quantity, item.unit_price),
                    self.tenant_id,
                ),
            )
            created.append(self.row_id(cursor))
        return created

    def list_for_request(self, db, purchase_request_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT id, purchase_request_id, line_no, description, part_no, spec, unit, quantity, unit_price, amount
            FROM purchase_request_items
            WHERE purchase_request_id = ? AND tenant_id = ? AND deleted_at IS NULL
            ORDER BY line_no
            """,
            (purchase_request_id, self.tenant_id),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def soft_delete_for_request(self, db, purchase_request_id: int) -> int:
        cursor = db.execute(
            """
            UPDATE purchase_request_items
            SET deleted_at = CURRENT_TIMESTAMP
            WHERE purchase_request_id = ? AND tenant_id = ? AND deleted_at IS NULL
            """,
            (purchase_request_id, self.tenant_id),
        )
        return int(cursor.rowcount or 0)
