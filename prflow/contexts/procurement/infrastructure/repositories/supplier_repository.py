from __future__ import annotations

from prflow.infrastructure.repositories.base import BaseRepository


class SupplierRepository(BaseRepository):
    def create(self, db, *, code: str, name: str, email: str | None = None) -> int:
        cursor = db.execute(
            """
            INSERT INTO suppliers (code, name, email, tenant_id)
            VALUES (?, ?, ?, ?)
            RETURNING id
            """,
            (code, name, email, self.tenant_id),
        )
        return self.row_id(cursor)

    def get_by_id(self, db, supplier_id: int) -> dict | None:
        row = db.execute(
            "SELECT id, code, name, email FROM suppliers WHERE id = ? AND tenant_id = ? LIMIT 1",
            (supplier_id, self.tenant_id),
        ).fetchone()
        return self.row_to_dict(row)
