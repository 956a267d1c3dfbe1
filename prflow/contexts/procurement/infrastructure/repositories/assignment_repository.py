from __future__ import annotations

from typing import Iterable

from prflow.infrastructure.repositories.base import BaseRepository


class AssignmentRepository(BaseRepository):
    def create(
        self,
        db,
        *,
        purchase_request_id: int,
        buyer_leader_id: int,
        buyer_id: int,
        scope: str,
        item_ids: Iterable[int] | None,
        note: str | None,
    ) -> int:
        stored_ids = sorted(int(item_id) for item_id in item_ids) if item_ids is not None else None
        cursor = db.execute(
            """
            INSERT INTO pr_assignments (
                purchase_request_id, buyer_leader_id, buyer_id, scope, assigned_item_ids, note, tenant_id
            )
            VALUES (?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                purchase_request_id,
                buyer_leader_id,
                buyer_id,
                scope,
                self.dump_json(stored_ids),
                note,
                self.tenant_id,
            ),
        )
        return self.row_id(cursor)

    def _hydrate(self, row) -> dict:
        data = dict(row)
        data["assigned_item_ids"] = self.load_json(data.get("assigned_item_ids"), default=None)
        return data

    def list_for_request(self, db, purchase_request_id: int) -> list[dict]:
        rows = db.execute(
            """
            SELECT id, purchase_request_id, buyer_leader_id, buyer_id, scope, assigned_item_ids, note, created_at
            FROM pr_assignments
            WHERE purchase_request_id = ? AND tenant_id = ? AND deleted_at IS NULL
            ORDER BY id
            """,
            (purchase_request_id, self.tenant_id),
        ).fetchall()
        return [self._hydrate(row) for row in rows]

    def list_for_buyer(self, db, purchase_request_id: int, buyer_id: int) -> list[dict]:
        return [
            assignment
            for assignment in self.list_for_request(db, purchase_request_id)
            if int(assignment["buyer_id"]) == int(buyer_id)
        ]
