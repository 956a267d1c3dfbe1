from __future__ import annotations

import logging
from typing import List

from prflow.contexts.directory.domain.lookup import DEFAULT_NEEDS_SECOND_APPROVAL, DirectoryLookup
from prflow.domain.statuses import Role
from prflow.infrastructure.repositories.base import BaseRepository


_USER_COLUMNS = "id, email, name, role, department, branch_code, manager_id"


class SqlDirectoryLookup(BaseRepository, DirectoryLookup):
    """Directory backed by the ``users``, ``branches`` and ``branch_approval_rules`` tables."""

    def __init__(self, *, tenant_id: str | None = None) -> None:
        super().__init__(tenant_id=tenant_id)
        self._logger = logging.getLogger("prflow")

    def get_user(self, db, user_id: int) -> dict | None:
        row = db.execute(
            f"""
            SELECT {_USER_COLUMNS}
            FROM users
            WHERE id = ? AND tenant_id = ? AND active = 1
            LIMIT 1
            """,
            (user_id, self.tenant_id),
        ).fetchone()
        return self.row_to_dict(row)

    def resolve_manager_of(self, db, requestor_id: int) -> dict | None:
        requestor = self.get_user(db, requestor_id)
        if not requestor or not requestor.get("manager_id"):
            return None
        manager = self.get_user(db, int(requestor["manager_id"]))
        if not manager or manager.get("role") != Role.DEPARTMENT_HEAD.value:
            return None
        return manager

    def resolve_branch_managers(self, db, branch_code: str | None) -> List[dict]:
        if not branch_code:
            return []
        rows = db.execute(
            f"""
            SELECT {_USER_COLUMNS}
            FROM users
            WHERE tenant_id = ? AND active = 1 AND role = ? AND branch_code = ?
            ORDER BY id
            """,
            (self.tenant_id, Role.BRANCH_MANAGER.value, branch_code),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def resolve_buyer_leaders(self, db) -> List[dict]:
        rows = db.execute(
            f"""
            SELECT {_USER_COLUMNS}
            FROM users
            WHERE tenant_id = ? AND active = 1 AND role = ?
            ORDER BY id
            """,
            (self.tenant_id, Role.BUYER_LEADER.value),
        ).fetchall()
        return self.rows_to_dicts(rows)

    def branch_needs_second_approval(self, db, branch_code: str | None) -> bool:
        if not branch_code:
            return DEFAULT_NEEDS_SECOND_APPROVAL
        try:
            with db.savepoint():
                row = db.execute(
                    """
                    SELECT needs_branch_manager_approval
                    FROM branch_approval_rules
                    WHERE tenant_id = ? AND branch_code = ?
                    LIMIT 1
                    """,
                    (self.tenant_id, branch_code),
                ).fetchone()
        except Exception:  # noqa: BLE001
            self._logger.warning(
                "branch_rule_lookup_failed",
                extra={"branch_code": branch_code, "tenant_id": self.tenant_id},
                exc_info=True,
            )
            return DEFAULT_NEEDS_SECOND_APPROVAL
        if not row:
            return DEFAULT_NEEDS_SECOND_APPROVAL
        return bool(int(row["needs_branch_manager_approval"]))
