from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List


# A branch without an approval rule still requires the branch manager tier.
DEFAULT_NEEDS_SECOND_APPROVAL = True


class DirectoryLookup(ABC):
    """Identity directory used to route approvals.

    Users are plain dicts with at least ``id``, ``name``, ``role``, ``department``
    and ``branch_code``.
    """

    @abstractmethod
    def get_user(self, db, user_id: int) -> dict | None:
        raise NotImplementedError

    @abstractmethod
    def resolve_manager_of(self, db, requestor_id: int) -> dict | None:
        raise NotImplementedError

    @abstractmethod
    def resolve_branch_managers(self, db, branch_code: str | None) -> List[dict]:
        raise NotImplementedError

    @abstractmethod
    def resolve_buyer_leaders(self, db) -> List[dict]:
        raise NotImplementedError

    @abstractmethod
    def branch_needs_second_approval(self, db, branch_code: str | None) -> bool:
        raise NotImplementedError
