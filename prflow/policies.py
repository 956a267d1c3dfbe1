from __future__ import annotations

from typing import Iterable, Set

from prflow.domain.statuses import Role
from prflow.errors import PermissionError as AppPermissionError


VALID_ROLES: Set[str] = {role.value for role in Role}


def normalize_role(role: str | None, default: str = "requestor") -> str:
    normalized = str(role or "").strip().lower()
    if normalized in VALID_ROLES:
        return normalized
    return default if default in VALID_ROLES else ""


def normalize_allowed_roles(roles: Iterable[str]) -> Set[str]:
    allowed: Set[str] = set()
    for role in roles:
        normalized = normalize_role(getattr(role, "value", role), default="")
        if normalized:
            allowed.add(normalized)
    return allowed


def has_any_role(role: str | None, allowed_roles: Iterable[str]) -> bool:
    normalized_role = normalize_role(role, default="")
    allowed = normalize_allowed_roles(allowed_roles)
    return not allowed or normalized_role in allowed


def require_roles(role: str | None, *allowed_roles: str, message_key: str = "permission_denied", **ids) -> str:
    normalized_role = normalize_role(role, default="")
    if normalized_role and has_any_role(normalized_role, allowed_roles):
        return normalized_role
    raise AppPermissionError(
        code="permission_denied",
        message_key=message_key,
        http_status=403,
        critical=False,
        details=f"role {normalized_role or 'unknown'} not in {sorted(normalize_allowed_roles(allowed_roles))}",
        payload=dict(ids),
    )
