from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass(frozen=True)
class ServiceOutput:
    payload: Dict[str, Any]
    status_code: int = 200


@dataclass(frozen=True)
class Actor:
    """Authenticated caller as resolved by the identity collaborator."""

    user_id: int
    role: str
    name: str = ""
    department: str | None = None
    branch_code: str | None = None

    @classmethod
    def from_user(cls, user: Dict[str, Any]) -> "Actor":
        return cls(
            user_id=int(user["id"]),
            role=str(user.get("role") or ""),
            name=str(user.get("name") or ""),
            department=user.get("department"),
            branch_code=user.get("branch_code"),
        )


@dataclass(frozen=True)
class PurchaseRequestItemInput:
    description: str
    quantity: float
    unit_price: float = 0.0
    unit: str | None = None
    part_no: str | None = None
    spec: str | None = None


@dataclass(frozen=True)
class PurchaseRequestCreateInput:
    items: List[PurchaseRequestItemInput]
    department: str | None = None
    title: str | None = None
    notes: str | None = None
    required_date: str | None = None
    currency: str | None = None
    tax_percent: float | None = None
    declared_amount: float | None = None
    submit: bool = False


@dataclass(frozen=True)
class AssignmentInput:
    buyer_id: int
    scope: str
    item_ids: List[int] = field(default_factory=list)
    note: str | None = None


@dataclass(frozen=True)
class QuotationItemInput:
    purchase_request_item_id: int
    quantity: float
    unit_price: float
    notes: str | None = None


@dataclass(frozen=True)
class QuotationCreateInput:
    supplier_id: int
    total_amount: float
    items: List[QuotationItemInput]
    currency: str | None = None
    lead_time_days: int | None = None
    payment_terms: str | None = None
    delivery_terms: str | None = None
    warranty: str | None = None
    valid_from: str | None = None
    valid_until: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class SupplierSelectionInput:
    quotation_id: int
    reason: str
    over_budget_reason: str | None = None
