from __future__ import annotations

import math
from typing import Any, Dict, List

from flask import Blueprint, current_app, g, jsonify, request

from prflow.application.workflow_services import WorkflowServices, services_from_config
from prflow.auth import current_actor
from prflow.db import get_db
from prflow.domain.contracts import (
    AssignmentInput,
    PurchaseRequestCreateInput,
    PurchaseRequestItemInput,
    QuotationCreateInput,
    QuotationItemInput,
    ServiceOutput,
    SupplierSelectionInput,
)
from prflow.domain.statuses import BudgetExceptionAction
from prflow.errors import ValidationError, not_found, validation
from prflow.tenant import current_tenant_id


workflow_bp = Blueprint("workflow", __name__, url_prefix="/api/workflow")


_MANAGER_DECISIONS = {"approve", "reject", "return"}
_BUDGET_ACTIONS = {
    "approve": BudgetExceptionAction.APPROVE,
    "reject": BudgetExceptionAction.REJECT,
    "request-negotiation": BudgetExceptionAction.REQUEST_NEGOTIATION,
}


def _services() -> WorkflowServices:
    if "workflow_services" not in g:
        options = current_app.extensions.get("prflow", {})
        g.workflow_services = services_from_config(
            current_app.config,
            current_tenant_id(),
            directory=options.get("directory"),
            notification_sink=options.get("notification_sink"),
        )
    return g.workflow_services


def _context():
    db = get_db()
    services = _services()
    return db, services, current_actor(db, services.directory)


def _respond(result: ServiceOutput):
    return jsonify(result.payload), result.status_code


def _body() -> Dict[str, Any]:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError(details="JSON object expected")
    return payload


def _number(value, field: str, *, default=None) -> float | None:
    if value in (None, ""):
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise validation("validation_error", field=field) from None
    if not math.isfinite(number):
        raise validation("validation_error", field=field)
    return number


def _integer(value, field: str, *, default=None) -> int | None:
    if value in (None, ""):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise validation("validation_error", field=field) from None


def _text(payload: Dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    return str(value).strip() if value is not None else None


def _list(payload: Dict[str, Any], key: str) -> List[Any]:
    value = payload.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise validation("validation_error", field=key)
    return value


def _parse_items(payload: Dict[str, Any]) -> List[PurchaseRequestItemInput]:
    items: List[PurchaseRequestItemInput] = []
    for raw in _list(payload, "items"):
        if not isinstance(raw, dict):
            raise validation("validation_error", field="items")
        items.append(
            PurchaseRequestItemInput(
                description=str(raw.get("description") or ""),
                quantity=_number(raw.get("quantity"), "quantity", default=0.0),
                unit_price=_number(raw.get("unit_price"), "unit_price", default=0.0),
                unit=_text(raw, "unit"),
                part_no=_text(raw, "part_no"),
                spec=_text(raw, "spec"),
            )
        )
    return items


# ----------------------------------------------------------------------
# Purchase requests
# ----------------------------------------------------------------------


@workflow_bp.route("/purchase-requests", methods=["GET"])
def list_purchase_requests():
    db, services, _actor = _context()
    return _respond(
        services.workflow.list_purchase_requests(
            db,
            requestor_id=_integer(request.args.get("requestor_id"), "requestor_id"),
            status=(request.args.get("status") or "").strip().upper() or None,
        )
    )


@workflow_bp.route("/purchase-requests", methods=["POST"])
def create_purchase_request():
    db, services, actor = _context()
    payload = _body()
    data = PurchaseRequestCreateInput(
        items=_parse_items(payload),
        department=_text(payload, "department"),
        title=_text(payload, "title"),
        notes=_text(payload, "notes"),
        required_date=_text(payload, "required_date"),
        currency=_text(payload, "currency"),
        tax_percent=_number(payload.get("tax_percent"), "tax_percent"),
        declared_amount=_number(payload.get("declared_amount"), "declared_amount"),
        submit=bool(payload.get("submit")),
    )
    return _respond(services.workflow.create_purchase_request(db, actor, data))


@workflow_bp.route("/purchase-requests/<int:purchase_request_id>", methods=["GET"])
def get_purchase_request(purchase_request_id: int):
    db, services, _actor = _context()
    return _respond(services.workflow.get_purchase_request(db, purchase_request_id))


@workflow_bp.route("/purchase-requests/<int:purchase_request_id>/history", methods=["GET"])
def purchase_request_history(purchase_request_id: int):
    db, services, _actor = _context()
    return _respond(services.workflow.history(db, purchase_request_id))


@workflow_bp.route("/purchase-requests/<int:purchase_request_id>/items", methods=["PUT"])
def replace_items(purchase_request_id: int):
    db, services, actor = _context()
    return _respond(services.workflow.replace_items(db, actor, purchase_request_id, _parse_items(_body())))


@workflow_bp.route("/purchase-requests/<int:purchase_request_id>/submit", methods=["POST"])
def submit_purchase_request(purchase_request_id: int):
    db, services, actor = _context()
    return _respond(services.workflow.submit(db, actor, purchase_request_id))


@workflow_bp.route("/purchase-requests/<int:purchase_request_id>/resubmit", methods=["POST"])
def resubmit_purchase_request(purchase_request_id: int):
    db, services, actor = _context()
    return _respond(services.workflow.resubmit(db, actor, purchase_request_id, _text(_body(), "notes")))


@workflow_bp.route("/purchase-requests/<int:purchase_request_id>/cancel", methods=["POST"])
def cancel_purchase_request(purchase_request_id: int):
    db, services, actor = _context()
    return _respond(services.workflow.cancel(db, actor, purchase_request_id, _text(_body(), "reason")))


@workflow_bp.route("/purchase-requests/<int:purchase_request_id>/manager/<string:decision>", methods=["POST"])
def manager_decision(purchase_request_id: int, decision: str):
    if decision not in _MANAGER_DECISIONS:
        raise not_found("route", decision)
    db, services, actor = _context()
    handler = getattr(services.workflow, f"manager_{decision}")
    return _respond(handler(db, actor, purchase_request_id, _text(_body(), "comment")))


@workflow_bp.route("/purchase-requests/<int:purchase_request_id>/branch-manager/<string:decision>", methods=["POST"])
def branch_manager_decision(purchase_request_id: int, decision: str):
    if decision not in _MANAGER_DECISIONS:
        raise not_found("route", decision)
    db, services, actor = _context()
    handler = getattr(services.workflow, f"branch_manager_{decision}")
    return _respond(handler(db, actor, purchase_request_id, _text(_body(), "comment")))


@workflow_bp.route("/purchase-requests/<int:purchase_request_id>/payment-done", methods=["POST"])
def payment_done(purchase_request_id: int):
    db, services, actor = _context()
    return _respond(services.workflow.mark_payment_done(db, actor, purchase_request_id))


# ----------------------------------------------------------------------
# Assignment and sourcing
# ----------------------------------------------------------------------


@workflow_bp.route("/purchase-requests/<int:purchase_request_id>/assignments", methods=["GET"])
def list_assignments(purchase_request_id: int):
    db, services, _actor = _context()
    return _respond(services.assignments.list_assignments(db, purchase_request_id))


@workflow_bp.route("/purchase-requests/<int:purchase_request_id>/assignments", methods=["POST"])
def assign_purchase_request(purchase_request_id: int):
    db, services, actor = _context()
    payload = _body()
    data = AssignmentInput(
        buyer_id=_integer(payload.get("buyer_id"), "buyer_id", default=0),
        scope=str(payload.get("scope") or ""),
        item_ids=[_integer(item_id, "item_ids") for item_id in _list(payload, "item_ids")],
        note=_text(payload, "note"),
    )
    return _respond(services.assignments.assign(db, actor, purchase_request_id, data))


@workflow_bp.route("/purchase-requests/<int:purchase_request_id>/rfqs", methods=["POST"])
def create_rfq(purchase_request_id: int):
    db, services, actor = _context()
    return _respond(services.quotations.create_rfq(db, actor, purchase_request_id, _text(_body(), "notes")))


@workflow_bp.route("/rfqs/<int:rfq_id>/send", methods=["POST"])
def send_rfq(rfq_id: int):
    db, services, actor = _context()
    return _respond(services.quotations.send_rfq(db, actor, rfq_id))


@workflow_bp.route("/rfqs/<int:rfq_id>/quotations", methods=["GET"])
def list_quotations(rfq_id: int):
    db, services, _actor = _context()
    return _respond(services.quotations.list_quotations(db, rfq_id))


@workflow_bp.route("/rfqs/<int:rfq_id>/quotations", methods=["POST"])
def create_quotation(rfq_id: int):
    db, services, actor = _context()
    payload = _body()
    items = []
    for raw in _list(payload, "items"):
        if not isinstance(raw, dict):
            raise validation("validation_error", field="items")
        items.append(
            QuotationItemInput(
                purchase_request_item_id=_integer(raw.get("purchase_request_item_id"), "purchase_request_item_id", default=0),
                quantity=_number(raw.get("quantity"), "quantity", default=0.0),
                unit_price=_number(raw.get("unit_price"), "unit_price", default=0.0),
                notes=_text(raw, "notes"),
            )
        )
    data = QuotationCreateInput(
        supplier_id=_integer(payload.get("supplier_id"), "supplier_id", default=0),
        total_amount=_number(payload.get("total_amount"), "total_amount", default=0.0),
        items=items,
        currency=_text(payload, "currency"),
        lead_time_days=_integer(payload.get("lead_time_days"), "lead_time_days"),
        payment_terms=_text(payload, "payment_terms"),
        delivery_terms=_text(payload, "delivery_terms"),
        warranty=_text(payload, "warranty"),
        valid_from=_text(payload, "valid_from"),
        valid_until=_text(payload, "valid_until"),
        notes=_text(payload, "notes"),
    )
    return _respond(services.quotations.create_quotation(db, actor, rfq_id, data))


@workflow_bp.route("/quotations/<int:quotation_id>", methods=["GET"])
def get_quotation(quotation_id: int):
    db, services, _actor = _context()
    return _respond(services.quotations.get_quotation(db, quotation_id))


@workflow_bp.route("/quotations/<int:quotation_id>/validate", methods=["POST"])
def validate_quotation(quotation_id: int):
    db, services, actor = _context()
    payload = _body()
    if not isinstance(payload.get("valid"), bool):
        raise validation("validation_error", field="valid")
    return _respond(services.quotations.validate_quotation(db, actor, quotation_id, payload["valid"]))


# ----------------------------------------------------------------------
# Supplier decision
# ----------------------------------------------------------------------


@workflow_bp.route("/purchase-requests/<int:purchase_request_id>/supplier-selection", methods=["POST"])
def select_supplier(purchase_request_id: int):
    db, services, actor = _context()
    payload = _body()
    data = SupplierSelectionInput(
        quotation_id=_integer(payload.get("quotation_id"), "quotation_id", default=0),
        reason=str(payload.get("reason") or ""),
        over_budget_reason=_text(payload, "over_budget_reason"),
    )
    return _respond(services.budget.select_supplier(db, actor, purchase_request_id, data))


@workflow_bp.route("/budget-exceptions", methods=["GET"])
def list_budget_exceptions():
    db, services, _actor = _context()
    return _respond(services.budget.list_pending(db, (request.args.get("branch_code") or "").strip() or None))


@workflow_bp.route("/budget-exceptions/<int:budget_exception_id>/<string:action>", methods=["POST"])
def resolve_budget_exception(budget_exception_id: int, action: str):
    resolution = _BUDGET_ACTIONS.get(action)
    if resolution is None:
        raise not_found("route", action)
    db, services, actor = _context()
    return _respond(services.budget.resolve(db, actor, budget_exception_id, resolution, _text(_body(), "comment")))


# ----------------------------------------------------------------------
# Notifications
# ----------------------------------------------------------------------


@workflow_bp.route("/notifications", methods=["GET"])
def list_notifications():
    db, services, actor = _context()
    status = (request.args.get("status") or "").strip().upper() or None
    limit = _integer(request.args.get("limit"), "limit", default=50)
    return _respond(services.notifications.list_for_user(db, user_id=actor.user_id, status=status, limit=limit))


@workflow_bp.route("/notifications/<int:notification_id>/read", methods=["POST"])
def mark_notification_read(notification_id: int):
    db, services, actor = _context()
    return _respond(services.notifications.mark_read(db, notification_id, user_id=actor.user_id))
