from __future__ import annotations

from typing import Dict, List, Tuple

from prflow.domain.statuses import TERMINAL_STATUSES, PurchaseRequestStatus, WorkflowAction
from prflow.errors import invalid_transition


S = PurchaseRequestStatus
A = WorkflowAction


PROCESS_STAGES: List[Dict[str, str]] = [
    {"key": "request", "label": "Request"},
    {"key": "approval", "label": "Approval"},
    {"key": "assignment", "label": "Assignment"},
    {"key": "sourcing", "label": "Quotations"},
    {"key": "decision", "label": "Decision"},
    {"key": "payment", "label": "Payment"},
]


ACTION_LABELS: Dict[A, str] = {
    A.SUBMIT: "Submit for approval",
    A.MANAGER_APPROVE: "Approve",
    A.MANAGER_APPROVE_SKIP_BRANCH: "Approve",
    A.MANAGER_REJECT: "Reject",
    A.MANAGER_RETURN: "Return for changes",
    A.BRANCH_MANAGER_APPROVE: "Approve",
    A.BRANCH_MANAGER_REJECT: "Reject",
    A.BRANCH_MANAGER_RETURN: "Return for changes",
    A.RESUBMIT: "Resubmit",
    A.COMPLETE_ASSIGNMENT: "Assign buyers",
    A.START_RFQ: "Open RFQ",
    A.RECEIVE_QUOTATIONS: "Close quotation round",
    A.SELECT_SUPPLIER: "Select supplier",
    A.SELECT_SUPPLIER_OVER_BUDGET: "Select supplier",
    A.APPROVE_BUDGET: "Approve overrun",
    A.REJECT_BUDGET: "Reject overrun",
    A.REQUEST_NEGOTIATION: "Request negotiation",
    A.MARK_PAYMENT_DONE: "Register payment",
    A.CANCEL: "Cancel request",
}


# Closed transition table: every (status, action) pair maps to exactly one target.
TRANSITIONS: Dict[Tuple[S, A], S] = {
    (S.DRAFT, A.SUBMIT): S.MANAGER_PENDING,
    (S.MANAGER_PENDING, A.MANAGER_APPROVE): S.BRANCH_MANAGER_PENDING,
    (S.MANAGER_PENDING, A.MANAGER_APPROVE_SKIP_BRANCH): S.BUYER_LEADER_PENDING,
    (S.MANAGER_PENDING, A.MANAGER_REJECT): S.MANAGER_REJECTED,
    (S.MANAGER_PENDING, A.MANAGER_RETURN): S.MANAGER_RETURNED,
    (S.BRANCH_MANAGER_PENDING, A.BRANCH_MANAGER_APPROVE): S.BUYER_LEADER_PENDING,
    (S.BRANCH_MANAGER_PENDING, A.BRANCH_MANAGER_REJECT): S.BRANCH_MANAGER_REJECTED,
    (S.BRANCH_MANAGER_PENDING, A.BRANCH_MANAGER_RETURN): S.BRANCH_MANAGER_RETURNED,
    (S.MANAGER_RETURNED, A.RESUBMIT): S.MANAGER_PENDING,
    (S.BRANCH_MANAGER_RETURNED, A.RESUBMIT): S.MANAGER_PENDING,
    (S.NEED_MORE_INFO, A.RESUBMIT): S.MANAGER_PENDING,
    (S.BUYER_LEADER_PENDING, A.COMPLETE_ASSIGNMENT): S.ASSIGNED_TO_BUYER,
    (S.ASSIGNED_TO_BUYER, A.START_RFQ): S.RFQ_IN_PROGRESS,
    (S.RFQ_IN_PROGRESS, A.RECEIVE_QUOTATIONS): S.QUOTATION_RECEIVED,
    (S.QUOTATION_RECEIVED, A.SELECT_SUPPLIER): S.SUPPLIER_SELECTED,
    (S.QUOTATION_RECEIVED, A.SELECT_SUPPLIER_OVER_BUDGET): S.BUDGET_EXCEPTION,
    (S.BUDGET_EXCEPTION, A.APPROVE_BUDGET): S.BUDGET_APPROVED,
    (S.BUDGET_EXCEPTION, A.REJECT_BUDGET): S.BUDGET_REJECTED,
    (S.BUDGET_EXCEPTION, A.REQUEST_NEGOTIATION): S.QUOTATION_RECEIVED,
    (S.SUPPLIER_SELECTED, A.MARK_PAYMENT_DONE): S.PAYMENT_DONE,
    (S.BUDGET_APPROVED, A.MARK_PAYMENT_DONE): S.PAYMENT_DONE,
    (S.DRAFT, A.CANCEL): S.CANCELLED,
    (S.MANAGER_RETURNED, A.CANCEL): S.CANCELLED,
    (S.BRANCH_MANAGER_RETURNED, A.CANCEL): S.CANCELLED,
    (S.NEED_MORE_INFO, A.CANCEL): S.CANCELLED,
}


PRIMARY_ACTIONS: Dict[S, A] = {
    S.DRAFT: A.SUBMIT,
    S.MANAGER_PENDING: A.MANAGER_APPROVE,
    S.BRANCH_MANAGER_PENDING: A.BRANCH_MANAGER_APPROVE,
    S.MANAGER_RETURNED: A.RESUBMIT,
    S.BRANCH_MANAGER_RETURNED: A.RESUBMIT,
    S.NEED_MORE_INFO: A.RESUBMIT,
    S.BUYER_LEADER_PENDING: A.COMPLETE_ASSIGNMENT,
    S.ASSIGNED_TO_BUYER: A.START_RFQ,
    S.RFQ_IN_PROGRESS: A.RECEIVE_QUOTATIONS,
    S.QUOTATION_RECEIVED: A.SELECT_SUPPLIER,
    S.BUDGET_EXCEPTION: A.APPROVE_BUDGET,
    S.SUPPLIER_SELECTED: A.MARK_PAYMENT_DONE,
    S.BUDGET_APPROVED: A.MARK_PAYMENT_DONE,
}


_STAGE_BY_STATUS: Dict[S, str] = {
    S.DRAFT: "request",
    S.CANCELLED: "request",
    S.NEED_MORE_INFO: "request",
    S.MANAGER_RETURNED: "request",
    S.BRANCH_MANAGER_RETURNED: "request",
    S.MANAGER_PENDING: "approval",
    S.MANAGER_REJECTED: "approval",
    S.BRANCH_MANAGER_PENDING: "approval",
    S.BRANCH_MANAGER_REJECTED: "approval",
    S.BUYER_LEADER_PENDING: "assignment",
    S.ASSIGNED_TO_BUYER: "sourcing",
    S.RFQ_IN_PROGRESS: "sourcing",
    S.QUOTATION_RECEIVED: "decision",
    S.SUPPLIER_SELECTED: "decision",
    S.BUDGET_EXCEPTION: "decision",
    S.BUDGET_APPROVED: "decision",
    S.BUDGET_REJECTED: "decision",
    S.PAYMENT_DONE: "payment",
}


def _as_status(status) -> S | None:
    try:
        return S(getattr(status, "value", status))
    except ValueError:
        return None


def _as_action(action) -> A | None:
    try:
        return A(getattr(action, "value", action))
    except ValueError:
        return None


def next_status(status, action) -> S | None:
    resolved_status = _as_status(status)
    resolved_action = _as_action(action)
    if resolved_status is None or resolved_action is None:
        return None
    return TRANSITIONS.get((resolved_status, resolved_action))


def allowed_actions(status) -> List[str]:
    resolved = _as_status(status)
    return [action.value for (source, action) in TRANSITIONS if source == resolved]


def action_allowed(status, action) -> bool:
    return next_status(status, action) is not None


def primary_action(status) -> str | None:
    resolved = _as_status(status)
    action = PRIMARY_ACTIONS.get(resolved) if resolved else None
    return action.value if action else None


def is_terminal(status) -> bool:
    return _as_status(status) in TERMINAL_STATUSES


def transition(entity_id, status, action) -> S:
    """Resolve the target status or raise InvalidStateTransitionError."""
    target = next_status(status, action)
    if target is None:
        raise invalid_transition(
            "purchase_request",
            entity_id,
            getattr(status, "value", status),
            getattr(action, "value", str(action)),
            allowed_actions(status),
        )
    return target


def action_label(action, fallback: str | None = None) -> str:
    resolved = _as_action(action)
    label = ACTION_LABELS.get(resolved) if resolved else None
    if label:
        return label
    if fallback is not None:
        return fallback
    return str(getattr(action, "value", action))


def stage_for_status(status) -> str:
    resolved = _as_status(status)
    return _STAGE_BY_STATUS.get(resolved, "request") if resolved else "request"


def _stage_index(stage: str) -> int:
    for idx, item in enumerate(PROCESS_STAGES):
        if item["key"] == stage:
            return idx
    return 0


def build_process_steps(current_stage: str) -> List[Dict[str, object]]:
    current_idx = _stage_index(current_stage)
    steps: List[Dict[str, object]] = []
    for idx, stage in enumerate(PROCESS_STAGES):
        state = "future"
        if idx < current_idx:
            state = "completed"
        elif idx == current_idx:
            state = "current"
        steps.append({"key": stage["key"], "label": stage["label"], "state": state})
    return steps


def flow_meta(status) -> Dict[str, object]:
    stage = stage_for_status(status)
    return {
        "stage": stage,
        "status": getattr(status, "value", status),
        "allowed_actions": allowed_actions(status),
        "primary_action": primary_action(status),
        "terminal": is_terminal(status),
        "process_steps": build_process_steps(stage),
    }
