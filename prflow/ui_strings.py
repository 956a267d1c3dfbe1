from __future__ import annotations

from typing import Any, Dict, List


FRIENDLY_TERMS: Dict[str, str] = {
    "app_name": "PR Flow",
    "purchase_request": "Purchase request",
    "rfq": "Request for quotation",
    "quotation": "Quotation",
    "supplier_selection": "Supplier selection",
    "budget_exception": "Budget exception",
    "assignment": "Buyer assignment",
}


STATUS_GROUPS: Dict[str, List[Dict[str, str]]] = {
    "approval": [
        {"key": "DRAFT", "label": "Draft", "description": "Being prepared by the requestor."},
        {"key": "MANAGER_PENDING", "label": "Waiting for manager", "description": "Awaiting the direct manager decision."},
        {"key": "MANAGER_REJECTED", "label": "Rejected by manager", "description": "Closed by the direct manager."},
        {"key": "MANAGER_RETURNED", "label": "Returned by manager", "description": "Sent back to the requestor for changes."},
        {
            "key": "BRANCH_MANAGER_PENDING",
            "label": "Waiting for branch manager",
            "description": "Awaiting the branch manager decision.",
        },
        {"key": "BRANCH_MANAGER_REJECTED", "label": "Rejected by branch manager", "description": "Closed by the branch manager."},
        {
            "key": "BRANCH_MANAGER_RETURNED",
            "label": "Returned by branch manager",
            "description": "Sent back to the requestor for changes.",
        },
        {"key": "NEED_MORE_INFO", "label": "More information needed", "description": "Requestor must complete the request."},
    ],
    "sourcing": [
        {"key": "BUYER_LEADER_PENDING", "label": "Waiting for assignment", "description": "Buyer leader must assign buyers."},
        {"key": "ASSIGNED_TO_BUYER", "label": "Assigned", "description": "Every item has a responsible buyer."},
        {"key": "RFQ_IN_PROGRESS", "label": "Collecting quotations", "description": "An RFQ is open with suppliers."},
        {"key": "QUOTATION_RECEIVED", "label": "Quotations received", "description": "Enough valid quotations to decide."},
    ],
    "decision": [
        {"key": "SUPPLIER_SELECTED", "label": "Supplier selected", "description": "Selected within budget."},
        {"key": "BUDGET_EXCEPTION", "label": "Over budget", "description": "Branch manager must decide on the overrun."},
        {"key": "BUDGET_APPROVED", "label": "Budget approved", "description": "Overrun accepted by the branch manager."},
        {"key": "BUDGET_REJECTED", "label": "Budget rejected", "description": "Overrun refused by the branch manager."},
        {"key": "PAYMENT_DONE", "label": "Paid", "description": "Payment registered."},
        {"key": "CANCELLED", "label": "Cancelled", "description": "Withdrawn by the requestor."},
    ],
}


MESSAGES: Dict[str, Dict[str, str]] = {
    "error": {
        "action_invalid": "This action is not valid.",
        "validation_error": "The submitted data is invalid.",
        "not_found": "Record not found.",
        "purchase_request_not_found": "Purchase request not found.",
        "quotation_not_found": "Quotation not found.",
        "rfq_not_found": "RFQ not found.",
        "budget_exception_not_found": "Budget exception not found.",
        "notification_not_found": "Notification not found.",
        "user_not_found": "User not found.",
        "supplier_not_found": "Supplier not found.",
        "permission_denied": "You are not allowed to perform this action.",
        "auth_required": "Sign in to continue.",
        "not_direct_manager": "Only the requestor's direct manager can decide at this step.",
        "not_branch_manager": "Only a branch manager of this branch can decide at this step.",
        "not_requestor": "Only the requestor can change this purchase request.",
        "not_buyer_leader": "Only a buyer leader can perform this action.",
        "not_assigned_buyer": "You are not assigned to this purchase request.",
        "not_rfq_owner": "Only the buyer who opened the RFQ can change it.",
        "invalid_state_transition": "This action is not allowed in the current status.",
        "items_already_assigned": "Some items are already assigned to another buyer.",
        "already_selected": "This quotation has already been selected.",
        "no_approver_found": "No approver is configured for the next step.",
        "sequence_exhausted": "Could not allocate a request number. Try again.",
        "reason_required": "A justification is required for an over-budget selection.",
        "comment_required": "A comment is required.",
        "selection_reason_required": "A selection reason is required.",
        "items_required": "Add at least one item.",
        "item_description_required": "Every item needs a description.",
        "item_quantity_invalid": "Item quantities must be greater than zero.",
        "item_unit_price_invalid": "Item unit prices cannot be negative.",
        "lead_time_invalid": "Lead time must be zero or a positive number of days.",
        "tax_percent_invalid": "Tax percent cannot be negative.",
        "branch_code_required": "The purchase request has no branch to route the approval.",
        "assignment_scope_invalid": "Scope must be FULL or PARTIAL.",
        "assignment_items_required": "Select at least one item for a partial assignment.",
        "assignment_items_not_in_request": "Some items do not belong to this purchase request.",
        "buyer_invalid": "The selected user is not a buyer.",
        "quotation_items_not_assigned": "Some quoted items are not assigned to you.",
        "quotation_total_mismatch": "The quotation total does not match its items.",
        "quotation_not_in_request": "The quotation does not belong to this purchase request.",
        "quotation_not_valid": "Only valid quotations can be selected.",
        "unexpected_error": "The operation could not be completed. Try again shortly.",
    },
    "success": {
        "purchase_request_created": "Purchase request created.",
        "purchase_request_submitted": "Purchase request submitted for approval.",
        "purchase_request_approved": "Purchase request approved.",
        "purchase_request_returned": "Purchase request returned to the requestor.",
        "purchase_request_rejected": "Purchase request rejected.",
        "assignment_created": "Buyer assigned.",
        "quotation_created": "Quotation registered.",
        "supplier_selected": "Supplier selected.",
        "budget_exception_resolved": "Budget exception resolved.",
    },
}


NOTIFICATION_TEMPLATES: Dict[str, Dict[str, str]] = {
    "PR_PENDING_APPROVAL": {
        "title": "Purchase request awaiting approval",
        "message": "{pr_number} from {requestor_name} is waiting for your approval.",
    },
    "PR_DEPARTMENT_HEAD_APPROVED": {
        "title": "Approved by manager",
        "message": "{pr_number} was approved by your manager.",
    },
    "PR_PENDING_APPROVAL_BRANCH": {
        "title": "Purchase request awaiting branch approval",
        "message": "{pr_number} from department {department} is waiting for branch approval.",
    },
    "PR_BRANCH_MANAGER_APPROVED": {
        "title": "Approved by branch manager",
        "message": "{pr_number} was approved by the branch manager.",
    },
    "PR_RETURNED": {
        "title": "Purchase request returned",
        "message": "{pr_number} was returned: {reason}",
    },
    "PR_REJECTED": {
        "title": "Purchase request rejected",
        "message": "{pr_number} was rejected: {reason}",
    },
    "PR_READY_FOR_ASSIGNMENT": {
        "title": "Purchase request ready for assignment",
        "message": "{pr_number} is approved and needs a buyer.",
    },
    "PR_ASSIGNED": {
        "title": "Purchase request assigned",
        "message": "{pr_number} was assigned to you ({item_count} item(s)).",
    },
    "PR_QUOTATIONS_COMPLETE": {
        "title": "Quotations received",
        "message": "{pr_number} has enough valid quotations for a supplier decision.",
    },
    "PR_OVER_BUDGET": {
        "title": "Purchase request over budget",
        "message": "The selected supplier for {pr_number} exceeds the requested amount.",
    },
    "PR_OVER_BUDGET_DECISION_REQUIRED": {
        "title": "Budget decision required",
        "message": "{pr_number} is {over_percent}% over budget and needs your decision.",
    },
    "PR_OVER_BUDGET_ACTION_REQUIRED": {
        "title": "Over-budget selection pending",
        "message": "Your selection for {pr_number} is waiting for the branch manager.",
    },
    "PR_BUDGET_APPROVED": {
        "title": "Budget exception approved",
        "message": "The overrun on {pr_number} was approved.",
    },
    "PR_RETURNED_FROM_BRANCH_MANAGER": {
        "title": "Budget exception rejected",
        "message": "The overrun on {pr_number} was rejected: {reason}",
    },
    "PR_RETURNED_FOR_REQUOTE": {
        "title": "Negotiation requested",
        "message": "The branch manager asked to renegotiate {pr_number}: {reason}",
    },
    "PR_PAYMENT_DONE": {
        "title": "Payment registered",
        "message": "Payment for {pr_number} was registered.",
    },
}


def status_keys_for_group(group: str) -> List[str]:
    return [item["key"] for item in STATUS_GROUPS.get(group, [])]


def all_status_items() -> List[Dict[str, str]]:
    combined: List[Dict[str, str]] = []
    for group_items in STATUS_GROUPS.values():
        combined.extend(group_items)
    return combined


def build_status_labels() -> Dict[str, str]:
    return {item["key"]: item["label"] for item in all_status_items()}


STATUS_LABELS = build_status_labels()


def status_label(status: str | None) -> str:
    key = str(status or "")
    return STATUS_LABELS.get(key, key)


def get_message(category: str, key: str, default: str | None = None) -> str:
    message = MESSAGES.get(category, {}).get(key)
    if message:
        return message
    if default is not None:
        return default
    return key


def error_message(key: str, default: str | None = None) -> str:
    return get_message("error", key, default)


def success_message(key: str, default: str | None = None) -> str:
    return get_message("success", key, default)


class _SafeFormat(dict):
    def __missing__(self, key: str) -> str:
        return ""


def render_notification(notification_type: str, context: Dict[str, Any] | None = None) -> tuple[str, str]:
    template = NOTIFICATION_TEMPLATES.get(notification_type)
    if template is None:
        return notification_type, ""
    values = _SafeFormat({key: "" if value is None else value for key, value in (context or {}).items()})
    return template["title"].format_map(values), template["message"].format_map(values)
