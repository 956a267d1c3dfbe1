from __future__ import annotations

from enum import Enum
from typing import FrozenSet, Type


class PurchaseRequestStatus(str, Enum):
    DRAFT = "DRAFT"
    MANAGER_PENDING = "MANAGER_PENDING"
    MANAGER_REJECTED = "MANAGER_REJECTED"
    MANAGER_RETURNED = "MANAGER_RETURNED"
    BRANCH_MANAGER_PENDING = "BRANCH_MANAGER_PENDING"
    BRANCH_MANAGER_REJECTED = "BRANCH_MANAGER_REJECTED"
    BRANCH_MANAGER_RETURNED = "BRANCH_MANAGER_RETURNED"
    BUYER_LEADER_PENDING = "BUYER_LEADER_PENDING"
    ASSIGNED_TO_BUYER = "ASSIGNED_TO_BUYER"
    RFQ_IN_PROGRESS = "RFQ_IN_PROGRESS"
    QUOTATION_RECEIVED = "QUOTATION_RECEIVED"
    SUPPLIER_SELECTED = "SUPPLIER_SELECTED"
    BUDGET_EXCEPTION = "BUDGET_EXCEPTION"
    BUDGET_APPROVED = "BUDGET_APPROVED"
    BUDGET_REJECTED = "BUDGET_REJECTED"
    PAYMENT_DONE = "PAYMENT_DONE"
    CANCELLED = "CANCELLED"
    NEED_MORE_INFO = "NEED_MORE_INFO"


TERMINAL_STATUSES: FrozenSet[PurchaseRequestStatus] = frozenset(
    {
        PurchaseRequestStatus.MANAGER_REJECTED,
        PurchaseRequestStatus.BRANCH_MANAGER_REJECTED,
        PurchaseRequestStatus.BUDGET_REJECTED,
        PurchaseRequestStatus.PAYMENT_DONE,
        PurchaseRequestStatus.CANCELLED,
    }
)

EDITABLE_STATUSES: FrozenSet[PurchaseRequestStatus] = frozenset(
    {PurchaseRequestStatus.DRAFT, PurchaseRequestStatus.NEED_MORE_INFO}
)


class WorkflowAction(str, Enum):
    SUBMIT = "SUBMIT"
    MANAGER_APPROVE = "MANAGER_APPROVE"
    MANAGER_APPROVE_SKIP_BRANCH = "MANAGER_APPROVE_SKIP_BRANCH"
    MANAGER_REJECT = "MANAGER_REJECT"
    MANAGER_RETURN = "MANAGER_RETURN"
    BRANCH_MANAGER_APPROVE = "BRANCH_MANAGER_APPROVE"
    BRANCH_MANAGER_REJECT = "BRANCH_MANAGER_REJECT"
    BRANCH_MANAGER_RETURN = "BRANCH_MANAGER_RETURN"
    RESUBMIT = "RESUBMIT"
    COMPLETE_ASSIGNMENT = "COMPLETE_ASSIGNMENT"
    START_RFQ = "START_RFQ"
    RECEIVE_QUOTATIONS = "RECEIVE_QUOTATIONS"
    SELECT_SUPPLIER = "SELECT_SUPPLIER"
    SELECT_SUPPLIER_OVER_BUDGET = "SELECT_SUPPLIER_OVER_BUDGET"
    APPROVE_BUDGET = "APPROVE_BUDGET"
    REJECT_BUDGET = "REJECT_BUDGET"
    REQUEST_NEGOTIATION = "REQUEST_NEGOTIATION"
    MARK_PAYMENT_DONE = "MARK_PAYMENT_DONE"
    CANCEL = "CANCEL"


class ApprovalTier(str, Enum):
    MANAGER = "MANAGER"
    BRANCH_MANAGER = "BRANCH_MANAGER"


class ApprovalDecision(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    RETURN = "RETURN"


class AssignmentScope(str, Enum):
    FULL = "FULL"
    PARTIAL = "PARTIAL"


class RfqStatus(str, Enum):
    DRAFT = "DRAFT"
    SENT = "SENT"
    QUOTATION_RECEIVED = "QUOTATION_RECEIVED"
    CLOSED = "CLOSED"


class QuotationStatus(str, Enum):
    PENDING = "PENDING"
    VALID = "VALID"
    INVALID = "INVALID"
    SELECTED = "SELECTED"


class BudgetExceptionStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    NEGOTIATION_REQUESTED = "NEGOTIATION_REQUESTED"


class BudgetExceptionAction(str, Enum):
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    REQUEST_NEGOTIATION = "REQUEST_NEGOTIATION"


class NotificationStatus(str, Enum):
    UNREAD = "UNREAD"
    READ = "READ"
    RESOLVED = "RESOLVED"


class NotificationType(str, Enum):
    PR_PENDING_APPROVAL = "PR_PENDING_APPROVAL"
    PR_DEPARTMENT_HEAD_APPROVED = "PR_DEPARTMENT_HEAD_APPROVED"
    PR_PENDING_APPROVAL_BRANCH = "PR_PENDING_APPROVAL_BRANCH"
    PR_BRANCH_MANAGER_APPROVED = "PR_BRANCH_MANAGER_APPROVED"
    PR_RETURNED = "PR_RETURNED"
    PR_REJECTED = "PR_REJECTED"
    PR_READY_FOR_ASSIGNMENT = "PR_READY_FOR_ASSIGNMENT"
    PR_ASSIGNED = "PR_ASSIGNED"
    PR_QUOTATIONS_COMPLETE = "PR_QUOTATIONS_COMPLETE"
    PR_OVER_BUDGET = "PR_OVER_BUDGET"
    PR_OVER_BUDGET_DECISION_REQUIRED = "PR_OVER_BUDGET_DECISION_REQUIRED"
    PR_OVER_BUDGET_ACTION_REQUIRED = "PR_OVER_BUDGET_ACTION_REQUIRED"
    PR_BUDGET_APPROVED = "PR_BUDGET_APPROVED"
    PR_RETURNED_FROM_BRANCH_MANAGER = "PR_RETURNED_FROM_BRANCH_MANAGER"
    PR_RETURNED_FOR_REQUOTE = "PR_RETURNED_FOR_REQUOTE"
    PR_PAYMENT_DONE = "PR_PAYMENT_DONE"


class Role(str, Enum):
    REQUESTOR = "requestor"
    DEPARTMENT_HEAD = "department_head"
    BRANCH_MANAGER = "branch_manager"
    BUYER_LEADER = "buyer_leader"
    BUYER = "buyer"
    ADMIN = "admin"


def enum_values(enum_cls: Type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]
