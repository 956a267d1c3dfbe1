from __future__ import annotations

from typing import Iterable, List

from prflow.contexts.audit.domain.sink import AuditEntry
from prflow.contexts.procurement.application.sequence_allocator import SequenceAllocator
from prflow.contexts.procurement.application.workflow_support import (
    PURCHASE_REQUEST_ENTITY,
    WorkflowServiceBase,
    WorkflowUnit,
    no_approver,
)
from prflow.core import PurchaseRequestCreated
from prflow.domain.contracts import Actor, PurchaseRequestCreateInput, PurchaseRequestItemInput, ServiceOutput
from prflow.domain.statuses import (
    EDITABLE_STATUSES,
    ApprovalDecision,
    ApprovalTier,
    NotificationType,
    PurchaseRequestStatus,
    Role,
    WorkflowAction,
)
from prflow.errors import forbidden, invalid_transition, validation
from prflow.policies import require_roles
from prflow.procurement import flow_policy
from prflow.procurement.budget import line_amount, non_negative_amount, positive_amount, request_total
from prflow.procurement.numbering import normalize_department_code


A = WorkflowAction
N = NotificationType


def _clean(value) -> str:
    return str(value or "").strip()


def validate_items(items: Iterable[PurchaseRequestItemInput] | None) -> List[PurchaseRequestItemInput]:
    checked = list(items or [])
    if not checked:
        raise validation("items_required")
    for index, item in enumerate(checked, start=1):
        if not _clean(item.description):
            raise validation("item_description_required", line_no=index)
        if not positive_amount(item.quantity):
            raise validation("item_quantity_invalid", line_no=index)
        if not non_negative_amount(item.unit_price):
            raise validation("item_unit_price_invalid", line_no=index)
    return checked


class PurchaseRequestWorkflow(WorkflowServiceBase):
    """Approval state machine for purchase requests.

    Every mutation runs in one ``db.transaction()``: the row is locked, the edge
    is checked against ``flow_policy.TRANSITIONS`` and written with a
    compare-and-set, then the status event, approval record and audit entry are
    added. Notifications and domain events are released only after commit.
    """

    def __init__(self, *, allocator: SequenceAllocator | None = None, default_currency: str = "VND", **kwargs) -> None:
        super().__init__(**kwargs)
        self.allocator = allocator or SequenceAllocator(self.purchase_requests)
        self.default_currency = default_currency

    # ------------------------------------------------------------------
    # Drafting
    # ------------------------------------------------------------------

    def create_purchase_request(self, db, actor: Actor, data: PurchaseRequestCreateInput) -> ServiceOutput:
        items = validate_items(data.items)
        if data.tax_percent is not None and float(data.tax_percent) < 0:
            raise validation("tax_percent_invalid")

        requestor = self.directory.get_user(db, actor.user_id) or {}
        department = normalize_department_code(data.department or actor.department or requestor.get("department"))
        branch_code = _clean(requestor.get("branch_code") or actor.branch_code) or None
        unit = WorkflowUnit()

        with db.transaction():
            created: dict = {}

            def _claim(number: str) -> None:
                created["id"] = self.purchase_requests.create(
                    db,
                    pr_number=number,
                    requestor_id=actor.user_id,
                    department=department,
                    branch_code=branch_code,
                    title=_clean(data.title) or None,
                    currency=_clean(data.currency).upper() or self.default_currency,
                    tax_percent=data.tax_percent,
                    declared_amount=data.declared_amount,
                    notes=_clean(data.notes) or None,
                    required_date=data.required_date,
                    status=PurchaseRequestStatus.DRAFT.value,
                )

            pr_number = self.allocator.allocate(db, department, claim=_claim)
            purchase_request_id = int(created["id"])
            self.items.add_items(db, purchase_request_id, items)
            total = request_total(
                (line_amount(item.quantity, item.unit_price) for item in items),
                tax_percent=data.tax_percent,
                declared_amount=data.declared_amount,
            )
            self.purchase_requests.update_fields(db, purchase_request_id, {"total_amount": total})
            self.status_events.add_event(
                db,
                entity=PURCHASE_REQUEST_ENTITY,
                entity_id=purchase_request_id,
                from_status=None,
                to_status=PurchaseRequestStatus.DRAFT.value,
                action="CREATE",
                actor_id=actor.user_id,
            )
            self.audit_sink.record(
                db,
                AuditEntry(
                    table_name="purchase_requests",
                    record_id=purchase_request_id,
                    action="CREATE",
                    user_id=actor.user_id,
                    new_data={"pr_number": pr_number, "department": department, "total_amount": total},
                ),
            )
            unit.events.append(
                PurchaseRequestCreated(
                    tenant_id=self.tenant_id,
                    purchase_request_id=purchase_request_id,
                    pr_number=pr_number,
                    status=PurchaseRequestStatus.DRAFT.value,
                    items_created=len(items),
                )
            )
            if data.submit:
                purchase_request = self._load_purchase_request(db, purchase_request_id)
                self._submit(db, unit, purchase_request, actor)

        self._after_commit(db, unit)
        self._logger.info(
            "purchase_request_created",
            extra={"purchase_request_id": purchase_request_id, "pr_number": pr_number, "tenant_id": self.tenant_id},
        )
        return ServiceOutput(self.purchase_request_view(db, purchase_request_id), 201)

    def replace_items(self, db, actor: Actor, purchase_request_id: int, items) -> ServiceOutput:
        checked = validate_items(items)
        with db.transaction():
            purchase_request = self._load_purchase_request(db, purchase_request_id)
            self._require_requestor(actor, purchase_request)
            if purchase_request["status"] not in {status.value for status in EDITABLE_STATUSES}:
                raise invalid_transition(
                    PURCHASE_REQUEST_ENTITY,
                    purchase_request_id,
                    purchase_request["status"],
                    "EDIT_ITEMS",
                    flow_policy.allowed_actions(purchase_request["status"]),
                )
            removed = self.items.soft_delete_for_request(db, purchase_request_id)
            self.items.add_items(db, purchase_request_id, checked)
            total = self._recompute_total(db, purchase_request)
            self.audit_sink.record(
                db,
                AuditEntry(
                    table_name="purchase_request_items",
                    record_id=int(purchase_request_id),
                    action="UPDATE",
                    user_id=actor.user_id,
                    old_data={"items": removed, "total_amount": purchase_request.get("total_amount")},
                    new_data={"items": len(checked), "total_amount": total},
                ),
            )
        return ServiceOutput(self.purchase_request_view(db, purchase_request_id))

    def _recompute_total(self, db, purchase_request: dict) -> float:
        total = request_total(
            (float(item["amount"] or 0) for item in self.items.list_for_request(db, int(purchase_request["id"]))),
            tax_percent=purchase_request.get("tax_percent"),
            declared_amount=purchase_request.get("declared_amount"),
        )
        self.purchase_requests.update_fields(db, int(purchase_request["id"]), {"total_amount": total})
        purchase_request["total_amount"] = total
        return total

    @staticmethod
    def _require_requestor(actor: Actor, purchase_request: dict) -> None:
        if int(purchase_request["requestor_id"]) != int(actor.user_id):
            raise forbidden("not_requestor", purchase_request_id=purchase_request["id"])

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(self, db, actor: Actor, purchase_request_id: int) -> ServiceOutput:
        unit = WorkflowUnit()
        with db.transaction():
            purchase_request = self._load_purchase_request(db, purchase_request_id)
            self._submit(db, unit, purchase_request, actor)
        self._after_commit(db, unit)
        return ServiceOutput(self.purchase_request_view(db, purchase_request_id))

    def _submit(self, db, unit: WorkflowUnit, purchase_request: dict, actor: Actor) -> None:
        self._check_transition(purchase_request, A.SUBMIT)
        self._require_requestor(actor, purchase_request)
        if not self.items.list_for_request(db, int(purchase_request["id"])):
            raise validation("items_required", purchase_request_id=purchase_request["id"])
        manager = self._direct_manager(db, purchase_request)

        fields = {}
        if not purchase_request.get("branch_code"):
            requestor = self.directory.get_user(db, int(purchase_request["requestor_id"])) or {}
            if requestor.get("branch_code"):
                fields["branch_code"] = requestor["branch_code"]

        self._transition(db, unit, purchase_request, A.SUBMIT, actor, fields=fields or None)
        unit.plan.notify(
            manager["id"],
            N.PR_PENDING_APPROVAL,
            related_id=purchase_request["id"],
            role=manager.get("role"),
            pr_number=purchase_request["pr_number"],
            requestor_name=self._requestor_name(db, purchase_request),
        )

    def resubmit(self, db, actor: Actor, purchase_request_id: int, notes: str | None = None) -> ServiceOutput:
        unit = WorkflowUnit()
        with db.transaction():
            purchase_request = self._load_purchase_request(db, purchase_request_id)
            self._check_transition(purchase_request, A.RESUBMIT)
            self._require_requestor(actor, purchase_request)
            manager = self._direct_manager(db, purchase_request)
            total = self._recompute_total(db, purchase_request)
            fields = {"total_amount": total}
            if _clean(notes):
                fields["notes"] = _clean(notes)
            self._transition(db, unit, purchase_request, A.RESUBMIT, actor, reason=_clean(notes) or None, fields=fields)
            unit.plan.resolve(N.PR_RETURNED, related_id=purchase_request_id)
            unit.plan.notify(
                manager["id"],
                N.PR_PENDING_APPROVAL,
                related_id=purchase_request_id,
                role=manager.get("role"),
                pr_number=purchase_request["pr_number"],
                requestor_name=self._requestor_name(db, purchase_request),
            )
        self._after_commit(db, unit)
        return ServiceOutput(self.purchase_request_view(db, purchase_request_id))

    def _direct_manager(self, db, purchase_request: dict) -> dict:
        manager = self.directory.resolve_manager_of(db, int(purchase_request["requestor_id"]))
        if not manager:
            raise no_approver(ApprovalTier.MANAGER.value, purchase_request["id"])
        return manager

    # ------------------------------------------------------------------
    # Manager tier
    # ------------------------------------------------------------------

    def manager_approve(self, db, actor: Actor, purchase_request_id: int, comment: str | None = None) -> ServiceOutput:
        return self._manager_decide(db, actor, purchase_request_id, ApprovalDecision.APPROVE, comment)

    def manager_reject(self, db, actor: Actor, purchase_request_id: int, comment: str | None = None) -> ServiceOutput:
        return self._manager_decide(db, actor, purchase_request_id, ApprovalDecision.REJECT, comment)

    def manager_return(self, db, actor: Actor, purchase_request_id: int, comment: str | None = None) -> ServiceOutput:
        return self._manager_decide(db, actor, purchase_request_id, ApprovalDecision.RETURN, comment)

    def _manager_decide(self, db, actor: Actor, purchase_request_id: int, decision: ApprovalDecision, comment) -> ServiceOutput:
        unit = WorkflowUnit()
        comment = _clean(comment) or None
        with db.transaction():
            purchase_request = self._load_purchase_request(db, purchase_request_id)
            self._check_transition(purchase_request, A.MANAGER_APPROVE)
            manager = self.directory.resolve_manager_of(db, int(purchase_request["requestor_id"]))
            if not manager or int(manager["id"]) != int(actor.user_id):
                raise forbidden("not_direct_manager", purchase_request_id=purchase_request_id)

            if decision is ApprovalDecision.APPROVE:
                self._manager_approve(db, unit, purchase_request, actor)
            else:
                action = A.MANAGER_REJECT if decision is ApprovalDecision.REJECT else A.MANAGER_RETURN
                self._send_back(db, unit, purchase_request, actor, action, comment)
                unit.plan.resolve(N.PR_PENDING_APPROVAL, related_id=purchase_request_id)

            self.approvals.add(
                db,
                purchase_request_id=purchase_request_id,
                approver_id=actor.user_id,
                tier=ApprovalTier.MANAGER.value,
                action=decision.value,
                comment=comment,
            )
        self._after_commit(db, unit)
        return ServiceOutput(self.purchase_request_view(db, purchase_request_id))

    def _manager_approve(self, db, unit: WorkflowUnit, purchase_request: dict, actor: Actor) -> None:
        purchase_request_id = int(purchase_request["id"])
        branch_code = _clean(purchase_request.get("branch_code"))
        if not branch_code:
            raise validation("branch_code_required", purchase_request_id=purchase_request_id)

        if self._needs_second_approval(db, branch_code):
            branch_managers = self.directory.resolve_branch_managers(db, branch_code)
            if not branch_managers:
                raise no_approver(ApprovalTier.BRANCH_MANAGER.value, purchase_request_id, branch_code=branch_code)
            self._transition(db, unit, purchase_request, A.MANAGER_APPROVE, actor)
            unit.plan.notify_all(
                branch_managers,
                N.PR_PENDING_APPROVAL_BRANCH,
                related_id=purchase_request_id,
                pr_number=purchase_request["pr_number"],
                department=purchase_request.get("department"),
            )
        else:
            leaders = self.directory.resolve_buyer_leaders(db)
            if not leaders:
                raise no_approver(Role.BUYER_LEADER.value.upper(), purchase_request_id)
            self._transition(db, unit, purchase_request, A.MANAGER_APPROVE_SKIP_BRANCH, actor)
            unit.plan.notify_all(
                leaders,
                N.PR_READY_FOR_ASSIGNMENT,
                related_id=purchase_request_id,
                pr_number=purchase_request["pr_number"],
            )

        unit.plan.resolve(N.PR_PENDING_APPROVAL, related_id=purchase_request_id)
        unit.plan.notify(
            purchase_request["requestor_id"],
            N.PR_DEPARTMENT_HEAD_APPROVED,
            related_id=purchase_request_id,
            pr_number=purchase_request["pr_number"],
        )

    def _send_back(self, db, unit: WorkflowUnit, purchase_request: dict, actor: Actor, action: A, comment) -> None:
        if not comment:
            raise validation("comment_required", purchase_request_id=purchase_request["id"])
        self._transition(db, unit, purchase_request, action, actor, reason=comment, fields={"notes": comment})
        rejected = action in (A.MANAGER_REJECT, A.BRANCH_MANAGER_REJECT)
        unit.plan.notify(
            purchase_request["requestor_id"],
            N.PR_REJECTED if rejected else N.PR_RETURNED,
            related_id=purchase_request["id"],
            pr_number=purchase_request["pr_number"],
            reason=comment,
        )

    # ------------------------------------------------------------------
    # Branch manager tier
    # ------------------------------------------------------------------

    def branch_manager_approve(self, db, actor: Actor, purchase_request_id: int, comment: str | None = None) -> ServiceOutput:
        return self._branch_decide(db, actor, purchase_request_id, ApprovalDecision.APPROVE, comment)

    def branch_manager_reject(self, db, actor: Actor, purchase_request_id: int, comment: str | None = None) -> ServiceOutput:
        return self._branch_decide(db, actor, purchase_request_id, ApprovalDecision.REJECT, comment)

    def branch_manager_return(self, db, actor: Actor, purchase_request_id: int, comment: str | None = None) -> ServiceOutput:
        return self._branch_decide(db, actor, purchase_request_id, ApprovalDecision.RETURN, comment)

    def _branch_decide(self, db, actor: Actor, purchase_request_id: int, decision: ApprovalDecision, comment) -> ServiceOutput:
        unit = WorkflowUnit()
        comment = _clean(comment) or None
        with db.transaction():
            purchase_request = self._load_purchase_request(db, purchase_request_id)
            self._check_transition(purchase_request, A.BRANCH_MANAGER_APPROVE)
            self._require_branch_manager(db, actor, purchase_request)

            if decision is ApprovalDecision.APPROVE:
                leaders = self.directory.resolve_buyer_leaders(db)
                if not leaders:
                    raise no_approver(Role.BUYER_LEADER.value.upper(), purchase_request_id)
                self._transition(db, unit, purchase_request, A.BRANCH_MANAGER_APPROVE, actor)
                unit.plan.resolve(N.PR_DEPARTMENT_HEAD_APPROVED, related_id=purchase_request_id)
                unit.plan.notify(
                    purchase_request["requestor_id"],
                    N.PR_BRANCH_MANAGER_APPROVED,
                    related_id=purchase_request_id,
                    pr_number=purchase_request["pr_number"],
                )
                unit.plan.notify_all(
                    leaders,
                    N.PR_READY_FOR_ASSIGNMENT,
                    related_id=purchase_request_id,
                    pr_number=purchase_request["pr_number"],
                )
            else:
                action = A.BRANCH_MANAGER_REJECT if decision is ApprovalDecision.REJECT else A.BRANCH_MANAGER_RETURN
                self._send_back(db, unit, purchase_request, actor, action, comment)
            unit.plan.resolve(N.PR_PENDING_APPROVAL_BRANCH, related_id=purchase_request_id)

            self.approvals.add(
                db,
                purchase_request_id=purchase_request_id,
                approver_id=actor.user_id,
                tier=ApprovalTier.BRANCH_MANAGER.value,
                action=decision.value,
                comment=comment,
            )
        self._after_commit(db, unit)
        return ServiceOutput(self.purchase_request_view(db, purchase_request_id))

    def _require_branch_manager(self, db, actor: Actor, purchase_request: dict) -> None:
        branch_managers = self.directory.resolve_branch_managers(db, purchase_request.get("branch_code"))
        if int(actor.user_id) not in {int(user["id"]) for user in branch_managers}:
            raise forbidden("not_branch_manager", purchase_request_id=purchase_request["id"])

    # ------------------------------------------------------------------
    # Closing
    # ------------------------------------------------------------------

    def cancel(self, db, actor: Actor, purchase_request_id: int, reason: str | None = None) -> ServiceOutput:
        unit = WorkflowUnit()
        reason = _clean(reason) or None
        with db.transaction():
            purchase_request = self._load_purchase_request(db, purchase_request_id)
            self._check_transition(purchase_request, A.CANCEL)
            self._require_requestor(actor, purchase_request)
            fields = {"notes": reason} if reason else None
            self._transition(db, unit, purchase_request, A.CANCEL, actor, reason=reason, fields=fields)
            unit.plan.resolve(N.PR_RETURNED, related_id=purchase_request_id)
        self._after_commit(db, unit)
        return ServiceOutput(self.purchase_request_view(db, purchase_request_id))

    def mark_payment_done(self, db, actor: Actor, purchase_request_id: int) -> ServiceOutput:
        unit = WorkflowUnit()
        with db.transaction():
            purchase_request = self._load_purchase_request(db, purchase_request_id)
            self._check_transition(purchase_request, A.MARK_PAYMENT_DONE)
            require_roles(
                actor.role,
                Role.BUYER_LEADER.value,
                message_key="not_buyer_leader",
                purchase_request_id=purchase_request_id,
            )
            self._transition(db, unit, purchase_request, A.MARK_PAYMENT_DONE, actor)
            unit.plan.notify(
                purchase_request["requestor_id"],
                N.PR_PAYMENT_DONE,
                related_id=purchase_request_id,
                pr_number=purchase_request["pr_number"],
            )
        self._after_commit(db, unit)
        return ServiceOutput(self.purchase_request_view(db, purchase_request_id))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_purchase_request(self, db, purchase_request_id: int) -> ServiceOutput:
        return ServiceOutput(self.purchase_request_view(db, purchase_request_id))

    def history(self, db, purchase_request_id: int) -> ServiceOutput:
        self._load_purchase_request(db, purchase_request_id, for_update=False)
        events = self.status_events.list_for_entity(db, entity=PURCHASE_REQUEST_ENTITY, entity_id=purchase_request_id)
        return ServiceOutput({"purchase_request_id": purchase_request_id, "events": events})

    def list_purchase_requests(self, db, *, requestor_id: int | None = None, status: str | None = None) -> ServiceOutput:
        items = self.purchase_requests.list_summary(db, requestor_id=requestor_id, status=status)
        return ServiceOutput({"items": items})
