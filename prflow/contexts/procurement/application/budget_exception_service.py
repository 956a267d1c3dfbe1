from __future__ import annotations

from prflow.contexts.audit.domain.sink import AuditEntry
from prflow.contexts.procurement.application.workflow_support import (
    WorkflowServiceBase,
    WorkflowUnit,
    no_approver,
)
from prflow.contexts.procurement.infrastructure.repositories import QuotationRepository
from prflow.core import BudgetExceptionRaised, BudgetExceptionResolved
from prflow.db import is_unique_violation
from prflow.domain.contracts import Actor, ServiceOutput, SupplierSelectionInput
from prflow.domain.statuses import (
    BudgetExceptionAction,
    BudgetExceptionStatus,
    NotificationType,
    QuotationStatus,
    Role,
    WorkflowAction,
)
from prflow.errors import (
    AlreadySelectedError,
    ReasonRequiredError,
    forbidden,
    invalid_transition,
    not_found,
    validation,
)
from prflow.policies import require_roles
from prflow.procurement.budget import is_over_budget, over_percent


N = NotificationType

_RESOLUTIONS = {
    BudgetExceptionAction.APPROVE: (WorkflowAction.APPROVE_BUDGET, BudgetExceptionStatus.APPROVED),
    BudgetExceptionAction.REJECT: (WorkflowAction.REJECT_BUDGET, BudgetExceptionStatus.REJECTED),
    BudgetExceptionAction.REQUEST_NEGOTIATION: (
        WorkflowAction.REQUEST_NEGOTIATION,
        BudgetExceptionStatus.NEGOTIATION_REQUESTED,
    ),
}


def already_selected(quotation_id: int, selection_id: int | None = None) -> AlreadySelectedError:
    return AlreadySelectedError(
        details=f"quotation {quotation_id} already selected",
        payload={"quotation_id": quotation_id, "supplier_selection_id": selection_id},
    )


class BudgetExceptionResolver(WorkflowServiceBase):
    """Supplier selection and the branch manager's decision on budget overruns."""

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self.quotations = QuotationRepository(tenant_id=self.tenant_id)

    def select_supplier(self, db, actor: Actor, purchase_request_id: int, data: SupplierSelectionInput) -> ServiceOutput:
        require_roles(
            actor.role,
            Role.BUYER_LEADER.value,
            message_key="not_buyer_leader",
            purchase_request_id=purchase_request_id,
        )
        reason = str(data.reason or "").strip()
        if not reason:
            raise validation("selection_reason_required", purchase_request_id=purchase_request_id)

        unit = WorkflowUnit()
        exception_id = None
        with db.transaction():
            purchase_request = self._load_purchase_request(db, purchase_request_id)
            self._check_transition(purchase_request, WorkflowAction.SELECT_SUPPLIER)

            quotation_id = int(data.quotation_id)
            quotation = self.quotations.get_by_id(db, quotation_id)
            if not quotation:
                raise not_found("quotation", quotation_id)
            if int(quotation["purchase_request_id"]) != int(purchase_request_id):
                raise validation(
                    "quotation_not_in_request",
                    purchase_request_id=purchase_request_id,
                    quotation_id=quotation_id,
                )
            existing = self.selections.get_by_quotation(db, quotation_id)
            if existing:
                raise already_selected(quotation_id, int(existing["id"]))
            if quotation["status"] != QuotationStatus.VALID.value:
                raise validation("quotation_not_valid", quotation_id=quotation_id, status=quotation["status"])

            pr_amount = float(purchase_request.get("total_amount") or 0)
            purchase_amount = float(quotation["total_amount"] or 0)
            over = is_over_budget(pr_amount, purchase_amount)
            over_budget_reason = str(data.over_budget_reason or "").strip() or None
            if over and not over_budget_reason:
                raise ReasonRequiredError(
                    details="over-budget selection without justification",
                    payload={
                        "purchase_request_id": purchase_request_id,
                        "quotation_id": quotation_id,
                        "over_percent": over_percent(pr_amount, purchase_amount),
                    },
                )

            branch_managers = []
            if over:
                branch_managers = self.directory.resolve_branch_managers(db, purchase_request.get("branch_code"))
                if not branch_managers:
                    raise no_approver("BRANCH_MANAGER", purchase_request_id, branch_code=purchase_request.get("branch_code"))

            try:
                with db.savepoint():
                    selection_id = self.selections.create(
                        db,
                        purchase_request_id=purchase_request_id,
                        quotation_id=quotation_id,
                        buyer_leader_id=actor.user_id,
                        selection_reason=reason,
                        over_budget_reason=over_budget_reason if over else None,
                    )
            except Exception as exc:
                if is_unique_violation(exc):
                    raise already_selected(quotation_id) from exc
                raise
            self.quotations.compare_and_set_status(
                db,
                quotation_id,
                expected_statuses=(QuotationStatus.VALID.value,),
                new_status=QuotationStatus.SELECTED.value,
            )
            self.audit_sink.record(
                db,
                AuditEntry(
                    table_name="supplier_selections",
                    record_id=selection_id,
                    action="CREATE",
                    user_id=actor.user_id,
                    new_data={"quotation_id": quotation_id, "purchase_amount": purchase_amount, "over_budget": over},
                ),
            )

            if over:
                percent = over_percent(pr_amount, purchase_amount)
                exception_id = self.budget_exceptions.create(
                    db,
                    purchase_request_id=purchase_request_id,
                    supplier_selection_id=selection_id,
                    pr_amount=pr_amount,
                    purchase_amount=purchase_amount,
                    over_percent=percent,
                    reason=over_budget_reason,
                    status=BudgetExceptionStatus.PENDING.value,
                )
                self._transition(
                    db,
                    unit,
                    purchase_request,
                    WorkflowAction.SELECT_SUPPLIER_OVER_BUDGET,
                    actor,
                    reason=over_budget_reason,
                )
                unit.events.append(
                    BudgetExceptionRaised(
                        tenant_id=self.tenant_id,
                        budget_exception_id=exception_id,
                        purchase_request_id=purchase_request_id,
                        over_percent=percent,
                    )
                )
                unit.plan.notify(
                    purchase_request["requestor_id"],
                    N.PR_OVER_BUDGET,
                    related_id=purchase_request_id,
                    pr_number=purchase_request["pr_number"],
                )
                unit.plan.notify_all(
                    branch_managers,
                    N.PR_OVER_BUDGET_DECISION_REQUIRED,
                    related_id=purchase_request_id,
                    pr_number=purchase_request["pr_number"],
                    over_percent=percent,
                )
                unit.plan.notify(
                    actor.user_id,
                    N.PR_OVER_BUDGET_ACTION_REQUIRED,
                    related_id=purchase_request_id,
                    role=actor.role,
                    pr_number=purchase_request["pr_number"],
                )
            else:
                self._transition(db, unit, purchase_request, WorkflowAction.SELECT_SUPPLIER, actor, reason=reason)
            unit.plan.resolve(N.PR_QUOTATIONS_COMPLETE, related_id=purchase_request_id)

        self._after_commit(db, unit)
        return ServiceOutput(
            {
                "supplier_selection_id": selection_id,
                "budget_exception_id": exception_id,
                "over_budget": over,
                "purchase_request": self.purchase_request_view(db, purchase_request_id),
            },
            201,
        )

    def approve(self, db, actor: Actor, budget_exception_id: int, comment: str | None = None) -> ServiceOutput:
        return self.resolve(db, actor, budget_exception_id, BudgetExceptionAction.APPROVE, comment)

    def reject(self, db, actor: Actor, budget_exception_id: int, comment: str | None = None) -> ServiceOutput:
        return self.resolve(db, actor, budget_exception_id, BudgetExceptionAction.REJECT, comment)

    def request_negotiation(self, db, actor: Actor, budget_exception_id: int, comment: str | None = None) -> ServiceOutput:
        return self.resolve(db, actor, budget_exception_id, BudgetExceptionAction.REQUEST_NEGOTIATION, comment)

    def resolve(
        self,
        db,
        actor: Actor,
        budget_exception_id: int,
        action: BudgetExceptionAction,
        comment: str | None = None,
    ) -> ServiceOutput:
        workflow_action, new_status = _RESOLUTIONS[BudgetExceptionAction(action)]
        comment = str(comment or "").strip() or None
        unit = WorkflowUnit()
        with db.transaction():
            exception = self.budget_exceptions.get_by_id(db, budget_exception_id)
            if not exception:
                raise not_found("budget_exception", budget_exception_id)
            purchase_request_id = int(exception["purchase_request_id"])
            purchase_request = self._load_purchase_request(db, purchase_request_id)

            branch_managers = self.directory.resolve_branch_managers(db, purchase_request.get("branch_code"))
            if int(actor.user_id) not in {int(user["id"]) for user in branch_managers}:
                raise forbidden(
                    "not_branch_manager",
                    budget_exception_id=budget_exception_id,
                    purchase_request_id=purchase_request_id,
                )
            if exception["status"] != BudgetExceptionStatus.PENDING.value:
                raise invalid_transition("budget_exception", budget_exception_id, exception["status"], action.value)
            self._check_transition(purchase_request, workflow_action)
            if action is not BudgetExceptionAction.APPROVE and not comment:
                raise validation("comment_required", budget_exception_id=budget_exception_id)

            changed = self.budget_exceptions.resolve(
                db,
                budget_exception_id,
                new_status=new_status.value,
                action=action.value,
                resolver_id=actor.user_id,
                comment=comment,
            )
            if not changed:
                raise invalid_transition("budget_exception", budget_exception_id, exception["status"], action.value)
            self.audit_sink.record(
                db,
                AuditEntry(
                    table_name="budget_exceptions",
                    record_id=budget_exception_id,
                    action="UPDATE",
                    user_id=actor.user_id,
                    old_data={"status": exception["status"]},
                    new_data={"status": new_status.value, "action": action.value, "comment": comment},
                ),
            )
            self._transition(db, unit, purchase_request, workflow_action, actor, reason=comment)
            unit.events.append(
                BudgetExceptionResolved(
                    tenant_id=self.tenant_id,
                    budget_exception_id=budget_exception_id,
                    purchase_request_id=purchase_request_id,
                    status=new_status.value,
                )
            )
            self._plan_resolution(db, unit, purchase_request, exception, action, comment)

        self._after_commit(db, unit)
        return ServiceOutput(
            {
                "budget_exception": self.budget_exceptions.get_by_id(db, budget_exception_id),
                "purchase_request": self.purchase_request_view(db, purchase_request_id),
            }
        )

    def _plan_resolution(self, db, unit: WorkflowUnit, purchase_request: dict, exception: dict, action, comment) -> None:
        purchase_request_id = int(purchase_request["id"])
        pr_number = purchase_request["pr_number"]
        leader_id = None
        for selection in self.selections.list_for_request(db, purchase_request_id):
            if int(selection["id"]) == int(exception["supplier_selection_id"]):
                leader_id = int(selection["buyer_leader_id"])

        plan = unit.plan
        plan.resolve(N.PR_OVER_BUDGET_DECISION_REQUIRED, related_id=purchase_request_id)
        plan.resolve(N.PR_OVER_BUDGET_ACTION_REQUIRED, related_id=purchase_request_id)
        if action is BudgetExceptionAction.REQUEST_NEGOTIATION:
            if leader_id:
                plan.notify(leader_id, N.PR_RETURNED_FOR_REQUOTE, related_id=purchase_request_id, pr_number=pr_number, reason=comment)
            return

        plan.resolve(N.PR_OVER_BUDGET, related_id=purchase_request_id)
        notification_type = N.PR_BUDGET_APPROVED if action is BudgetExceptionAction.APPROVE else N.PR_RETURNED_FROM_BRANCH_MANAGER
        recipients = [int(purchase_request["requestor_id"])]
        if leader_id and leader_id not in recipients:
            recipients.append(leader_id)
        for user_id in recipients:
            plan.notify(user_id, notification_type, related_id=purchase_request_id, pr_number=pr_number, reason=comment)

    def list_pending(self, db, branch_code: str | None = None) -> ServiceOutput:
        return ServiceOutput({"items": self.budget_exceptions.list_pending(db, branch_code=branch_code)})
