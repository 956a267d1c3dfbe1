from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from prflow.contexts.audit.domain.sink import AuditEntry, AuditSink
from prflow.contexts.audit.infrastructure.sql_audit_sink import SqlAuditSink
from prflow.contexts.directory.domain.lookup import DEFAULT_NEEDS_SECOND_APPROVAL, DirectoryLookup
from prflow.contexts.directory.infrastructure.sql_directory import SqlDirectoryLookup
from prflow.contexts.notifications.application.service import NotificationLifecycleManager
from prflow.contexts.notifications.domain.plan import NotificationPlan
from prflow.contexts.procurement.infrastructure.repositories import (
    ApprovalRepository,
    AssignmentRepository,
    BudgetExceptionRepository,
    PurchaseRequestItemRepository,
    PurchaseRequestRepository,
    RfqRepository,
    StatusEventRepository,
    SupplierSelectionRepository,
)
from prflow.core import DomainEvent, EventBus, PurchaseRequestTransitioned, get_event_bus
from prflow.domain.contracts import Actor
from prflow.domain.statuses import WorkflowAction
from prflow.errors import NoApproverFoundError, invalid_transition, not_found
from prflow.observability import observe_workflow_transition
from prflow.procurement import flow_policy
from prflow.tenant import scoped_tenant_id


PURCHASE_REQUEST_ENTITY = "purchase_request"


def no_approver(tier: str, purchase_request_id: int, **ids) -> NoApproverFoundError:
    return NoApproverFoundError(
        details=f"no {tier.lower()} approver for purchase request {purchase_request_id}",
        payload={"tier": tier, "purchase_request_id": purchase_request_id, **ids},
    )


@dataclass
class WorkflowUnit:
    """Side effects gathered inside one transaction and released after commit."""

    plan: NotificationPlan = field(default_factory=NotificationPlan)
    events: List[DomainEvent] = field(default_factory=list)


class WorkflowServiceBase:
    def __init__(
        self,
        *,
        tenant_id: str | None = None,
        directory: DirectoryLookup | None = None,
        notifications: NotificationLifecycleManager | None = None,
        audit_sink: AuditSink | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self.tenant_id = scoped_tenant_id(tenant_id)
        self.directory = directory or SqlDirectoryLookup(tenant_id=self.tenant_id)
        self.notifications = notifications or NotificationLifecycleManager(tenant_id=self.tenant_id)
        self.audit_sink = audit_sink or SqlAuditSink(tenant_id=self.tenant_id)
        self.event_bus = event_bus or get_event_bus()

        self.purchase_requests = PurchaseRequestRepository(tenant_id=self.tenant_id)
        self.items = PurchaseRequestItemRepository(tenant_id=self.tenant_id)
        self.approvals = ApprovalRepository(tenant_id=self.tenant_id)
        self.assignments = AssignmentRepository(tenant_id=self.tenant_id)
        self.status_events = StatusEventRepository(tenant_id=self.tenant_id)
        self.rfqs = RfqRepository(tenant_id=self.tenant_id)
        self.selections = SupplierSelectionRepository(tenant_id=self.tenant_id)
        self.budget_exceptions = BudgetExceptionRepository(tenant_id=self.tenant_id)
        self._logger = logging.getLogger("prflow")

    def _load_purchase_request(self, db, purchase_request_id: int, *, for_update: bool = True) -> dict:
        purchase_request = self.purchase_requests.get_by_id(db, purchase_request_id, for_update=for_update)
        if not purchase_request:
            raise not_found(PURCHASE_REQUEST_ENTITY, purchase_request_id)
        return purchase_request

    @staticmethod
    def _check_transition(purchase_request: dict, action: WorkflowAction):
        return flow_policy.transition(purchase_request["id"], purchase_request["status"], action)

    def _transition(
        self,
        db,
        unit: WorkflowUnit,
        purchase_request: dict,
        action: WorkflowAction,
        actor: Actor,
        *,
        reason: str | None = None,
        fields: Dict[str, Any] | None = None,
    ) -> str:
        """Apply one table edge with compare-and-set and record its trail.

        ``purchase_request`` is updated in place so later steps of the same unit
        see the new status.
        """
        from_status = str(purchase_request["status"])
        target = self._check_transition(purchase_request, action).value
        changed = self.purchase_requests.compare_and_set_status(
            db,
            int(purchase_request["id"]),
            expected_status=from_status,
            new_status=target,
            fields=fields,
        )
        if not changed:
            raise invalid_transition(PURCHASE_REQUEST_ENTITY, purchase_request["id"], from_status, action.value)

        self.status_events.add_event(
            db,
            entity=PURCHASE_REQUEST_ENTITY,
            entity_id=int(purchase_request["id"]),
            from_status=from_status,
            to_status=target,
            action=action.value,
            reason=reason,
            actor_id=actor.user_id,
        )
        extra = dict(fields or {})
        self.audit_sink.record(
            db,
            AuditEntry(
                table_name="purchase_requests",
                record_id=int(purchase_request["id"]),
                action="UPDATE",
                user_id=actor.user_id,
                old_data={"status": from_status, **{key: purchase_request.get(key) for key in extra}},
                new_data={"status": target, **extra},
            ),
        )
        unit.events.append(
            PurchaseRequestTransitioned(
                tenant_id=self.tenant_id,
                purchase_request_id=int(purchase_request["id"]),
                action=action.value,
                from_status=from_status,
                to_status=target,
                actor_id=actor.user_id,
            )
        )
        purchase_request.update(extra)
        purchase_request["status"] = target
        return target

    def _after_commit(self, db, unit: WorkflowUnit) -> None:
        for event in unit.events:
            if isinstance(event, PurchaseRequestTransitioned):
                observe_workflow_transition(event.action, event.to_status)
                self._logger.info(
                    "workflow_transition",
                    extra={
                        "purchase_request_id": event.purchase_request_id,
                        "workflow_action": event.action,
                        "from_status": event.from_status,
                        "to_status": event.to_status,
                        "actor_id": event.actor_id,
                        "tenant_id": self.tenant_id,
                    },
                )
            self.event_bus.publish(event)
        if len(unit.plan):
            self.notifications.dispatch(db, unit.plan)

    def _needs_second_approval(self, db, branch_code: str | None) -> bool:
        try:
            return bool(self.directory.branch_needs_second_approval(db, branch_code))
        except Exception:  # noqa: BLE001
            self._logger.warning(
                "branch_rule_unreadable",
                extra={"branch_code": branch_code, "tenant_id": self.tenant_id},
                exc_info=True,
            )
            return DEFAULT_NEEDS_SECOND_APPROVAL

    def _requestor_name(self, db, purchase_request: dict) -> str:
        requestor = self.directory.get_user(db, int(purchase_request["requestor_id"])) or {}
        return str(requestor.get("name") or "")

    def purchase_request_view(self, db, purchase_request_id: int) -> dict:
        purchase_request = self._load_purchase_request(db, purchase_request_id, for_update=False)
        data = dict(purchase_request)
        data["items"] = self.items.list_for_request(db, purchase_request_id)
        data["approvals"] = self.approvals.list_for_request(db, purchase_request_id)
        data["assignments"] = self.assignments.list_for_request(db, purchase_request_id)
        data["rfqs"] = self.rfqs.list_for_request(db, purchase_request_id)
        data["supplier_selections"] = self.selections.list_for_request(db, purchase_request_id)
        data["budget_exceptions"] = self.budget_exceptions.list_for_request(db, purchase_request_id)
        data["flow"] = flow_policy.flow_meta(purchase_request["status"])
        return data
