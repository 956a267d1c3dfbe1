from __future__ import annotations

from typing import Iterable, Set

from prflow.contexts.audit.domain.sink import AuditEntry
from prflow.contexts.procurement.application.workflow_support import (
    PURCHASE_REQUEST_ENTITY,
    WorkflowServiceBase,
    WorkflowUnit,
)
from prflow.domain.contracts import Actor, AssignmentInput, ServiceOutput
from prflow.domain.statuses import AssignmentScope, NotificationType, PurchaseRequestStatus, Role, WorkflowAction
from prflow.errors import ItemsAlreadyAssignedError, invalid_transition, validation
from prflow.policies import require_roles
from prflow.procurement import flow_policy


def covered_item_ids(assignment: dict, all_item_ids: Set[int]) -> Set[int]:
    if assignment.get("scope") == AssignmentScope.FULL.value:
        return set(all_item_ids)
    return {int(item_id) for item_id in assignment.get("assigned_item_ids") or []}


class AssignmentPartitioner(WorkflowServiceBase):
    """Splits a purchase request's items across buyers without overlap."""

    def assign(self, db, actor: Actor, purchase_request_id: int, data: AssignmentInput) -> ServiceOutput:
        require_roles(
            actor.role,
            Role.BUYER_LEADER.value,
            message_key="not_buyer_leader",
            purchase_request_id=purchase_request_id,
        )
        try:
            scope = AssignmentScope(str(data.scope or "").strip().upper())
        except ValueError:
            raise validation("assignment_scope_invalid", scope=data.scope) from None

        unit = WorkflowUnit()
        with db.transaction():
            purchase_request = self._load_purchase_request(db, purchase_request_id)
            if purchase_request["status"] != PurchaseRequestStatus.BUYER_LEADER_PENDING.value:
                raise invalid_transition(
                    PURCHASE_REQUEST_ENTITY,
                    purchase_request_id,
                    purchase_request["status"],
                    "ASSIGN",
                    flow_policy.allowed_actions(purchase_request["status"]),
                )

            buyer = self.directory.get_user(db, int(data.buyer_id))
            if not buyer or buyer.get("role") != Role.BUYER.value:
                raise validation("buyer_invalid", buyer_id=data.buyer_id)

            all_item_ids = {int(item["id"]) for item in self.items.list_for_request(db, purchase_request_id)}
            requested = self._requested_items(scope, data.item_ids, all_item_ids, purchase_request_id)

            existing = self.assignments.list_for_request(db, purchase_request_id)
            for assignment in existing:
                conflicting = requested & covered_item_ids(assignment, all_item_ids)
                if conflicting:
                    raise ItemsAlreadyAssignedError(
                        details=f"items already assigned on purchase request {purchase_request_id}",
                        payload={
                            "purchase_request_id": purchase_request_id,
                            "conflicting_item_ids": sorted(conflicting),
                            "assigned_to_buyer": int(assignment["buyer_id"]),
                            "assignment_id": int(assignment["id"]),
                        },
                    )

            assignment_id = self.assignments.create(
                db,
                purchase_request_id=purchase_request_id,
                buyer_leader_id=actor.user_id,
                buyer_id=int(buyer["id"]),
                scope=scope.value,
                item_ids=None if scope is AssignmentScope.FULL else requested,
                note=str(data.note or "").strip() or None,
            )
            self.audit_sink.record(
                db,
                AuditEntry(
                    table_name="pr_assignments",
                    record_id=assignment_id,
                    action="CREATE",
                    user_id=actor.user_id,
                    new_data={"buyer_id": int(buyer["id"]), "scope": scope.value, "item_ids": sorted(requested)},
                ),
            )
            unit.plan.notify(
                buyer["id"],
                NotificationType.PR_ASSIGNED,
                related_id=purchase_request_id,
                role=buyer.get("role"),
                pr_number=purchase_request["pr_number"],
                item_count=len(requested),
            )

            covered: Set[int] = set(requested)
            for assignment in existing:
                covered |= covered_item_ids(assignment, all_item_ids)
            fully_assigned = covered >= all_item_ids
            if fully_assigned:
                self._transition(db, unit, purchase_request, WorkflowAction.COMPLETE_ASSIGNMENT, actor)
                unit.plan.resolve(NotificationType.PR_READY_FOR_ASSIGNMENT, related_id=purchase_request_id)

        self._after_commit(db, unit)
        self._logger.info(
            "purchase_request_assigned",
            extra={
                "purchase_request_id": purchase_request_id,
                "assignment_id": assignment_id,
                "buyer_id": int(buyer["id"]),
                "fully_assigned": fully_assigned,
            },
        )
        return ServiceOutput(
            {
                "assignment_id": assignment_id,
                "buyer_id": int(buyer["id"]),
                "scope": scope.value,
                "item_ids": sorted(requested),
                "fully_assigned": fully_assigned,
                "purchase_request": self.purchase_request_view(db, purchase_request_id),
            },
            201,
        )

    @staticmethod
    def _requested_items(
        scope: AssignmentScope,
        item_ids: Iterable[int] | None,
        all_item_ids: Set[int],
        purchase_request_id: int,
    ) -> Set[int]:
        if scope is AssignmentScope.FULL:
            return set(all_item_ids)
        try:
            requested = {int(item_id) for item_id in item_ids or []}
        except (TypeError, ValueError):
            raise validation("assignment_items_required", purchase_request_id=purchase_request_id) from None
        if not requested:
            raise validation("assignment_items_required", purchase_request_id=purchase_request_id)
        unknown = requested - all_item_ids
        if unknown:
            raise validation(
                "assignment_items_not_in_request",
                purchase_request_id=purchase_request_id,
                item_ids=sorted(unknown),
            )
        return requested

    def list_assignments(self, db, purchase_request_id: int) -> ServiceOutput:
        self._load_purchase_request(db, purchase_request_id, for_update=False)
        return ServiceOutput({"items": self.assignments.list_for_request(db, purchase_request_id)})

    def assigned_item_ids_for(self, db, buyer_id: int, purchase_request_id: int) -> Set[int]:
        all_item_ids = {int(item["id"]) for item in self.items.list_for_request(db, purchase_request_id)}
        assigned: Set[int] = set()
        for assignment in self.assignments.list_for_buyer(db, purchase_request_id, buyer_id):
            assigned |= covered_item_ids(assignment, all_item_ids)
        return assigned
