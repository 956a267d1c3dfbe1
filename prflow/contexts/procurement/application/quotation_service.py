from __future__ import annotations

from typing import List

from prflow.contexts.audit.domain.sink import AuditEntry
from prflow.contexts.procurement.application.assignment_service import covered_item_ids
from prflow.contexts.procurement.application.sequence_allocator import SequenceAllocator
from prflow.contexts.procurement.application.workflow_support import (
    PURCHASE_REQUEST_ENTITY,
    WorkflowServiceBase,
    WorkflowUnit,
)
from prflow.contexts.procurement.infrastructure.repositories import QuotationRepository, SupplierRepository
from prflow.core import QuotationRecorded
from prflow.domain.contracts import Actor, QuotationCreateInput, ServiceOutput
from prflow.domain.statuses import (
    NotificationType,
    PurchaseRequestStatus,
    QuotationStatus,
    RfqStatus,
    Role,
    WorkflowAction,
)
from prflow.errors import forbidden, invalid_transition, not_found, validation
from prflow.policies import require_roles
from prflow.procurement import flow_policy
from prflow.procurement.budget import line_amount, non_negative_amount, positive_amount, totals_match
from prflow.procurement.scoring import (
    MIN_QUOTATIONS_FOR_SCORING,
    ScoreBreakdown,
    ScoringCandidate,
    recommended_quotation_id,
    score_candidates,
)


SCORED_STATUSES = (QuotationStatus.VALID.value, QuotationStatus.PENDING.value)
COUNTED_STATUSES = (QuotationStatus.VALID.value, QuotationStatus.SELECTED.value)
OPEN_RFQ_STATUSES = (RfqStatus.DRAFT.value, RfqStatus.SENT.value)


class QuotationScorer:
    """Weighted recommendation over the VALID and PENDING quotations of one RFQ."""

    def __init__(self, *, tenant_id: str, repository: QuotationRepository | None = None) -> None:
        self.tenant_id = tenant_id
        self.repository = repository or QuotationRepository(tenant_id=tenant_id)

    def rescore_all(self, db, rfq_id: int) -> List[ScoreBreakdown]:
        with db.transaction():
            quotations = self.repository.list_for_rfq(db, rfq_id, statuses=SCORED_STATUSES)
            candidates = [
                ScoringCandidate(
                    quotation_id=int(quotation["id"]),
                    total_amount=float(quotation["total_amount"] or 0),
                    lead_time_days=quotation.get("lead_time_days"),
                    payment_terms=quotation.get("payment_terms"),
                )
                for quotation in quotations
            ]
            scores = score_candidates(candidates)
            self.repository.clear_scores(db, rfq_id)
            recommended = recommended_quotation_id(scores)
            for breakdown in scores:
                self.repository.set_score(
                    db,
                    breakdown.quotation_id,
                    score=breakdown.total,
                    is_recommended=breakdown.quotation_id == recommended,
                )
        return scores

    def score(self, db, quotation_id: int) -> float | None:
        quotation = self.repository.get_by_id(db, quotation_id)
        if not quotation:
            raise not_found("quotation", quotation_id)
        self.rescore_all(db, int(quotation["rfq_id"]))
        refreshed = self.repository.get_by_id(db, quotation_id) or {}
        score = refreshed.get("recommendation_score")
        return float(score) if score is not None else None


class QuotationService(WorkflowServiceBase):
    """Buyer side of sourcing: RFQs, supplier quotations and their validation."""

    def __init__(
        self,
        *,
        rfq_allocator: SequenceAllocator | None = None,
        scorer: QuotationScorer | None = None,
        default_currency: str = "VND",
        **kwargs,
    ) -> None:
        super().__init__(**kwargs)
        self.quotations = QuotationRepository(tenant_id=self.tenant_id)
        self.suppliers = SupplierRepository(tenant_id=self.tenant_id)
        self.rfq_allocator = rfq_allocator or SequenceAllocator(self.rfqs)
        self.scorer = scorer or QuotationScorer(tenant_id=self.tenant_id, repository=self.quotations)
        self.default_currency = default_currency

    def create_rfq(self, db, actor: Actor, purchase_request_id: int, notes: str | None = None) -> ServiceOutput:
        require_roles(actor.role, Role.BUYER.value, message_key="not_assigned_buyer", purchase_request_id=purchase_request_id)
        unit = WorkflowUnit()
        with db.transaction():
            purchase_request = self._load_purchase_request(db, purchase_request_id)
            status = purchase_request["status"]
            if status not in (PurchaseRequestStatus.ASSIGNED_TO_BUYER.value, PurchaseRequestStatus.RFQ_IN_PROGRESS.value):
                raise invalid_transition(
                    PURCHASE_REQUEST_ENTITY,
                    purchase_request_id,
                    status,
                    WorkflowAction.START_RFQ.value,
                    flow_policy.allowed_actions(status),
                )
            if not self.assignments.list_for_buyer(db, purchase_request_id, actor.user_id):
                raise forbidden("not_assigned_buyer", purchase_request_id=purchase_request_id)

            created: dict = {}

            def _claim(number: str) -> None:
                created["id"] = self.rfqs.create(
                    db,
                    rfq_number=number,
                    purchase_request_id=purchase_request_id,
                    buyer_id=actor.user_id,
                    status=RfqStatus.DRAFT.value,
                    notes=str(notes or "").strip() or None,
                )

            rfq_number = self.rfq_allocator.allocate_rfq_number(db, claim=_claim)
            rfq_id = int(created["id"])
            self.audit_sink.record(
                db,
                AuditEntry(
                    table_name="rfqs",
                    record_id=rfq_id,
                    action="CREATE",
                    user_id=actor.user_id,
                    new_data={"rfq_number": rfq_number, "purchase_request_id": purchase_request_id},
                ),
            )
            if status == PurchaseRequestStatus.ASSIGNED_TO_BUYER.value:
                self._transition(db, unit, purchase_request, WorkflowAction.START_RFQ, actor)
        self._after_commit(db, unit)
        return ServiceOutput(
            {
                "rfq": self.rfqs.get_by_id(db, rfq_id),
                "purchase_request": self.purchase_request_view(db, purchase_request_id),
            },
            201,
        )

    def send_rfq(self, db, actor: Actor, rfq_id: int) -> ServiceOutput:
        with db.transaction():
            rfq = self._load_owned_rfq(db, actor, rfq_id)
            changed = self.rfqs.compare_and_set_status(
                db,
                rfq_id,
                expected_status=RfqStatus.DRAFT.value,
                new_status=RfqStatus.SENT.value,
            )
            if not changed:
                raise invalid_transition("rfq", rfq_id, rfq["status"], "SEND", ["SEND"] if rfq["status"] == "DRAFT" else [])
            self.status_events.add_event(
                db,
                entity="rfq",
                entity_id=rfq_id,
                from_status=rfq["status"],
                to_status=RfqStatus.SENT.value,
                action="SEND",
                actor_id=actor.user_id,
            )
        return ServiceOutput({"rfq": self.rfqs.get_by_id(db, rfq_id)})

    def _load_owned_rfq(self, db, actor: Actor, rfq_id: int) -> dict:
        rfq = self.rfqs.get_by_id(db, rfq_id)
        if not rfq:
            raise not_found("rfq", rfq_id)
        if int(rfq["buyer_id"]) != int(actor.user_id):
            raise forbidden("not_rfq_owner", rfq_id=rfq_id)
        return rfq

    def create_quotation(self, db, actor: Actor, rfq_id: int, data: QuotationCreateInput) -> ServiceOutput:
        unit = WorkflowUnit()
        with db.transaction():
            rfq = self._load_owned_rfq(db, actor, rfq_id)
            if rfq["status"] == RfqStatus.CLOSED.value:
                raise invalid_transition("rfq", rfq_id, rfq["status"], "CREATE_QUOTATION")
            purchase_request_id = int(rfq["purchase_request_id"])
            purchase_request = self._load_purchase_request(db, purchase_request_id)
            if purchase_request["status"] not in (
                PurchaseRequestStatus.RFQ_IN_PROGRESS.value,
                PurchaseRequestStatus.QUOTATION_RECEIVED.value,
            ):
                raise invalid_transition(
                    PURCHASE_REQUEST_ENTITY,
                    purchase_request_id,
                    purchase_request["status"],
                    "CREATE_QUOTATION",
                    flow_policy.allowed_actions(purchase_request["status"]),
                )
            if not self.suppliers.get_by_id(db, int(data.supplier_id)):
                raise not_found("supplier", data.supplier_id)
            self._validate_quotation_items(db, actor, purchase_request_id, data)

            quotation_id = self.quotations.create(
                db,
                rfq_id=rfq_id,
                created_by=actor.user_id,
                currency=str(data.currency or "").strip().upper() or purchase_request.get("currency") or self.default_currency,
                status=QuotationStatus.PENDING.value,
                quotation=data,
            )
            self.audit_sink.record(
                db,
                AuditEntry(
                    table_name="quotations",
                    record_id=quotation_id,
                    action="CREATE",
                    user_id=actor.user_id,
                    new_data={"rfq_id": rfq_id, "supplier_id": int(data.supplier_id), "total_amount": float(data.total_amount)},
                ),
            )
            self.scorer.rescore_all(db, rfq_id)
            unit.events.append(
                QuotationRecorded(
                    tenant_id=self.tenant_id,
                    quotation_id=quotation_id,
                    rfq_id=rfq_id,
                    purchase_request_id=purchase_request_id,
                )
            )
            self._check_progress(db, unit, rfq, purchase_request, actor)
        self._after_commit(db, unit)
        return ServiceOutput({"quotation": self._quotation_view(db, quotation_id)}, 201)

    def _validate_quotation_items(self, db, actor: Actor, purchase_request_id: int, data: QuotationCreateInput) -> None:
        if not data.items:
            raise validation("items_required")
        if data.lead_time_days is not None and int(data.lead_time_days) < 0:
            raise validation("lead_time_invalid", lead_time_days=data.lead_time_days)
        for item in data.items:
            if not positive_amount(item.quantity):
                raise validation("item_quantity_invalid", purchase_request_item_id=item.purchase_request_item_id)
            if not non_negative_amount(item.unit_price):
                raise validation("item_unit_price_invalid", purchase_request_item_id=item.purchase_request_item_id)

        all_item_ids = {int(item["id"]) for item in self.items.list_for_request(db, purchase_request_id)}
        allowed: set[int] = set()
        for assignment in self.assignments.list_for_buyer(db, purchase_request_id, actor.user_id):
            allowed |= covered_item_ids(assignment, all_item_ids)
        outside = sorted({int(item.purchase_request_item_id) for item in data.items} - allowed)
        if outside:
            raise validation("quotation_items_not_assigned", item_ids=outside)

        computed = round(sum(line_amount(item.quantity, item.unit_price) for item in data.items), 2)
        if not totals_match(float(data.total_amount), computed):
            raise validation(
                "quotation_total_mismatch",
                total_amount=float(data.total_amount),
                computed_total=computed,
            )

    def validate_quotation(self, db, actor: Actor, quotation_id: int, valid: bool) -> ServiceOutput:
        unit = WorkflowUnit()
        new_status = QuotationStatus.VALID.value if valid else QuotationStatus.INVALID.value
        with db.transaction():
            quotation = self.quotations.get_by_id(db, quotation_id)
            if not quotation:
                raise not_found("quotation", quotation_id)
            rfq = self.rfqs.get_by_id(db, int(quotation["rfq_id"]))
            if not rfq:
                raise not_found("rfq", quotation["rfq_id"])
            if int(rfq["buyer_id"]) != int(actor.user_id) and actor.role != Role.BUYER_LEADER.value:
                raise forbidden("not_rfq_owner", rfq_id=rfq["id"], quotation_id=quotation_id)

            changed = self.quotations.compare_and_set_status(
                db,
                quotation_id,
                expected_statuses=(
                    QuotationStatus.PENDING.value,
                    QuotationStatus.VALID.value,
                    QuotationStatus.INVALID.value,
                ),
                new_status=new_status,
            )
            if not changed:
                raise invalid_transition("quotation", quotation_id, quotation["status"], "VALIDATE")
            self.status_events.add_event(
                db,
                entity="quotation",
                entity_id=quotation_id,
                from_status=quotation["status"],
                to_status=new_status,
                action="VALIDATE",
                actor_id=actor.user_id,
            )
            self.scorer.rescore_all(db, int(rfq["id"]))
            purchase_request = self._load_purchase_request(db, int(rfq["purchase_request_id"]))
            self._check_progress(db, unit, rfq, purchase_request, actor)
        self._after_commit(db, unit)
        return ServiceOutput({"quotation": self._quotation_view(db, quotation_id)})

    def _check_progress(self, db, unit: WorkflowUnit, rfq: dict, purchase_request: dict, actor: Actor) -> bool:
        """Close the quotation round once enough valid quotations are in."""
        if purchase_request["status"] != PurchaseRequestStatus.RFQ_IN_PROGRESS.value:
            return False
        counted = self.quotations.list_for_rfq(db, int(rfq["id"]), statuses=COUNTED_STATUSES)
        if len(counted) < MIN_QUOTATIONS_FOR_SCORING:
            return False

        current = self.rfqs.get_by_id(db, int(rfq["id"])) or rfq
        if current["status"] in OPEN_RFQ_STATUSES:
            self.rfqs.compare_and_set_status(
                db,
                int(rfq["id"]),
                expected_status=current["status"],
                new_status=RfqStatus.QUOTATION_RECEIVED.value,
            )
        self._transition(db, unit, purchase_request, WorkflowAction.RECEIVE_QUOTATIONS, actor)

        leader_ids = sorted(
            {int(assignment["buyer_leader_id"]) for assignment in self.assignments.list_for_request(db, int(purchase_request["id"]))}
        )
        for leader_id in leader_ids:
            unit.plan.notify(
                leader_id,
                NotificationType.PR_QUOTATIONS_COMPLETE,
                related_id=purchase_request["id"],
                role=Role.BUYER_LEADER.value,
                pr_number=purchase_request["pr_number"],
            )
        return True

    def _quotation_view(self, db, quotation_id: int) -> dict:
        quotation = self.quotations.get_by_id(db, quotation_id)
        if not quotation:
            raise not_found("quotation", quotation_id)
        quotation["items"] = self.quotations.list_items(db, quotation_id)
        return quotation

    def get_quotation(self, db, quotation_id: int) -> ServiceOutput:
        return ServiceOutput({"quotation": self._quotation_view(db, quotation_id)})

    def list_quotations(self, db, rfq_id: int) -> ServiceOutput:
        rfq = self.rfqs.get_by_id(db, rfq_id)
        if not rfq:
            raise not_found("rfq", rfq_id)
        return ServiceOutput({"rfq": rfq, "items": self.quotations.list_for_rfq(db, rfq_id)})
