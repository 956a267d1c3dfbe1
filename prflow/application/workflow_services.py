from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from prflow.contexts.audit.domain.sink import AuditSink
from prflow.contexts.audit.infrastructure.sql_audit_sink import SqlAuditSink
from prflow.contexts.directory.domain.lookup import DirectoryLookup
from prflow.contexts.directory.infrastructure.sql_directory import SqlDirectoryLookup
from prflow.contexts.notifications.application.service import NotificationLifecycleManager
from prflow.contexts.notifications.domain.sink import NotificationSink
from prflow.contexts.procurement.application.assignment_service import AssignmentPartitioner
from prflow.contexts.procurement.application.budget_exception_service import BudgetExceptionResolver
from prflow.contexts.procurement.application.quotation_service import QuotationScorer, QuotationService
from prflow.contexts.procurement.application.sequence_allocator import SequenceAllocator
from prflow.contexts.procurement.application.workflow_service import PurchaseRequestWorkflow
from prflow.contexts.procurement.infrastructure.repositories import PurchaseRequestRepository, RfqRepository
from prflow.core import EventBus, get_event_bus
from prflow.tenant import scoped_tenant_id


@dataclass(frozen=True)
class WorkflowServices:
    tenant_id: str
    workflow: PurchaseRequestWorkflow
    assignments: AssignmentPartitioner
    quotations: QuotationService
    scorer: QuotationScorer
    budget: BudgetExceptionResolver
    notifications: NotificationLifecycleManager
    directory: DirectoryLookup


def build_workflow_services(
    tenant_id: str | None = None,
    *,
    directory: DirectoryLookup | None = None,
    notification_sink: NotificationSink | None = None,
    audit_sink: AuditSink | None = None,
    event_bus: EventBus | None = None,
    max_attempts: int = 5,
    backoff_ms: int = 100,
    default_currency: str = "VND",
    sleep_fn: Callable[[float], None] = time.sleep,
) -> WorkflowServices:
    """Wire every workflow service of one tenant around shared collaborators."""
    tenant = scoped_tenant_id(tenant_id)
    directory = directory or SqlDirectoryLookup(tenant_id=tenant)
    notifications = NotificationLifecycleManager(tenant_id=tenant, sink=notification_sink)
    shared: dict[str, Any] = {
        "tenant_id": tenant,
        "directory": directory,
        "notifications": notifications,
        "audit_sink": audit_sink or SqlAuditSink(tenant_id=tenant),
        "event_bus": event_bus or get_event_bus(),
    }
    retry = {"max_attempts": max_attempts, "backoff_ms": backoff_ms, "sleep_fn": sleep_fn}

    quotations = QuotationService(
        rfq_allocator=SequenceAllocator(RfqRepository(tenant_id=tenant), **retry),
        default_currency=default_currency,
        **shared,
    )
    return WorkflowServices(
        tenant_id=tenant,
        workflow=PurchaseRequestWorkflow(
            allocator=SequenceAllocator(PurchaseRequestRepository(tenant_id=tenant), **retry),
            default_currency=default_currency,
            **shared,
        ),
        assignments=AssignmentPartitioner(**shared),
        quotations=quotations,
        scorer=quotations.scorer,
        budget=BudgetExceptionResolver(**shared),
        notifications=notifications,
        directory=directory,
    )


def services_from_config(config: Mapping[str, Any], tenant_id: str | None = None, **overrides) -> WorkflowServices:
    options: dict[str, Any] = {
        "max_attempts": int(config.get("PR_NUMBER_MAX_ATTEMPTS", 5)),
        "backoff_ms": int(config.get("PR_NUMBER_BACKOFF_MS", 100)),
        "default_currency": str(config.get("DEFAULT_CURRENCY") or "VND"),
    }
    options.update({key: value for key, value in overrides.items() if value is not None})
    return build_workflow_services(tenant_id, **options)
