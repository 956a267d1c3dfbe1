from prflow.core.event_bus import (
    BudgetExceptionRaised,
    BudgetExceptionResolved,
    DomainEvent,
    EventBus,
    PurchaseRequestCreated,
    PurchaseRequestTransitioned,
    QuotationRecorded,
    get_event_bus,
)
from prflow.core.event_log import install_event_log, log_domain_event

__all__ = [
    "DomainEvent",
    "EventBus",
    "PurchaseRequestCreated",
    "PurchaseRequestTransitioned",
    "QuotationRecorded",
    "BudgetExceptionRaised",
    "BudgetExceptionResolved",
    "get_event_bus",
    "install_event_log",
    "log_domain_event",
]
