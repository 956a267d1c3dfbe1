from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from threading import RLock
from typing import Callable, List, Tuple, Type

from prflow.observability import observe_domain_event_emitted


EventHandler = Callable[["DomainEvent"], None]

logger = logging.getLogger("prflow")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, kw_only=True)
class DomainEvent:
    """Envelope shared by every workflow event; always tenant-tagged and UTC-stamped."""

    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    occurred_at: datetime = field(default_factory=_utc_now)
    tenant_id: str = ""

    def __post_init__(self) -> None:
        occurred_at = self.occurred_at if isinstance(self.occurred_at, datetime) else _utc_now()
        if occurred_at.tzinfo is None:
            occurred_at = occurred_at.replace(tzinfo=timezone.utc)
        object.__setattr__(self, "occurred_at", occurred_at.astimezone(timezone.utc))
        object.__setattr__(self, "event_id", str(self.event_id or "").strip() or uuid.uuid4().hex)
        object.__setattr__(self, "tenant_id", str(self.tenant_id or "").strip() or "unknown")

    @property
    def event_type(self) -> str:
        return type(self).__name__


@dataclass(frozen=True, kw_only=True)
class PurchaseRequestCreated(DomainEvent):
    purchase_request_id: int
    pr_number: str
    status: str
    items_created: int = 0


@dataclass(frozen=True, kw_only=True)
class PurchaseRequestTransitioned(DomainEvent):
    purchase_request_id: int
    action: str
    from_status: str
    to_status: str
    actor_id: int | None = None


@dataclass(frozen=True, kw_only=True)
class QuotationRecorded(DomainEvent):
    quotation_id: int
    rfq_id: int
    purchase_request_id: int


@dataclass(frozen=True, kw_only=True)
class BudgetExceptionRaised(DomainEvent):
    budget_exception_id: int
    purchase_request_id: int
    over_percent: float


@dataclass(frozen=True, kw_only=True)
class BudgetExceptionResolved(DomainEvent):
    budget_exception_id: int
    purchase_request_id: int
    status: str


class EventBus:
    """Synchronous in-process dispatch.

    Handlers run in subscription order. Subscribing to a base class receives its
    subclasses too, so ``subscribe(DomainEvent, ...)`` sees every event. A failing
    handler is logged and skipped; it never reaches the publisher.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._subscriptions: List[Tuple[Type[DomainEvent], EventHandler]] = []

    def subscribe(self, event_type: Type[DomainEvent], handler: EventHandler) -> None:
        with self._lock:
            self._subscriptions.append((event_type, handler))

    def is_subscribed(self, event_type: Type[DomainEvent], handler: EventHandler) -> bool:
        with self._lock:
            return (event_type, handler) in self._subscriptions

    def publish(self, event: DomainEvent) -> None:
        observe_domain_event_emitted(event.event_type)
        with self._lock:
            matching = [handler for event_type, handler in self._subscriptions if isinstance(event, event_type)]
        for handler in matching:
            try:
                handler(event)
            except Exception:  # noqa: BLE001
                logger.exception(
                    "event_handler_failed",
                    extra={"event_type": event.event_type, "event_id": event.event_id, "tenant_id": event.tenant_id},
                )

    def clear(self) -> None:
        with self._lock:
            self._subscriptions.clear()


_default_bus = EventBus()


def get_event_bus() -> EventBus:
    return _default_bus
