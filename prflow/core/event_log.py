from __future__ import annotations

import dataclasses
import logging

from prflow.core.event_bus import DomainEvent, EventBus


logger = logging.getLogger("prflow.events")


def log_domain_event(event: DomainEvent) -> None:
    """Write one structured ``domain_event`` line per published event."""
    fields = dataclasses.asdict(event)
    fields["occurred_at"] = event.occurred_at.isoformat()
    fields["event_type"] = event.event_type
    logger.info("domain_event", extra=fields)


def install_event_log(bus: EventBus) -> EventBus:
    if not bus.is_subscribed(DomainEvent, log_domain_event):
        bus.subscribe(DomainEvent, log_domain_event)
    return bus
