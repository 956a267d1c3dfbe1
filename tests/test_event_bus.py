import unittest
from datetime import datetime, timezone

from prflow.core import (
    BudgetExceptionRaised,
    DomainEvent,
    EventBus,
    PurchaseRequestCreated,
    PurchaseRequestTransitioned,
    QuotationRecorded,
    get_event_bus,
    install_event_log,
    log_domain_event,
)
from prflow.errors import InvalidStateTransitionError
from prflow.observability import metrics_snapshot, reset_metrics_for_tests
from tests.helpers.api_app import build_temp_app, dispose_app
from tests.helpers.seed import build_services
from tests.helpers.temp_db import TempDbSandbox
from tests.helpers.workflow_case import WorkflowTestCase


def _created(**overrides) -> PurchaseRequestCreated:
    values = {
        "tenant_id": "tenant-a",
        "purchase_request_id": 1,
        "pr_number": "IT-20260309-0001",
        "status": "DRAFT",
        "items_created": 1,
    }
    values.update(overrides)
    return PurchaseRequestCreated(**values)


class EventBusTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()

    def tearDown(self) -> None:
        reset_metrics_for_tests()

    def test_handler_execution_order_is_predictable(self) -> None:
        bus = EventBus()
        execution_trace = []

        bus.subscribe(PurchaseRequestCreated, lambda _event: execution_trace.append("first"))
        bus.subscribe(PurchaseRequestCreated, lambda _event: execution_trace.append("second"))
        bus.publish(_created())

        self.assertEqual(execution_trace, ["first", "second"])

    def test_handlers_only_receive_their_event_type(self) -> None:
        bus = EventBus()
        received = []
        bus.subscribe(QuotationRecorded, received.append)

        bus.publish(_created())
        self.assertEqual(received, [])

        bus.publish(QuotationRecorded(tenant_id="tenant-a", quotation_id=3, rfq_id=2, purchase_request_id=1))
        self.assertEqual([event.quotation_id for event in received], [3])

    def test_base_class_subscription_sees_every_event(self) -> None:
        bus = EventBus()
        seen = []
        bus.subscribe(DomainEvent, lambda event: seen.append(event.event_type))

        bus.publish(_created())
        bus.publish(QuotationRecorded(tenant_id="tenant-a", quotation_id=3, rfq_id=2, purchase_request_id=1))

        self.assertEqual(seen, ["PurchaseRequestCreated", "QuotationRecorded"])

    def test_failing_handler_does_not_stop_the_rest(self) -> None:
        bus = EventBus()
        received = []

        def broken(_event):
            raise RuntimeError("projection down")

        bus.subscribe(PurchaseRequestCreated, broken)
        bus.subscribe(PurchaseRequestCreated, received.append)

        with self.assertLogs("prflow", level="ERROR") as logs:
            bus.publish(_created())

        self.assertEqual(len(received), 1)
        self.assertTrue(any("event_handler_failed" in line for line in logs.output))

    def test_clear_drops_subscriptions_and_publish_counts(self) -> None:
        bus = EventBus()
        received = []
        bus.subscribe(PurchaseRequestCreated, received.append)
        bus.clear()
        bus.publish(_created())

        self.assertEqual(received, [])
        counters = metrics_snapshot()["domain_events"]
        self.assertEqual(counters["emitted_total"], 1)
        self.assertEqual(counters["by_type"], {"PurchaseRequestCreated": 1})

    def test_event_envelope_is_normalized(self) -> None:
        naive = datetime(2026, 3, 9, 8, 30)
        event = _created(tenant_id="  ", event_id="", occurred_at=naive)

        self.assertEqual(event.tenant_id, "unknown")
        self.assertTrue(event.event_id)
        self.assertEqual(event.occurred_at, naive.replace(tzinfo=timezone.utc))
        self.assertNotEqual(_created().event_id, _created().event_id)


class EventLogTest(unittest.TestCase):
    def test_every_event_is_logged_with_its_fields(self) -> None:
        bus = install_event_log(EventBus())

        with self.assertLogs("prflow.events", level="INFO") as logs:
            bus.publish(_created(purchase_request_id=7))
            bus.publish(QuotationRecorded(tenant_id="tenant-a", quotation_id=3, rfq_id=2, purchase_request_id=7))

        self.assertEqual([record.getMessage() for record in logs.records], ["domain_event", "domain_event"])
        first, second = logs.records
        self.assertEqual(first.event_type, "PurchaseRequestCreated")
        self.assertEqual(first.purchase_request_id, 7)
        self.assertEqual(first.pr_number, "IT-20260309-0001")
        self.assertEqual(first.tenant_id, "tenant-a")
        self.assertIsInstance(first.occurred_at, str)
        self.assertEqual(second.event_type, "QuotationRecorded")
        self.assertEqual(second.quotation_id, 3)

    def test_install_is_idempotent(self) -> None:
        bus = EventBus()
        install_event_log(bus)
        install_event_log(bus)

        with self.assertLogs("prflow.events", level="INFO") as logs:
            bus.publish(_created())

        self.assertEqual(len(logs.records), 1)

    def test_app_factory_installs_the_log_on_the_shared_bus(self) -> None:
        temp_db = TempDbSandbox(prefix="prflow_event_log")
        app = build_temp_app(temp_db, TESTING=True, AUTH_ENABLED=False)
        try:
            self.assertTrue(get_event_bus().is_subscribed(DomainEvent, log_domain_event))
            with self.assertLogs("prflow.events", level="INFO") as logs:
                get_event_bus().publish(_created(purchase_request_id=11))
            self.assertEqual(logs.records[-1].purchase_request_id, 11)
        finally:
            dispose_app(app, temp_db)


class WorkflowEventsTest(WorkflowTestCase):
    sandbox_prefix = "prflow_events"

    def setUp(self) -> None:
        super().setUp()
        self.bus = EventBus()
        self.received = []
        for event_type in (PurchaseRequestCreated, PurchaseRequestTransitioned, QuotationRecorded, BudgetExceptionRaised):
            self.bus.subscribe(event_type, self.received.append)
        self.services = build_services(self.seed.tenant_id, notification_sink=self.sink, event_bus=self.bus)

    def test_workflow_publishes_after_commit(self) -> None:
        pr = self.submitted_request()

        created, transitioned = self.received
        self.assertIsInstance(created, PurchaseRequestCreated)
        self.assertEqual(created.purchase_request_id, pr["id"])
        self.assertEqual(created.pr_number, pr["pr_number"])
        self.assertEqual(created.items_created, 1)
        self.assertIsInstance(transitioned, PurchaseRequestTransitioned)
        self.assertEqual((transitioned.from_status, transitioned.to_status), ("DRAFT", "MANAGER_PENDING"))
        self.assertEqual(transitioned.actor_id, self.seed.requestor)

    def test_rejected_operation_publishes_nothing(self) -> None:
        pr = self.create_request()
        self.received.clear()

        with self.assertRaises(InvalidStateTransitionError):
            self.services.workflow.manager_approve(self.db, self.actor(self.seed.manager), pr["id"])
        self.assertEqual(self.received, [])

    def test_over_budget_selection_raises_event(self) -> None:
        pr, _rfq_id, (_cheap, pricey) = self.received_request(budget=100.0, quotes=(95.0, 130.0))
        self.select(pr["id"], pricey, over_budget_reason="sole source")

        raised = [event for event in self.received if isinstance(event, BudgetExceptionRaised)]
        self.assertEqual(len(raised), 1)
        self.assertEqual(raised[0].over_percent, 30.0)
        self.assertEqual(raised[0].purchase_request_id, pr["id"])
        recorded = [event for event in self.received if isinstance(event, QuotationRecorded)]
        self.assertEqual(len(recorded), 2)


if __name__ == "__main__":
    unittest.main()
