import unittest

from prflow.application.workflow_services import build_workflow_services
from prflow.contexts.notifications.application.service import NotificationLifecycleManager
from prflow.contexts.notifications.domain.plan import NotificationPlan
from prflow.domain.statuses import NotificationType
from prflow.errors import NotFoundError
from prflow.observability import metrics_snapshot
from prflow.tenant import DEFAULT_TENANT_ID
from tests.helpers.seed import FailingSink, notification_rows
from tests.helpers.workflow_case import WorkflowTestCase


class NotificationLifecycleTest(WorkflowTestCase):
    sandbox_prefix = "prflow_notifications"

    def setUp(self) -> None:
        super().setUp()
        self.manager = self.services.notifications

    def _plan_pending(self, related_id: int = 41) -> NotificationPlan:
        return NotificationPlan().notify(
            self.seed.manager,
            NotificationType.PR_PENDING_APPROVAL,
            related_id=related_id,
            role="department_head",
            pr_number="IT-20260309-0001",
            requestor_name="Rita Requestor",
        )

    def test_emit_renders_and_pushes(self) -> None:
        result = self.manager.dispatch(self.db, self._plan_pending())

        self.assertEqual(len(result["emitted"]), 1)
        self.assertEqual(result["failed"], 0)
        message = self.sink.messages[-1]
        self.assertEqual(message.title, "Purchase request awaiting approval")
        self.assertEqual(message.message, "IT-20260309-0001 from Rita Requestor is waiting for your approval.")
        self.assertEqual(message.related_type, "purchase_request")
        self.assertEqual(message.status, "UNREAD")
        self.assertEqual(metrics_snapshot()["notifications"]["emitted_total"], 1)

    def test_unread_duplicate_is_reused(self) -> None:
        first = self.manager.dispatch(self.db, self._plan_pending())["emitted"]
        second = self.manager.dispatch(self.db, self._plan_pending())["emitted"]

        self.assertEqual(first, second)
        rows = notification_rows(self.db)
        self.assertEqual(len(rows), 1)

        # A different related id is a different notification.
        third = self.manager.dispatch(self.db, self._plan_pending(related_id=42))["emitted"]
        self.assertNotEqual(third, first)

    def test_read_notification_does_not_block_a_new_one(self) -> None:
        [first] = self.manager.dispatch(self.db, self._plan_pending())["emitted"]
        self.manager.mark_read(self.db, first, user_id=self.seed.manager)

        [second] = self.manager.dispatch(self.db, self._plan_pending())["emitted"]
        self.assertNotEqual(first, second)

    def test_resolve_closes_unread_and_read(self) -> None:
        [read_id] = self.manager.dispatch(self.db, self._plan_pending())["emitted"]
        self.manager.mark_read(self.db, read_id, user_id=self.seed.manager)
        plan = NotificationPlan().notify(
            self.seed.branch_manager,
            NotificationType.PR_PENDING_APPROVAL,
            related_id=41,
            pr_number="IT-20260309-0001",
        )
        self.manager.dispatch(self.db, plan)

        result = self.manager.dispatch(
            self.db, NotificationPlan().resolve(NotificationType.PR_PENDING_APPROVAL, related_id=41)
        )
        self.assertEqual(result["resolved"], 2)
        self.assertEqual({row["status"] for row in notification_rows(self.db)}, {"RESOLVED"})

        again = self.manager.dispatch(
            self.db, NotificationPlan().resolve(NotificationType.PR_PENDING_APPROVAL, related_id=41)
        )
        self.assertEqual(again["resolved"], 0)

    def test_mark_read_is_owner_only(self) -> None:
        [notification_id] = self.manager.dispatch(self.db, self._plan_pending())["emitted"]

        with self.assertRaises(NotFoundError) as ctx:
            self.manager.mark_read(self.db, notification_id, user_id=self.seed.requestor)
        self.assertEqual(ctx.exception.code, "notification_not_found")

        with self.assertRaises(NotFoundError):
            self.manager.mark_read(self.db, 999999, user_id=self.seed.manager)

        first = self.manager.mark_read(self.db, notification_id, user_id=self.seed.manager).payload
        second = self.manager.mark_read(self.db, notification_id, user_id=self.seed.manager).payload
        self.assertEqual(first, {"id": notification_id, "status": "READ"})
        self.assertEqual(second["status"], "READ")

    def test_list_for_user_counts_unread(self) -> None:
        [first] = self.manager.dispatch(self.db, self._plan_pending(related_id=1))["emitted"]
        self.manager.dispatch(self.db, self._plan_pending(related_id=2))
        self.manager.mark_read(self.db, first, user_id=self.seed.manager)

        listing = self.manager.list_for_user(self.db, user_id=self.seed.manager).payload
        self.assertEqual(listing["unread"], 1)
        self.assertEqual([item["related_id"] for item in listing["items"]], [2, 1])
        self.assertEqual(listing["items"][0]["metadata"]["pr_number"], "IT-20260309-0001")

        unread_only = self.manager.list_for_user(self.db, user_id=self.seed.manager, status="UNREAD").payload
        self.assertEqual(len(unread_only["items"]), 1)
        self.assertEqual(self.manager.list_for_user(self.db, user_id=self.seed.buyer).payload["items"], [])


class FailingSinkTest(WorkflowTestCase):
    sandbox_prefix = "prflow_failing_sink"

    def setUp(self) -> None:
        super().setUp()
        self.services = build_workflow_services(
            DEFAULT_TENANT_ID,
            notification_sink=FailingSink(),
            sleep_fn=lambda _seconds: None,
        )

    def test_push_failure_does_not_break_the_workflow(self) -> None:
        with self.assertLogs("prflow.notifications", level="ERROR") as logs:
            pr = self.submitted_request()

        self.assertEqual(pr["status"], "MANAGER_PENDING")
        self.assertTrue(any("notification_push_failed" in line for line in logs.output))
        rows = notification_rows(self.db)
        self.assertEqual([(row["user_id"], row["type"]) for row in rows], [(self.seed.manager, "PR_PENDING_APPROVAL")])
        counters = metrics_snapshot()["notifications"]
        self.assertEqual(counters["failed_total"], 1)
        self.assertEqual(counters["emitted_total"], 1)

    def test_storage_failure_is_counted_not_raised(self) -> None:
        manager = NotificationLifecycleManager(tenant_id=DEFAULT_TENANT_ID, sink=FailingSink())
        self.db.execute("DROP TABLE notifications")

        with self.assertLogs("prflow.notifications", level="ERROR"):
            result = manager.dispatch(
                self.db,
                NotificationPlan()
                .notify(self.seed.manager, NotificationType.PR_RETURNED, related_id=7, pr_number="X", reason="y")
                .resolve(NotificationType.PR_PENDING_APPROVAL, related_id=7),
            )

        self.assertEqual(result, {"emitted": [], "resolved": 0, "failed": 2})
        self.assertEqual(metrics_snapshot()["notifications"]["failed_total"], 2)


if __name__ == "__main__":
    unittest.main()
