import re
import threading
import unittest

from prflow.contexts.directory.infrastructure.sql_directory import SqlDirectoryLookup
from prflow.db import connect_database
from prflow.domain.contracts import PurchaseRequestCreateInput
from prflow.domain.statuses import PurchaseRequestStatus
from prflow.errors import (
    InvalidStateTransitionError,
    NoApproverFoundError,
    NotFoundError,
    PermissionError as AppPermissionError,
    ValidationError,
)
from prflow.observability import metrics_snapshot
from prflow.tenant import DEFAULT_TENANT_ID
from tests.helpers.seed import actor_for, build_services, insert_user, items, notification_rows, request_input
from tests.helpers.workflow_case import WorkflowTestCase


class _BrokenRuleDirectory(SqlDirectoryLookup):
    def branch_needs_second_approval(self, db, branch_code):
        raise RuntimeError("rules table unavailable")


class PurchaseRequestDraftTest(WorkflowTestCase):
    sandbox_prefix = "prflow_draft"

    def test_create_allocates_number_and_totals(self) -> None:
        pr = self.create_request(("Laptop", 2, 500.0), ("Mouse", 3, 10.0), tax_percent=10)

        self.assertEqual(pr["status"], "DRAFT")
        self.assertRegex(pr["pr_number"], re.compile(r"^IT-\d{8}-0001$"))
        self.assertEqual(pr["branch_code"], "HCM")
        self.assertEqual(float(pr["total_amount"]), 1133.0)
        self.assertEqual([item["line_no"] for item in pr["items"]], [1, 2])
        self.assertEqual(pr["flow"]["primary_action"], "SUBMIT")

        history = self.services.workflow.history(self.db, pr["id"]).payload["events"]
        self.assertEqual([event["action"] for event in history], ["CREATE"])

    def test_declared_amount_raises_total(self) -> None:
        pr = self.create_request(("Service", 1, 100.0), declared_amount=250.0)
        self.assertEqual(float(pr["total_amount"]), 250.0)

    def test_department_override_is_normalized(self) -> None:
        pr = self.create_request(("Desk", 1, 80.0), department=" facilities ")
        self.assertTrue(pr["pr_number"].startswith("FACILITIES-"))

    def test_item_validation(self) -> None:
        workflow = self.services.workflow
        requestor = self.actor(self.seed.requestor)
        cases = {
            "items_required": [],
            "item_description_required": items(("  ", 1, 1.0)),
            "item_quantity_invalid": items(("Paper", 0, 1.0)),
            "item_unit_price_invalid": items(("Paper", 1, -1.0)),
        }
        non_finite = [
            ("item_quantity_invalid", items(("Paper", float("nan"), 1.0))),
            ("item_unit_price_invalid", items(("Paper", 1, float("inf")))),
        ]
        for code, lines in list(cases.items()) + non_finite:
            with self.subTest(code=code):
                with self.assertRaises(ValidationError) as ctx:
                    workflow.create_purchase_request(self.db, requestor, PurchaseRequestCreateInput(items=lines))
                self.assertEqual(ctx.exception.code, code)

    def test_replace_items_recomputes_total_in_draft_only(self) -> None:
        pr = self.create_request(("Laptop", 1, 100.0))
        requestor = self.actor(self.seed.requestor)

        view = self.services.workflow.replace_items(self.db, requestor, pr["id"], items(("Monitor", 2, 75.0))).payload
        self.assertEqual(float(view["total_amount"]), 150.0)
        self.assertEqual([item["description"] for item in view["items"]], ["Monitor"])

        with self.assertRaises(AppPermissionError):
            self.services.workflow.replace_items(self.db, self.actor(self.seed.manager), pr["id"], items(("X", 1, 1.0)))

        self.services.workflow.submit(self.db, requestor, pr["id"])
        with self.assertRaises(InvalidStateTransitionError) as ctx:
            self.services.workflow.replace_items(self.db, requestor, pr["id"], items(("X", 1, 1.0)))
        self.assertEqual(ctx.exception.payload["action"], "EDIT_ITEMS")

    def test_cancel_draft(self) -> None:
        pr = self.create_request()
        view = self.services.workflow.cancel(self.db, self.actor(self.seed.requestor), pr["id"], "not needed").payload
        self.assertEqual(view["status"], "CANCELLED")
        self.assertTrue(view["flow"]["terminal"])

    def test_unknown_request(self) -> None:
        with self.assertRaises(NotFoundError) as ctx:
            self.services.workflow.submit(self.db, self.actor(self.seed.requestor), 9999)
        self.assertEqual(ctx.exception.code, "purchase_request_not_found")


class ManagerApprovalTest(WorkflowTestCase):
    sandbox_prefix = "prflow_manager"

    def test_submit_routes_to_direct_manager(self) -> None:
        pr = self.submitted_request(("Laptop", 1, 100.0))

        self.assertEqual(pr["status"], "MANAGER_PENDING")
        self.assertEqual(self.sink.types_for(self.seed.manager), ["PR_PENDING_APPROVAL"])
        message = self.sink.messages[-1]
        self.assertIn(pr["pr_number"], message.message)
        self.assertIn("Rita Requestor", message.message)

    def test_submit_without_manager_is_refused(self) -> None:
        orphan = insert_user(
            self.db, DEFAULT_TENANT_ID, email="orphan@prflow.test", name="Orphan", role="requestor",
            department="IT", branch_code="HCM",
        )
        pr = self.services.workflow.create_purchase_request(
            self.db,
            self.actor(orphan),
            request_input(("Chair", 1, 10.0)),
        ).payload

        with self.assertRaises(NoApproverFoundError) as ctx:
            self.services.workflow.submit(self.db, self.actor(orphan), pr["id"])
        self.assertEqual(ctx.exception.payload["tier"], "MANAGER")
        self.assertEqual(self.status_of(pr["id"]), "DRAFT")

    def test_only_direct_manager_decides(self) -> None:
        pr = self.submitted_request()
        for intruder in (self.seed.branch_manager, self.seed.requestor, self.seed.buyer_leader):
            with self.assertRaises(AppPermissionError) as ctx:
                self.services.workflow.manager_approve(self.db, self.actor(intruder), pr["id"])
            self.assertEqual(ctx.exception.message_key, "not_direct_manager")
        self.assertEqual(self.status_of(pr["id"]), "MANAGER_PENDING")

    def test_approve_moves_to_branch_manager(self) -> None:
        pr = self.submitted_request()
        view = self.services.workflow.manager_approve(self.db, self.actor(self.seed.manager), pr["id"], "ok").payload

        self.assertEqual(view["status"], "BRANCH_MANAGER_PENDING")
        self.assertEqual([(a["tier"], a["action"]) for a in view["approvals"]], [("MANAGER", "APPROVE")])
        self.assertEqual(self.sink.types_for(self.seed.branch_manager), ["PR_PENDING_APPROVAL_BRANCH"])
        self.assertEqual(self.sink.types_for(self.seed.requestor), ["PR_DEPARTMENT_HEAD_APPROVED"])

        manager_rows = [row for row in notification_rows(self.db) if row["user_id"] == self.seed.manager]
        self.assertEqual([(row["type"], row["status"]) for row in manager_rows], [("PR_PENDING_APPROVAL", "RESOLVED")])

    def test_reject_and_return_need_a_comment(self) -> None:
        pr = self.submitted_request()
        manager = self.actor(self.seed.manager)
        with self.assertRaises(ValidationError) as ctx:
            self.services.workflow.manager_reject(self.db, manager, pr["id"], "   ")
        self.assertEqual(ctx.exception.code, "comment_required")

        view = self.services.workflow.manager_reject(self.db, manager, pr["id"], "too expensive").payload
        self.assertEqual(view["status"], "MANAGER_REJECTED")
        self.assertEqual(view["notes"], "too expensive")
        self.assertTrue(view["flow"]["terminal"])
        self.assertEqual(self.sink.types_for(self.seed.requestor), ["PR_REJECTED"])

    def test_return_then_resubmit(self) -> None:
        pr = self.submitted_request(("Laptop", 1, 100.0))
        workflow = self.services.workflow
        requestor = self.actor(self.seed.requestor)

        workflow.manager_return(self.db, self.actor(self.seed.manager), pr["id"], "add a second screen")
        self.assertEqual(self.status_of(pr["id"]), "MANAGER_RETURNED")

        view = workflow.resubmit(self.db, requestor, pr["id"], "screen added").payload

        self.assertEqual(view["status"], "MANAGER_PENDING")
        self.assertEqual(view["notes"], "screen added")
        returned = [row for row in notification_rows(self.db) if row["type"] == "PR_RETURNED"]
        self.assertEqual([row["status"] for row in returned], ["RESOLVED"])

        actions = [event["action"] for event in workflow.history(self.db, pr["id"]).payload["events"]]
        self.assertEqual(actions, ["CREATE", "SUBMIT", "MANAGER_RETURN", "RESUBMIT"])

    def test_returned_request_can_be_cancelled(self) -> None:
        pr = self.submitted_request()
        self.services.workflow.manager_return(self.db, self.actor(self.seed.manager), pr["id"], "fix it")
        view = self.services.workflow.cancel(self.db, self.actor(self.seed.requestor), pr["id"]).payload
        self.assertEqual(view["status"], "CANCELLED")


class BranchApprovalTest(WorkflowTestCase):
    sandbox_prefix = "prflow_branch"

    def test_branch_manager_approval_reaches_buyer_leader(self) -> None:
        pr = self.approved_request()

        self.assertEqual(pr["status"], "BUYER_LEADER_PENDING")
        self.assertEqual(self.sink.types_for(self.seed.buyer_leader), ["PR_READY_FOR_ASSIGNMENT"])
        self.assertEqual(
            self.sink.types_for(self.seed.requestor),
            ["PR_DEPARTMENT_HEAD_APPROVED", "PR_BRANCH_MANAGER_APPROVED"],
        )
        tiers = [(a["tier"], a["action"]) for a in pr["approvals"]]
        self.assertEqual(tiers, [("MANAGER", "APPROVE"), ("BRANCH_MANAGER", "APPROVE")])

    def test_branch_manager_of_other_branch_is_forbidden(self) -> None:
        other = insert_user(
            self.db, DEFAULT_TENANT_ID, email="hn@prflow.test", name="Hanoi BM", role="branch_manager",
            branch_code="HN",
        )
        pr = self.submitted_request()
        self.services.workflow.manager_approve(self.db, self.actor(self.seed.manager), pr["id"])

        with self.assertRaises(AppPermissionError) as ctx:
            self.services.workflow.branch_manager_approve(self.db, self.actor(other), pr["id"])
        self.assertEqual(ctx.exception.message_key, "not_branch_manager")

    def test_branch_return_goes_back_to_requestor(self) -> None:
        pr = self.submitted_request()
        self.services.workflow.manager_approve(self.db, self.actor(self.seed.manager), pr["id"])
        view = self.services.workflow.branch_manager_return(
            self.db, self.actor(self.seed.branch_manager), pr["id"], "split the order"
        ).payload

        self.assertEqual(view["status"], "BRANCH_MANAGER_RETURNED")
        pending_branch = [row for row in notification_rows(self.db) if row["type"] == "PR_PENDING_APPROVAL_BRANCH"]
        self.assertEqual({row["status"] for row in pending_branch}, {"RESOLVED"})

        resubmitted = self.services.workflow.resubmit(self.db, self.actor(self.seed.requestor), pr["id"]).payload
        self.assertEqual(resubmitted["status"], "MANAGER_PENDING")

    def test_missing_branch_manager_blocks_manager_approval(self) -> None:
        self.db.execute("UPDATE users SET active = 0 WHERE id = ?", (self.seed.branch_manager,))
        pr = self.submitted_request()

        with self.assertRaises(NoApproverFoundError) as ctx:
            self.services.workflow.manager_approve(self.db, self.actor(self.seed.manager), pr["id"])
        self.assertEqual(ctx.exception.payload["tier"], "BRANCH_MANAGER")
        self.assertEqual(self.status_of(pr["id"]), "MANAGER_PENDING")


class SkipBranchApprovalTest(WorkflowTestCase):
    sandbox_prefix = "prflow_skip_branch"
    needs_branch_approval = False

    def test_rule_off_skips_branch_manager(self) -> None:
        pr = self.submitted_request()
        view = self.services.workflow.manager_approve(self.db, self.actor(self.seed.manager), pr["id"]).payload

        self.assertEqual(view["status"], "BUYER_LEADER_PENDING")
        self.assertEqual(self.sink.types_for(self.seed.branch_manager), [])
        self.assertEqual(self.sink.types_for(self.seed.buyer_leader), ["PR_READY_FOR_ASSIGNMENT"])
        actions = [event["action"] for event in self.services.workflow.history(self.db, pr["id"]).payload["events"]]
        self.assertEqual(actions[-1], "MANAGER_APPROVE_SKIP_BRANCH")

    def test_unreadable_rule_requires_branch_manager(self) -> None:
        services = build_services(
            DEFAULT_TENANT_ID,
            notification_sink=self.sink,
            directory=_BrokenRuleDirectory(tenant_id=DEFAULT_TENANT_ID),
        )
        pr = self.submitted_request()
        view = services.workflow.manager_approve(self.db, self.actor(self.seed.manager), pr["id"]).payload
        self.assertEqual(view["status"], "BRANCH_MANAGER_PENDING")

    def test_missing_buyer_leader_blocks_skip(self) -> None:
        self.db.execute("UPDATE users SET active = 0 WHERE id = ?", (self.seed.buyer_leader,))
        pr = self.submitted_request()
        with self.assertRaises(NoApproverFoundError) as ctx:
            self.services.workflow.manager_approve(self.db, self.actor(self.seed.manager), pr["id"])
        self.assertEqual(ctx.exception.payload["tier"], "BUYER_LEADER")


class InvalidStateSweepTest(WorkflowTestCase):
    sandbox_prefix = "prflow_sweep"

    def test_operations_outside_their_status_fail_without_side_effects(self) -> None:
        pr = self.approved_request()
        workflow = self.services.workflow
        before = notification_rows(self.db)
        transitions_before = metrics_snapshot()["workflow"]["transitions_total"]

        attempts = [
            lambda: workflow.submit(self.db, self.actor(self.seed.requestor), pr["id"]),
            lambda: workflow.resubmit(self.db, self.actor(self.seed.requestor), pr["id"]),
            lambda: workflow.manager_approve(self.db, self.actor(self.seed.manager), pr["id"]),
            lambda: workflow.branch_manager_reject(self.db, self.actor(self.seed.branch_manager), pr["id"], "x"),
            lambda: workflow.cancel(self.db, self.actor(self.seed.requestor), pr["id"]),
            lambda: workflow.mark_payment_done(self.db, self.actor(self.seed.buyer_leader), pr["id"]),
        ]
        for attempt in attempts:
            with self.assertRaises(InvalidStateTransitionError):
                attempt()

        self.assertEqual(self.status_of(pr["id"]), PurchaseRequestStatus.BUYER_LEADER_PENDING.value)
        self.assertEqual(notification_rows(self.db), before)
        self.assertEqual(metrics_snapshot()["workflow"]["transitions_total"], transitions_before)


class ConcurrentDecisionTest(WorkflowTestCase):
    sandbox_prefix = "prflow_race"

    def _race(self, pr_id: int, user_id: int, decide) -> list[str]:
        outcomes: list[str] = []
        errors: list[BaseException] = []
        lock = threading.Lock()
        start = threading.Barrier(2)

        def worker() -> None:
            db = connect_database(self._temp_db.db_path)
            try:
                services = build_services(DEFAULT_TENANT_ID)
                actor = actor_for(services, db, user_id)
                start.wait()
                try:
                    decide(services.workflow, db, actor)
                    outcome = "ok"
                except InvalidStateTransitionError:
                    outcome = "invalid"
                with lock:
                    outcomes.append(outcome)
            except BaseException as exc:  # noqa: BLE001
                with lock:
                    errors.append(exc)
            finally:
                db.close()

        threads = [threading.Thread(target=worker) for _ in range(2)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        self.assertEqual(errors, [])
        return sorted(outcomes)

    def test_same_source_status_admits_one_winner(self) -> None:
        pr = self.submitted_request()

        outcomes = self._race(
            pr["id"], self.seed.manager, lambda workflow, db, actor: workflow.manager_approve(db, actor, pr["id"])
        )

        self.assertEqual(outcomes, ["invalid", "ok"])
        self.assertEqual(self.status_of(pr["id"]), PurchaseRequestStatus.BRANCH_MANAGER_PENDING.value)
        approvals = self.services.workflow.get_purchase_request(self.db, pr["id"]).payload["approvals"]
        self.assertEqual(len(approvals), 1)

    def test_conflicting_decisions_admit_one_winner(self) -> None:
        pr = self.submitted_request()
        decisions = iter(
            [
                lambda workflow, db, actor: workflow.manager_approve(db, actor, pr["id"]),
                lambda workflow, db, actor: workflow.manager_reject(db, actor, pr["id"], "over budget"),
            ]
        )
        picked = threading.Lock()

        def decide(workflow, db, actor):
            with picked:
                action = next(decisions)
            return action(workflow, db, actor)

        outcomes = self._race(pr["id"], self.seed.manager, decide)

        self.assertEqual(outcomes, ["invalid", "ok"])
        self.assertIn(
            self.status_of(pr["id"]),
            {PurchaseRequestStatus.BRANCH_MANAGER_PENDING.value, PurchaseRequestStatus.MANAGER_REJECTED.value},
        )


if __name__ == "__main__":
    unittest.main()
