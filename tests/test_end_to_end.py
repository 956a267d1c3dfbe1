import unittest

from prflow.observability import reset_metrics_for_tests
from tests.helpers.api_app import build_temp_app, dispose_app, seed_app_directory
from tests.helpers.seed import RecordingSink
from tests.helpers.temp_db import TempDbSandbox


class PurchaseRequestApiFlowTest(unittest.TestCase):
    """Drives a request from draft to payment through the HTTP surface."""

    tenant_id = "tenant-e2e"

    def setUp(self) -> None:
        reset_metrics_for_tests()
        self._temp_db = TempDbSandbox(prefix="prflow_e2e")
        self.sink = RecordingSink()
        self.app = build_temp_app(self._temp_db, notification_sink=self.sink, TESTING=True, AUTH_ENABLED=False)
        self.seed = seed_app_directory(self._temp_db, self.tenant_id)
        self.client = self.app.test_client()

    def tearDown(self) -> None:
        dispose_app(self.app, self._temp_db)
        reset_metrics_for_tests()

    def _as(self, user_id: int) -> dict:
        return {"X-Tenant-Id": self.tenant_id, "X-User-Id": str(user_id)}

    def _post(self, path: str, user_id: int, payload=None, expected: int = 200) -> dict:
        response = self.client.post(f"/api/workflow{path}", headers=self._as(user_id), json=payload or {})
        self.assertEqual(response.status_code, expected, response.get_data(as_text=True))
        return response.get_json()

    def _get(self, path: str, user_id: int) -> dict:
        response = self.client.get(f"/api/workflow{path}", headers=self._as(user_id))
        self.assertEqual(response.status_code, 200, response.get_data(as_text=True))
        return response.get_json()

    def test_full_flow_with_budget_exception(self) -> None:
        seed = self.seed
        created = self._post(
            "/purchase-requests",
            seed.requestor,
            {
                "title": "Network refresh",
                "items": [
                    {"description": "Core switch", "quantity": 1, "unit_price": 800},
                    {"description": "Patch cables", "quantity": 20, "unit_price": 10},
                ],
                "submit": True,
            },
            expected=201,
        )
        pr_id = created["id"]
        self.assertEqual(created["status"], "MANAGER_PENDING")
        self.assertTrue(created["pr_number"].startswith("IT-"))
        self.assertEqual(float(created["total_amount"]), 1000.0)

        inbox = self._get("/notifications", seed.manager)
        self.assertEqual(inbox["unread"], 1)
        self.assertEqual(inbox["items"][0]["type"], "PR_PENDING_APPROVAL")

        view = self._post(f"/purchase-requests/{pr_id}/manager/approve", seed.manager)
        self.assertEqual(view["status"], "BRANCH_MANAGER_PENDING")
        view = self._post(f"/purchase-requests/{pr_id}/branch-manager/approve", seed.branch_manager)
        self.assertEqual(view["status"], "BUYER_LEADER_PENDING")

        item_ids = [item["id"] for item in view["items"]]
        first = self._post(
            f"/purchase-requests/{pr_id}/assignments",
            seed.buyer_leader,
            {"buyer_id": seed.buyer, "scope": "PARTIAL", "item_ids": item_ids[:1]},
            expected=201,
        )
        self.assertFalse(first["fully_assigned"])

        conflict = self.client.post(
            f"/api/workflow/purchase-requests/{pr_id}/assignments",
            headers=self._as(seed.buyer_leader),
            json={"buyer_id": seed.buyer_two, "scope": "FULL"},
        )
        self.assertEqual(conflict.status_code, 409)
        body = conflict.get_json()
        self.assertEqual(body["error"], "items_already_assigned")
        self.assertEqual(body["conflicting_item_ids"], item_ids[:1])
        self.assertEqual(body["assigned_to_buyer"], seed.buyer)

        second = self._post(
            f"/purchase-requests/{pr_id}/assignments",
            seed.buyer_leader,
            {"buyer_id": seed.buyer, "scope": "PARTIAL", "item_ids": item_ids[1:]},
            expected=201,
        )
        self.assertEqual(second["purchase_request"]["status"], "ASSIGNED_TO_BUYER")

        rfq = self._post(f"/purchase-requests/{pr_id}/rfqs", seed.buyer, {"notes": "two quotes"}, expected=201)["rfq"]
        self.assertTrue(rfq["rfq_number"].startswith("RFQ-"))
        sent = self._post(f"/rfqs/{rfq['id']}/send", seed.buyer)
        self.assertEqual(sent["rfq"]["status"], "SENT")

        quotation_ids = []
        for supplier_id, switch_price in ((seed.suppliers[0], 900.0), (seed.suppliers[1], 1000.0)):
            quotation = self._post(
                f"/rfqs/{rfq['id']}/quotations",
                seed.buyer,
                {
                    "supplier_id": supplier_id,
                    "total_amount": switch_price + 200.0,
                    "lead_time_days": 7,
                    "payment_terms": "Net 30",
                    "items": [
                        {"purchase_request_item_id": item_ids[0], "quantity": 1, "unit_price": switch_price},
                        {"purchase_request_item_id": item_ids[1], "quantity": 20, "unit_price": 10},
                    ],
                },
                expected=201,
            )["quotation"]
            self.assertEqual(quotation["status"], "PENDING")
            quotation_ids.append(quotation["id"])

        for quotation_id in quotation_ids:
            self._post(f"/quotations/{quotation_id}/validate", seed.buyer, {"valid": True})

        listing = self._get(f"/rfqs/{rfq['id']}/quotations", seed.buyer_leader)
        recommended = [row["id"] for row in listing["items"] if row["is_recommended"]]
        self.assertEqual(recommended, [quotation_ids[0]])
        self.assertEqual(self._get(f"/purchase-requests/{pr_id}", seed.buyer_leader)["status"], "QUOTATION_RECEIVED")

        missing_reason = self.client.post(
            f"/api/workflow/purchase-requests/{pr_id}/supplier-selection",
            headers=self._as(seed.buyer_leader),
            json={"quotation_id": quotation_ids[0], "reason": "best score"},
        )
        self.assertEqual(missing_reason.status_code, 400)
        self.assertEqual(missing_reason.get_json()["error"], "reason_required")
        self.assertEqual(missing_reason.get_json()["over_percent"], 10.0)

        selection = self._post(
            f"/purchase-requests/{pr_id}/supplier-selection",
            seed.buyer_leader,
            {"quotation_id": quotation_ids[0], "reason": "best score", "over_budget_reason": "price increase"},
            expected=201,
        )
        self.assertTrue(selection["over_budget"])
        self.assertEqual(selection["purchase_request"]["status"], "BUDGET_EXCEPTION")

        pending = self._get("/budget-exceptions?branch_code=HCM", seed.branch_manager)["items"]
        self.assertEqual([row["id"] for row in pending], [selection["budget_exception_id"]])

        decided = self._post(
            f"/budget-exceptions/{selection['budget_exception_id']}/approve", seed.branch_manager, {"comment": "ok"}
        )
        self.assertEqual(decided["purchase_request"]["status"], "BUDGET_APPROVED")

        paid = self._post(f"/purchase-requests/{pr_id}/payment-done", seed.buyer_leader)
        self.assertEqual(paid["status"], "PAYMENT_DONE")

        history = self._get(f"/purchase-requests/{pr_id}/history", seed.requestor)["events"]
        self.assertEqual(
            [event["to_status"] for event in history],
            [
                "DRAFT",
                "MANAGER_PENDING",
                "BRANCH_MANAGER_PENDING",
                "BUYER_LEADER_PENDING",
                "ASSIGNED_TO_BUYER",
                "RFQ_IN_PROGRESS",
                "QUOTATION_RECEIVED",
                "BUDGET_EXCEPTION",
                "BUDGET_APPROVED",
                "PAYMENT_DONE",
            ],
        )
        self.assertEqual(self.sink.types_for(seed.requestor)[-1], "PR_PAYMENT_DONE")

        health = self.client.get("/health").get_json()
        self.assertEqual(health["status"], "ok")
        self.assertGreaterEqual(health["metrics"]["workflow"]["transitions_total"], 9)

    def test_notification_read_endpoint(self) -> None:
        self._post("/purchase-requests", self.seed.requestor, {"items": [{"description": "Mouse", "quantity": 2, "unit_price": 15}], "submit": True}, expected=201)
        notification_id = self._get("/notifications", self.seed.manager)["items"][0]["id"]

        stranger = self.client.post(
            f"/api/workflow/notifications/{notification_id}/read", headers=self._as(self.seed.requestor)
        )
        self.assertEqual(stranger.status_code, 404)

        marked = self._post(f"/notifications/{notification_id}/read", self.seed.manager)
        self.assertEqual(marked["status"], "READ")
        self.assertEqual(self._get("/notifications?status=UNREAD", self.seed.manager)["items"], [])

    def test_manager_return_and_resubmit(self) -> None:
        created = self._post(
            "/purchase-requests",
            self.seed.requestor,
            {"items": [{"description": "Desk", "quantity": 1, "unit_price": 300}], "submit": True},
            expected=201,
        )
        pr_id = created["id"]

        no_comment = self.client.post(
            f"/api/workflow/purchase-requests/{pr_id}/manager/return", headers=self._as(self.seed.manager), json={}
        )
        self.assertEqual(no_comment.status_code, 400)
        self.assertEqual(no_comment.get_json()["error"], "comment_required")

        returned = self._post(f"/purchase-requests/{pr_id}/manager/return", self.seed.manager, {"comment": "add quote"})
        self.assertEqual(returned["status"], "MANAGER_RETURNED")

        updated = self.client.put(
            f"/api/workflow/purchase-requests/{pr_id}/items",
            headers=self._as(self.seed.requestor),
            json={"items": [{"description": "Desk", "quantity": 2, "unit_price": 300}]},
        )
        self.assertEqual(updated.status_code, 409)

        resubmitted = self._post(f"/purchase-requests/{pr_id}/resubmit", self.seed.requestor, {"notes": "quote attached"})
        self.assertEqual(resubmitted["status"], "MANAGER_PENDING")

        unknown = self.client.post(
            f"/api/workflow/purchase-requests/{pr_id}/manager/escalate", headers=self._as(self.seed.manager)
        )
        self.assertEqual(unknown.status_code, 404)

    def test_non_finite_numbers_are_rejected(self) -> None:
        for field, value in (("quantity", "nan"), ("unit_price", "inf"), ("quantity", "-Infinity")):
            with self.subTest(field=field, value=value):
                line = {"description": "Cable", "quantity": 1, "unit_price": 5}
                line[field] = value
                response = self.client.post(
                    "/api/workflow/purchase-requests", headers=self._as(self.seed.requestor), json={"items": [line]}
                )
                self.assertEqual(response.status_code, 400, response.get_data(as_text=True))
                body = response.get_json()
                self.assertEqual(body["error"], "validation_error")
                self.assertEqual(body["field"], field)

    def test_unknown_actor_is_rejected(self) -> None:
        response = self.client.get("/api/workflow/purchase-requests", headers=self._as(424242))
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.get_json()["error"], "auth_required")

    def test_other_tenant_sees_nothing(self) -> None:
        created = self._post(
            "/purchase-requests",
            self.seed.requestor,
            {"items": [{"description": "Chair", "quantity": 1, "unit_price": 80}]},
            expected=201,
        )
        other = seed_app_directory(self._temp_db, "tenant-other", branch_code="HN")
        response = self.client.get(
            f"/api/workflow/purchase-requests/{created['id']}",
            headers={"X-Tenant-Id": "tenant-other", "X-User-Id": str(other.requestor)},
        )
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.get_json()["error"], "purchase_request_not_found")


if __name__ == "__main__":
    unittest.main()
