import unittest
from unittest.mock import patch

from prflow.contexts.procurement.application.workflow_service import PurchaseRequestWorkflow
from prflow.ui_strings import error_message
from tests.helpers.api_app import build_temp_app, dispose_app, seed_app_directory
from tests.helpers.temp_db import TempDbSandbox


class ErrorPermissionTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="error_perm")
        self.app = build_temp_app(self._temp_db, TESTING=False, AUTH_ENABLED=True)
        self.client = self.app.test_client()
        self.headers = {"X-Tenant-Id": "tenant-perm"}

    def tearDown(self) -> None:
        dispose_app(self.app, self._temp_db)

    def test_unauthenticated_api_call(self) -> None:
        response = self.client.get("/api/workflow/purchase-requests", headers=self.headers)
        self.assertEqual(response.status_code, 401)

        payload = response.get_json()
        self.assertEqual(payload.get("error"), "auth_required")
        self.assertEqual(payload.get("kind"), "Unauthorized")
        self.assertEqual(payload.get("message"), error_message("auth_required"))
        self.assertTrue((payload.get("request_id") or "").strip())
        self.assertNotIn("Traceback", response.get_data(as_text=True))

    def test_actor_header_is_ignored_outside_testing(self) -> None:
        headers = dict(self.headers, **{"X-User-Id": "1"})
        response = self.client.get("/api/workflow/purchase-requests", headers=headers)
        self.assertEqual(response.status_code, 401)

    def test_non_api_paths_are_open(self) -> None:
        response = self.client.get("/metrics")
        self.assertEqual(response.status_code, 200)


class ErrorHandlingApiTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="error_api")
        self.app = build_temp_app(self._temp_db, TESTING=True, AUTH_ENABLED=False)
        self.client = self.app.test_client()
        self.tenant_id = "tenant-error-api"
        self.seed = seed_app_directory(self._temp_db, self.tenant_id)

    def tearDown(self) -> None:
        dispose_app(self.app, self._temp_db)

    def _headers(self, user_id: int, **extra) -> dict:
        headers = {"X-Tenant-Id": self.tenant_id, "X-User-Id": str(user_id)}
        headers.update(extra)
        return headers

    def _create(self, submit: bool = False) -> dict:
        response = self.client.post(
            "/api/workflow/purchase-requests",
            headers=self._headers(self.seed.requestor),
            json={"items": [{"description": "Monitor", "quantity": 1, "unit_price": 200}], "submit": submit},
        )
        self.assertEqual(response.status_code, 201)
        return response.get_json()

    def test_invalid_state_transition_is_409_with_allowed_actions(self) -> None:
        pr = self._create()
        response = self.client.post(
            f"/api/workflow/purchase-requests/{pr['id']}/manager/approve",
            headers=self._headers(self.seed.manager),
        )
        self.assertEqual(response.status_code, 409)
        payload = response.get_json()
        self.assertEqual(payload["error"], "invalid_state_transition")
        self.assertEqual(payload["kind"], "InvalidStateTransition")
        self.assertEqual(payload["status"], "DRAFT")
        self.assertEqual(payload["action"], "MANAGER_APPROVE")
        self.assertEqual(payload["allowed_actions"], ["SUBMIT", "CANCEL"])
        self.assertEqual(payload["message"], error_message("invalid_state_transition"))

    def test_wrong_approver_is_403(self) -> None:
        pr = self._create(submit=True)
        response = self.client.post(
            f"/api/workflow/purchase-requests/{pr['id']}/manager/approve",
            headers=self._headers(self.seed.branch_manager),
        )
        self.assertEqual(response.status_code, 403)
        payload = response.get_json()
        self.assertEqual(payload["error"], "permission_denied")
        self.assertEqual(payload["message"], error_message("not_direct_manager"))
        self.assertEqual(payload["purchase_request_id"], pr["id"])

    def test_validation_errors_are_400(self) -> None:
        cases = [
            ({"items": []}, "items_required"),
            ({"items": [{"description": "", "quantity": 1, "unit_price": 1}]}, "item_description_required"),
            ({"items": [{"description": "Pen", "quantity": "lots", "unit_price": 1}]}, "validation_error"),
            ({"items": "Pen"}, "validation_error"),
        ]
        for body, code in cases:
            with self.subTest(code=code, body=body):
                response = self.client.post(
                    "/api/workflow/purchase-requests",
                    headers=self._headers(self.seed.requestor),
                    json=body,
                )
                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.get_json()["error"], code)

    def test_missing_entity_is_404(self) -> None:
        response = self.client.get("/api/workflow/purchase-requests/999999", headers=self._headers(self.seed.requestor))
        self.assertEqual(response.status_code, 404)
        payload = response.get_json()
        self.assertEqual(payload["error"], "purchase_request_not_found")
        self.assertEqual(payload["purchase_request_id"], 999999)

    def test_request_id_is_echoed(self) -> None:
        response = self.client.get(
            "/api/workflow/purchase-requests/999999",
            headers=self._headers(self.seed.requestor, **{"X-Request-Id": "req-abc-123"}),
        )
        self.assertEqual(response.headers.get("X-Request-Id"), "req-abc-123")
        self.assertEqual(response.get_json()["request_id"], "req-abc-123")

    def test_unexpected_error_hides_details(self) -> None:
        with patch.object(
            PurchaseRequestWorkflow,
            "list_purchase_requests",
            side_effect=RuntimeError("database password is hunter2"),
        ):
            with self.assertLogs("prflow", level="ERROR"):
                response = self.client.get(
                    "/api/workflow/purchase-requests",
                    headers=self._headers(self.seed.requestor),
                )

        self.assertEqual(response.status_code, 500)
        payload = response.get_json()
        self.assertEqual(payload["error"], "unexpected_error")
        self.assertEqual(payload["kind"], "SystemError")
        self.assertEqual(payload["message"], error_message("unexpected_error"))
        self.assertNotIn("hunter2", response.get_data(as_text=True))
        self.assertNotIn("Traceback", response.get_data(as_text=True))


if __name__ == "__main__":
    unittest.main()
