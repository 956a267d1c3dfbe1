import unittest

from prflow.contexts.directory.infrastructure.sql_directory import SqlDirectoryLookup
from prflow.contexts.procurement.infrastructure.repositories import PurchaseRequestRepository
from prflow.domain.contracts import Actor
from prflow.errors import NotFoundError
from prflow.infrastructure.repositories.base import TenantScopeRequiredError
from tests.helpers.seed import build_services, open_seeded_db, request_input, seed_directory
from tests.helpers.temp_db import TempDbSandbox


class RepositoryTenantScopeTest(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_db = TempDbSandbox(prefix="repo_scope")
        self.db = open_seeded_db(self._temp_db.db_path)
        self.seed_a = seed_directory(self.db, "tenant-a")
        self.seed_b = seed_directory(self.db, "tenant-b", branch_code="HN")
        self.services_a = build_services("tenant-a")
        self.services_b = build_services("tenant-b")

    def tearDown(self) -> None:
        self.db.close()
        self._temp_db.cleanup()

    def _create(self, services, seed) -> dict:
        actor = Actor.from_user(services.directory.get_user(self.db, seed.requestor))
        return services.workflow.create_purchase_request(self.db, actor, request_input(("Toner", 3, 20.0))).payload

    def test_repository_requires_tenant_scope(self) -> None:
        for value in (None, "", "   "):
            with self.subTest(value=value):
                with self.assertRaises(TenantScopeRequiredError):
                    PurchaseRequestRepository(tenant_id=value)
        with self.assertRaises(TenantScopeRequiredError):
            SqlDirectoryLookup()

    def test_purchase_requests_are_isolated_per_tenant(self) -> None:
        pr_a = self._create(self.services_a, self.seed_a)
        pr_b = self._create(self.services_b, self.seed_b)

        # Numbering restarts per tenant.
        self.assertEqual(pr_a["pr_number"], pr_b["pr_number"])

        listed_a = self.services_a.workflow.list_purchase_requests(self.db).payload["items"]
        self.assertEqual([row["id"] for row in listed_a], [pr_a["id"]])

        with self.assertRaises(NotFoundError):
            self.services_a.workflow.get_purchase_request(self.db, pr_b["id"])

    def test_directory_is_isolated_per_tenant(self) -> None:
        self.assertIsNone(self.services_a.directory.get_user(self.db, self.seed_b.requestor))
        self.assertEqual(
            [user["id"] for user in self.services_b.directory.resolve_branch_managers(self.db, "HN")],
            [self.seed_b.branch_manager],
        )
        self.assertEqual(self.services_a.directory.resolve_branch_managers(self.db, "HN"), [])

    def test_cross_tenant_actor_cannot_act(self) -> None:
        pr_a = self._create(self.services_a, self.seed_a)
        intruder = Actor.from_user(self.services_b.directory.get_user(self.db, self.seed_b.requestor))

        with self.assertRaises(NotFoundError):
            self.services_b.workflow.submit(self.db, intruder, pr_a["id"])
        self.assertEqual(self.services_a.workflow.get_purchase_request(self.db, pr_a["id"]).payload["status"], "DRAFT")


if __name__ == "__main__":
    unittest.main()
