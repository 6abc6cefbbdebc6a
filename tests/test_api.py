import tempfile
import threading
import unittest
from pathlib import Path
from unittest.mock import AsyncMock, Mock, patch

from fastapi.testclient import TestClient

from vm_manager.api.app import app
from vm_manager.api.helpers import get_provider, get_tracker
from vm_manager.config import Settings
from vm_manager.errors import ProviderError
from vm_manager.models import Instance
from vm_manager.storage import assign_instance, init_db
from vm_manager.tasks import TaskTracker


class APITestCase(unittest.TestCase):
    def setUp(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.settings = Settings(jwt_secret="test-secret", max_instances_per_user=2)

        patches = [
            patch("vm_manager.storage.database._db_path", return_value=Path(tmp.name) / "api.db"),
            patch("vm_manager.auth.get_settings", return_value=self.settings),
            patch("vm_manager.api.instance_routes.get_settings", return_value=self.settings),
            patch("vm_manager.api.task_routes.get_settings", return_value=self.settings),
        ]
        for p in patches:
            p.start()
            self.addCleanup(p.stop)
        init_db()

        self.provider = Mock()
        self.provider.cached_os_catalog = None
        self.tracker = TaskTracker()
        app.dependency_overrides[get_provider] = lambda: self.provider
        app.dependency_overrides[get_tracker] = lambda: self.tracker
        self.addCleanup(app.dependency_overrides.clear)

        # No context manager: the lifespan would touch the real data dir.
        self.client = TestClient(app)
        self.admin_token, self.admin = self.login("admin@example.com")
        self.user_token, self.user = self.login("user@example.com")

    def login(self, email):
        self.client.post("/api/auth/register", json={"email": email, "password": "secret1"})
        response = self.client.post("/api/auth/login", json={"email": email, "password": "secret1"})
        body = response.json()
        return body["token"], body["user"]

    def auth(self, token):
        return {"Authorization": f"Bearer {token}"}


class TestAuthRoutes(APITestCase):
    def test_health(self):
        self.assertEqual(self.client.get("/health").json(), {"status": "healthy"})

    def test_roles_and_me(self):
        self.assertEqual(self.admin["role"], "admin")
        self.assertEqual(self.user["role"], "user")

        response = self.client.get("/api/auth/me", headers=self.auth(self.user_token))

        self.assertEqual(response.json()["email"], "user@example.com")

    def test_requires_token(self):
        self.assertEqual(self.client.get("/api/auth/me").status_code, 401)
        self.assertEqual(self.client.get("/api/auth/me", headers=self.auth("nope")).status_code, 401)

    def test_duplicate_registration(self):
        response = self.client.post(
            "/api/auth/register", json={"email": "user@example.com", "password": "secret1"}
        )
        self.assertEqual(response.status_code, 400)

    def test_wrong_password(self):
        response = self.client.post(
            "/api/auth/login", json={"email": "user@example.com", "password": "wrong!!"}
        )
        self.assertEqual(response.status_code, 401)


class TestInstanceRoutes(APITestCase):
    def test_create_returns_task_and_step_budget(self):
        with patch("vm_manager.api.instance_routes.start_batch") as start:
            response = self.client.post(
                "/api/instances",
                headers=self.auth(self.user_token),
                json={"label": "dev", "region": "ewr", "plan": "vc2-1c-1gb", "os_id": 2284, "install": True},
            )

        self.assertEqual(response.status_code, 202)
        body = response.json()
        self.assertEqual(body["total_steps"], 8)
        self.assertIn(body["task_id"], self.tracker)
        task_id, request = start.call_args.args
        self.assertEqual(task_id, body["task_id"])
        self.assertEqual(request.user_id, self.user["id"])
        self.assertEqual(self.tracker.get(task_id).owner_id, self.user["id"])

    def test_windows_batch_budget(self):
        with patch("vm_manager.api.instance_routes.start_batch"):
            response = self.client.post(
                "/api/instances",
                headers=self.auth(self.admin_token),
                json={"label": "win", "region": "ewr", "plan": "vc2-2c-4gb", "os_id": 2514, "count": 3},
            )

        self.assertEqual(response.json()["total_steps"], 6)

    def test_quota_applies_to_users_only(self):
        assign_instance("existing", self.user["id"])
        payload = {"label": "dev", "region": "ewr", "plan": "p", "os_id": 2284, "count": 2}

        with patch("vm_manager.api.instance_routes.start_batch") as start:
            denied = self.client.post("/api/instances", headers=self.auth(self.user_token), json=payload)
            allowed = self.client.post("/api/instances", headers=self.auth(self.admin_token), json=payload)

        self.assertEqual(denied.status_code, 403)
        self.assertEqual(allowed.status_code, 202)
        self.assertEqual(start.call_count, 1)

    def test_ownership_lookup_runs_in_worker_thread(self):
        threads = []

        def owned_ids(user_id):
            threads.append(threading.current_thread().name)
            return []

        self.provider.list_instances = AsyncMock(return_value=[])
        with patch("vm_manager.api.instance_routes.list_user_instance_ids", side_effect=owned_ids):
            response = self.client.get("/api/instances", headers=self.auth(self.user_token))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(threads), 1)
        self.assertTrue(threads[0].startswith("asyncio"))

    def test_list_filters_to_owned_instances(self):
        assign_instance("mine", self.user["id"], "pw")
        self.provider.list_instances = AsyncMock(
            return_value=[Instance(id="mine", default_password="pw"), Instance(id="theirs")]
        )

        user_view = self.client.get("/api/instances", headers=self.auth(self.user_token)).json()
        admin_view = self.client.get("/api/instances", headers=self.auth(self.admin_token)).json()

        self.assertEqual([i["id"] for i in user_view["data"]], ["mine"])
        self.assertIsNone(user_view["data"][0]["default_password"])
        self.assertEqual(len(admin_view["data"]), 2)

    def test_other_users_instance_is_forbidden(self):
        assign_instance("theirs", self.admin["id"])

        response = self.client.get("/api/instances/theirs", headers=self.auth(self.user_token))

        self.assertEqual(response.status_code, 403)

    def test_provider_error_maps_status(self):
        assign_instance("mine", self.user["id"])
        self.provider.get_instance = AsyncMock(side_effect=ProviderError("Instance not found", 404))

        response = self.client.get("/api/instances/mine", headers=self.auth(self.user_token))

        self.assertEqual(response.status_code, 404)

    def test_delete_requires_confirmation(self):
        assign_instance("mine", self.user["id"])
        self.provider.delete_instance = AsyncMock()

        unconfirmed = self.client.request(
            "DELETE", "/api/instances/mine", headers=self.auth(self.user_token), json={}
        )
        confirmed = self.client.request(
            "DELETE", "/api/instances/mine", headers=self.auth(self.user_token), json={"confirm": True}
        )

        self.assertEqual(unconfirmed.status_code, 400)
        self.assertEqual(confirmed.status_code, 200)
        self.provider.delete_instance.assert_awaited_once_with("mine")

    def test_password_for_owner(self):
        assign_instance("mine", self.user["id"], "Xy9!")

        response = self.client.get("/api/instances/mine/password", headers=self.auth(self.user_token))

        self.assertEqual(response.json()["password"], "Xy9!")

    def test_rdp_download(self):
        assign_instance("mine", self.user["id"])
        self.provider.get_instance = AsyncMock(return_value=Instance(id="mine", label="win", ip="198.51.100.4"))

        response = self.client.get("/api/instances/mine/rdp", headers=self.auth(self.user_token))

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.headers["content-type"].startswith("application/x-rdp"))
        self.assertIn('filename="win.rdp"', response.headers["content-disposition"])
        self.assertIn("full address:s:198.51.100.4", response.text)


class TestTaskRoutes(APITestCase):
    def test_unknown_task(self):
        response = self.client.get("/api/tasks/missing/progress", headers=self.auth(self.user_token))

        self.assertEqual(response.status_code, 404)

    def test_completed_task_streams_terminal_event(self):
        task = self.tracker.create_task("t1", owner_id=self.user["id"])
        self.tracker.complete(task.id, {"instances": []})

        first = self.client.get(f"/api/tasks/t1/progress?token={self.user_token}")
        second = self.client.get(f"/api/tasks/t1/progress?token={self.user_token}")

        self.assertEqual(first.status_code, 200)
        self.assertTrue(first.headers["content-type"].startswith("text/event-stream"))
        self.assertTrue(first.text.startswith("event: complete\ndata: "))
        self.assertEqual(first.text, second.text)

    def test_other_users_task_is_forbidden(self):
        self.tracker.create_task("t1", owner_id=self.admin["id"])

        response = self.client.get("/api/tasks/t1/progress", headers=self.auth(self.user_token))

        self.assertEqual(response.status_code, 403)


if __name__ == "__main__":
    unittest.main()
