import threading
import unittest
from unittest.mock import AsyncMock, Mock, patch

from vm_manager.batch import (
    BatchRequest,
    BatchRun,
    check_quota,
    clamp_count,
    password_changed,
    run_batch,
    wait_for_ready,
)
from vm_manager.config import Settings
from vm_manager.errors import InstanceNotReadyError, ProviderError, QuotaExceededError, RemoteConnectionError
from vm_manager.models import CommandResult, EventKind, Instance, OSFamily, StepResult, TaskStatus
from vm_manager.provisioner import provision
from vm_manager.tasks import TaskTracker
from vm_manager.transport import RemoteConnector


def _pending(instance_id="i1"):
    return Instance(id=instance_id, status="pending", power_status="stopped", server_status="none")


def _ready(instance_id="i1", ip="203.0.113.7"):
    return Instance(id=instance_id, status="active", power_status="running", server_status="ok", ip=ip)


class OkConnector(RemoteConnector):
    async def connect(self, on_attempt=None):
        if on_attempt:
            on_attempt(1, 30)

    async def execute(self, command, timeout):
        return CommandResult(exit_code=0, stdout="ok")


async def provision_with_fake_transport(target, **kwargs):
    return await provision(target, connector=OkConnector(target), **kwargs)


class BatchTestCase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.settings = Settings(ready_poll_interval_seconds=0, ready_timeout_seconds=5)
        self.tracker = TaskTracker()
        self.task = self.tracker.create_task("task-1")
        self.events = []
        self.tracker.subscribe(self.task.id, lambda kind, payload: self.events.append((kind, payload)))
        self.provider = Mock()
        self.provider.create_instance = AsyncMock(return_value=_pending().model_copy(update={"default_password": "root-pw"}))
        self.provider.get_instance = AsyncMock(side_effect=[_pending(), _ready()])
        self.provider.create_startup_script = AsyncMock(return_value="script-1")
        self.provider.delete_startup_script = AsyncMock()
        self.record_owner = Mock()

    async def run_request(self, request, **kwargs):
        kwargs.setdefault("provisioner", provision_with_fake_transport)
        await run_batch(
            self.task.id,
            request,
            provider=self.provider,
            tracker=self.tracker,
            settings=self.settings,
            record_owner=self.record_owner,
            **kwargs,
        )

    def progress(self):
        return [p for k, p in self.events if k == EventKind.PROGRESS]

    def complete_payload(self):
        kind, payload = self.events[-1]
        self.assertEqual(kind, EventKind.COMPLETE)
        return payload


class TestBatchRequest(unittest.TestCase):
    def test_step_budget(self):
        linux = BatchRequest("vm", "ewr", "vc2-1c-1gb", 2284, OSFamily.LINUX, "u1", count=1, install=True)
        windows = BatchRequest("vm", "ewr", "vc2-2c-4gb", 2514, OSFamily.WINDOWS, "u1", count=3)
        windows_install = BatchRequest(
            "vm", "ewr", "vc2-2c-4gb", 2514, OSFamily.WINDOWS, "u1", count=2, install=True, admin_password="x"
        )

        self.assertEqual(linux.total_steps, 8)
        self.assertEqual(windows.total_steps, 6)
        self.assertEqual(windows_install.steps_per_instance, 12)
        self.assertEqual(windows_install.total_steps, 24)

    def test_labels(self):
        single = BatchRequest("box", "ewr", "p", 1, OSFamily.LINUX, "u1")
        many = BatchRequest("box", "ewr", "p", 1, OSFamily.LINUX, "u1", count=3)

        self.assertEqual(single.instance_label(0), "box")
        self.assertEqual([many.instance_label(i) for i in range(3)], ["box-01", "box-02", "box-03"])

    def test_clamp_count(self):
        self.assertEqual(clamp_count(0), 1)
        self.assertEqual(clamp_count(None), 1)
        self.assertEqual(clamp_count(50), 20)
        self.assertEqual(clamp_count(7, maximum=5), 5)

    def test_quota(self):
        check_quota(owned=3, requested=2, limit=5)
        with self.assertRaises(QuotaExceededError):
            check_quota(owned=4, requested=2, limit=5)

    def test_password_changed_only_for_successful_final_step(self):
        ok = CommandResult(exit_code=0)

        self.assertTrue(password_changed([StepResult(label="Set admin password", result=ok)]))
        self.assertFalse(password_changed([]))
        self.assertFalse(password_changed([StepResult(label="Set admin password", error="timeout")]))
        self.assertFalse(
            password_changed(
                [StepResult(label="Set admin password", result=ok), StepResult(label="Create desktop shortcuts", result=ok)]
            )
        )


class TestLinuxInstallBatch(BatchTestCase):
    async def test_single_linux_instance_with_install(self):
        request = BatchRequest("dev", "ewr", "vc2-1c-1gb", 2284, OSFamily.LINUX, "u1", install=True)

        await self.run_request(request)

        progress = self.progress()
        steps = [p["step"] for p in progress]
        self.assertEqual(steps, sorted(steps))
        self.assertEqual(set(steps), set(range(1, 9)))
        self.assertTrue(all(p["total"] == 8 for p in progress))
        self.assertEqual(progress[-1]["step"], 8)
        self.assertEqual(progress[-1]["status"], "done")

        connect = [p for p in progress if p["step"] == 3]
        self.assertEqual(connect[0]["status"], "in_progress")
        self.assertEqual(connect[-1]["status"], "done")

        payload = self.complete_payload()
        self.assertTrue(payload["install"])
        self.assertFalse(payload["is_windows"])
        self.assertIn("elapsed", payload)
        instance = payload["instances"][0]["instance"]
        self.assertEqual(instance["ip"], "203.0.113.7")
        self.assertNotIn("default_password", instance)
        self.assertEqual(len(payload["instances"][0]["steps"]), 5)

        self.record_owner.assert_called_once_with("i1", "u1", "root-pw")
        self.provider.create_startup_script.assert_not_awaited()
        self.assertEqual(self.task.status, TaskStatus.COMPLETED)

    async def test_ownership_written_off_the_event_loop(self):
        loop_thread = threading.get_ident()
        writer_threads = []
        self.record_owner.side_effect = lambda *args: writer_threads.append(threading.get_ident())
        request = BatchRequest("dev", "ewr", "vc2-1c-1gb", 2284, OSFamily.LINUX, "u1")

        await self.run_request(request)

        self.assertEqual(len(writer_threads), 1)
        self.assertNotEqual(writer_threads[0], loop_thread)

    async def test_connection_failure_recorded_and_batch_completes(self):
        request = BatchRequest("dev", "ewr", "vc2-1c-1gb", 2284, OSFamily.LINUX, "u1", install=True)
        provisioner = AsyncMock(side_effect=RemoteConnectionError("ssh gave up", attempts=30))

        await self.run_request(request, provisioner=provisioner)

        result = self.complete_payload()["instances"][0]
        self.assertEqual(result["provision_error"], "ssh gave up")
        self.assertIsNone(result["error"])
        target = provisioner.await_args.args[0]
        self.assertEqual(target.password, "root-pw")
        self.assertEqual(target.host, "203.0.113.7")


class TestWindowsBatch(BatchTestCase):
    async def test_three_windows_instances_without_install(self):
        self.provider.create_instance = AsyncMock(
            side_effect=[_pending(f"i{n}") for n in range(1, 4)]
        )
        self.provider.get_instance = AsyncMock(side_effect=lambda instance_id: _ready(instance_id))
        provisioner = AsyncMock()
        request = BatchRequest("win", "ewr", "vc2-2c-4gb", 2514, OSFamily.WINDOWS, "u1", count=3)

        await self.run_request(request, provisioner=provisioner)

        provisioner.assert_not_awaited()
        progress = self.progress()
        self.assertTrue(all(p["total"] == 6 for p in progress))
        self.assertEqual(max(p["step"] for p in progress), 6)
        labels = [c.kwargs["label"] for c in self.provider.create_instance.await_args_list]
        self.assertEqual(labels, ["win-01", "win-02", "win-03"])
        self.assertEqual(self.provider.create_startup_script.await_count, 3)
        self.provider.delete_startup_script.assert_awaited_with("script-1")

        payload = self.complete_payload()
        self.assertTrue(payload["is_windows"])
        self.assertFalse(payload["install"])
        self.assertEqual(len(payload["instances"]), 3)

    async def test_admin_password_used_when_provider_returns_none(self):
        self.provider.create_instance = AsyncMock(return_value=_pending())
        provisioner = AsyncMock(return_value=[])
        request = BatchRequest(
            "win", "ewr", "vc2-2c-4gb", 2514, OSFamily.WINDOWS, "u1", install=True, admin_password="Chosen1!"
        )

        await self.run_request(request, provisioner=provisioner)

        self.record_owner.assert_called_once_with("i1", "u1", "Chosen1!")
        self.assertEqual(provisioner.await_args.args[0].password, "Chosen1!")
        self.assertEqual(provisioner.await_args.kwargs["admin_password"], "Chosen1!")

    async def test_stored_password_follows_successful_password_change(self):
        request = BatchRequest(
            "win", "ewr", "vc2-2c-4gb", 2514, OSFamily.WINDOWS, "u1", install=True, admin_password="Chosen1!"
        )

        await self.run_request(request)

        self.assertEqual(
            [c.args for c in self.record_owner.call_args_list],
            [("i1", "u1", "root-pw"), ("i1", "u1", "Chosen1!")],
        )
        steps = self.complete_payload()["instances"][0]["steps"]
        self.assertEqual(steps[-1]["label"], "Set admin password")
        self.assertEqual(len(steps), 9)

    async def test_failed_password_change_keeps_provider_password(self):
        request = BatchRequest(
            "win", "ewr", "vc2-2c-4gb", 2514, OSFamily.WINDOWS, "u1", install=True, admin_password="Chosen1!"
        )
        failed = [
            StepResult(label="Enable RDP", result=CommandResult(exit_code=0)),
            StepResult(label="Set admin password", result=CommandResult(exit_code=2, stderr="policy")),
        ]

        await self.run_request(request, provisioner=AsyncMock(return_value=failed))

        self.record_owner.assert_called_once_with("i1", "u1", "root-pw")


class TestBatchFailures(BatchTestCase):
    async def test_creation_failure_moves_on_to_next_instance(self):
        self.provider.create_instance = AsyncMock(side_effect=[ProviderError("Plan unavailable", 400), _pending("i2")])
        self.provider.get_instance = AsyncMock(return_value=_ready("i2"))
        request = BatchRequest("vm", "ewr", "p", 2284, OSFamily.LINUX, "u1", count=2)

        await self.run_request(request)

        first, second = self.complete_payload()["instances"]
        self.assertEqual(first["label"], "vm-01")
        self.assertEqual(first["error"], "Plan unavailable")
        self.assertEqual(second["instance"]["id"], "i2")
        self.assertIn({"step": 1, "total": 4, "label": "Create vm-01", "status": "error", "detail": "Failed: Plan unavailable"}, self.progress())

    async def test_ready_timeout_is_recorded(self):
        self.settings = Settings(ready_poll_interval_seconds=0.01, ready_timeout_seconds=0.05)
        self.provider.get_instance = AsyncMock(return_value=_pending())
        request = BatchRequest("vm", "ewr", "p", 2284, OSFamily.LINUX, "u1", install=True)

        await self.run_request(request)

        result = self.complete_payload()["instances"][0]
        self.assertIn("Timeout waiting", result["error"])
        self.assertEqual(self.progress()[-1]["status"], "error")
        self.assertEqual(self.progress()[-1]["step"], 2)

    async def test_missing_ip_skips_provisioning(self):
        self.provider.get_instance = AsyncMock(return_value=_ready(ip="0.0.0.0"))
        provisioner = AsyncMock()
        request = BatchRequest("vm", "ewr", "p", 2284, OSFamily.LINUX, "u1", install=True)

        await self.run_request(request, provisioner=provisioner)

        provisioner.assert_not_awaited()
        self.assertEqual(self.complete_payload()["instances"][0]["provision_error"], "No IP address")
        self.assertEqual(self.progress()[-1]["status"], "warning")

    async def test_unexpected_error_fails_task(self):
        request = BatchRequest("vm", "ewr", "p", 2284, OSFamily.LINUX, "u1")

        with patch.object(BatchRun, "run_instance", new=AsyncMock(side_effect=RuntimeError("db gone"))):
            await self.run_request(request)

        self.assertEqual(self.task.status, TaskStatus.ERROR)
        self.assertEqual(self.events[-1], (EventKind.ERROR, {"message": "db gone"}))


class TestWaitForReady(unittest.IsolatedAsyncioTestCase):
    async def test_reports_only_status_changes(self):
        provider = Mock()
        provider.get_instance = AsyncMock(side_effect=[_pending(), _pending(), _ready()])
        seen = []

        ready = await wait_for_ready(provider, "i1", on_change=seen.append, poll_interval=0, timeout=5)

        self.assertTrue(ready.is_ready)
        self.assertEqual(len(seen), 2)

    async def test_timeout(self):
        provider = Mock()
        provider.get_instance = AsyncMock(return_value=_pending())

        with self.assertRaises(InstanceNotReadyError):
            await wait_for_ready(provider, "i1", poll_interval=0.01, timeout=0.05)


if __name__ == "__main__":
    unittest.main()
