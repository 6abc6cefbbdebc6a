import unittest
from unittest.mock import AsyncMock, patch

from typer.testing import CliRunner

from vm_manager.cli import app
from vm_manager.config import Settings
from vm_manager.errors import RemoteConnectionError
from vm_manager.models import CommandResult, OSFamily, StepResult


class TestProvisionCommand(unittest.TestCase):
    def setUp(self):
        self.runner = CliRunner()
        settings_patch = patch("vm_manager.cli.get_settings", return_value=Settings())
        settings_patch.start()
        self.addCleanup(settings_patch.stop)

    def test_windows_target_and_summary(self):
        results = [
            StepResult(label="Enable RDP", result=CommandResult(exit_code=0)),
            StepResult(label="Install Git", error="PS Remote timeout (300s)"),
        ]
        with patch("vm_manager.cli.provision", new=AsyncMock(return_value=results)) as provision:
            outcome = self.runner.invoke(
                app, ["provision", "203.0.113.8", "--password", "pw", "--windows", "--admin-password", "N3w!"]
            )

        self.assertEqual(outcome.exit_code, 0, outcome.output)
        target = provision.await_args.args[0]
        self.assertEqual(target.os_family, OSFamily.WINDOWS)
        self.assertEqual(provision.await_args.kwargs["admin_password"], "N3w!")
        self.assertIn("Install Git", outcome.output)

    def test_connection_failure_exits_non_zero(self):
        failure = AsyncMock(side_effect=RemoteConnectionError("ssh gave up", attempts=30))
        with patch("vm_manager.cli.provision", new=failure):
            outcome = self.runner.invoke(app, ["provision", "203.0.113.7", "--password", "pw"])

        self.assertEqual(outcome.exit_code, 1)


if __name__ == "__main__":
    unittest.main()
