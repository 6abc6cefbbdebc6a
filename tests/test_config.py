import logging
import tempfile
import unittest
from pathlib import Path

from vm_manager.config import configure_logging, load_settings


class TestLoadSettings(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self._tmp.cleanup)
        self.dir = Path(self._tmp.name)

    def test_defaults_when_file_missing(self):
        settings = load_settings(self.dir / "absent.yaml", environ={})

        self.assertEqual(settings.port, 3000)
        self.assertEqual(settings.max_instances_per_user, 5)
        self.assertEqual(settings.db_path, Path("data") / "vm_manager.db")

    def test_yaml_then_environment(self):
        path = self.dir / "config.yaml"
        path.write_text("port: 8080\nssh_max_attempts: 3\nvultr_api_key: from-file\n", encoding="utf-8")

        settings = load_settings(path, environ={"VULTR_API_KEY": "from-env", "MAX_INSTANCES_PER_USER": "9"})

        self.assertEqual(settings.port, 8080)
        self.assertEqual(settings.ssh_max_attempts, 3)
        self.assertEqual(settings.vultr_api_key, "from-env")
        self.assertEqual(settings.max_instances_per_user, 9)

    def test_config_path_from_environment(self):
        path = self.dir / "other.yaml"
        path.write_text("launcher_port: 4000\n", encoding="utf-8")

        settings = load_settings(environ={"VM_MANAGER_CONFIG": str(path)})

        self.assertEqual(settings.launcher_port, 4000)

    def test_non_mapping_root_rejected(self):
        path = self.dir / "config.yaml"
        path.write_text("- just\n- a list\n", encoding="utf-8")

        with self.assertRaises(ValueError):
            load_settings(path, environ={})

    def test_api_key_hidden_from_repr(self):
        settings = load_settings(self.dir / "absent.yaml", environ={"VULTR_API_KEY": "s3cr3t"})

        self.assertNotIn("s3cr3t", repr(settings))


class TestConfigureLogging(unittest.TestCase):
    def test_handler_installed_once(self):
        root = logging.getLogger()
        before = list(root.handlers)
        self.addCleanup(lambda: setattr(root, "handlers", before))

        configure_logging("DEBUG")
        configure_logging("INFO")

        ours = [h for h in root.handlers if getattr(h, "_vm_manager", False)]
        self.assertEqual(len(ours), 1)
        self.assertEqual(root.level, logging.INFO)
        self.assertEqual(logging.getLogger("paramiko").level, logging.WARNING)


if __name__ == "__main__":
    unittest.main()
