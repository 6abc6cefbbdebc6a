"""Process-wide settings, loaded from defaults, an optional YAML file and the environment."""
from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "VM_MANAGER_CONFIG"
DEFAULT_CONFIG_PATH = Path("config.yaml")

# Settings field -> environment variable.
ENV_OVERRIDES = {
    "vultr_api_key": "VULTR_API_KEY",
    "vultr_base_url": "VULTR_BASE_URL",
    "jwt_secret": "JWT_SECRET",
    "data_dir": "VM_MANAGER_DATA_DIR",
    "port": "PORT",
    "max_instances_per_user": "MAX_INSTANCES_PER_USER",
    "log_level": "LOG_LEVEL",
}


class Settings(BaseModel):
    vultr_api_key: str = Field(default="", repr=False)
    vultr_base_url: str = "https://api.vultr.com/v2"
    jwt_secret: str = Field(default="fallback-dev-secret-change-me", repr=False)
    jwt_expiry_days: int = 7
    data_dir: Path = Path("data")
    port: int = 3000
    log_level: str = "INFO"

    max_instances_per_user: int = Field(default=5, description="Admins are not limited")
    max_batch_size: int = 20
    instance_tag: str = "vultr-vm-creator"

    task_retention_seconds: float = 3600
    task_sweep_interval_seconds: float = 300
    keepalive_interval_seconds: float = 15

    ready_poll_interval_seconds: float = 5
    ready_timeout_seconds: float = 600

    winrm_max_attempts: int = 40
    winrm_retry_delay_seconds: float = 15
    winrm_probe_timeout_seconds: float = 20
    ssh_max_attempts: int = 30
    ssh_retry_delay_seconds: float = 10
    ssh_connect_timeout_seconds: float = 15

    launcher_port: int = 3001
    fallback_admin_password: str = Field(default="VultrAdmin2026", repr=False)

    @property
    def db_path(self) -> Path:
        return self.data_dir / "vm_manager.db"


def _load_yaml(path: Path) -> dict[str, Any]:
    """Return the YAML payload, or an empty mapping when the file is absent."""
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as handle:
        payload = yaml.safe_load(handle) or {}
    if not isinstance(payload, dict):
        msg = f"Config root in {path} must be a mapping."
        raise ValueError(msg)
    return payload


def load_settings(config_path: Path | None = None, environ: dict[str, str] | None = None) -> Settings:
    environ = os.environ if environ is None else environ
    if config_path is None:
        config_path = Path(environ.get(CONFIG_PATH_ENV, DEFAULT_CONFIG_PATH))

    values = _load_yaml(config_path)
    for field_name, env_name in ENV_OVERRIDES.items():
        if environ.get(env_name):
            values[field_name] = environ[env_name]

    settings = Settings.model_validate(values)
    if not settings.vultr_api_key:
        logger.warning("VULTR_API_KEY is not set; provider calls will be rejected")
    return settings


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()


def configure_logging(level: str | int = "INFO") -> None:
    """Install one stream handler on the root logger. Safe to call twice."""
    root = logging.getLogger()
    root.setLevel(level)
    if any(getattr(h, "_vm_manager", False) for h in root.handlers):
        return
    handler = logging.StreamHandler()
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)-7s %(name)s: %(message)s")
    )
    handler._vm_manager = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    logging.getLogger("paramiko").setLevel(logging.WARNING)
