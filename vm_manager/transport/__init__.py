"""Remote connectors, one per target OS family, behind one interface."""
from .base import RemoteConnector, connect_with_retry
from .ssh import SSHConnector, run_channel_command
from .winrm import WinRMConnector, build_session_script, run_powershell

__all__ = [
    "RemoteConnector",
    "SSHConnector",
    "WinRMConnector",
    "build_session_script",
    "connect_with_retry",
    "run_channel_command",
    "run_powershell",
]
