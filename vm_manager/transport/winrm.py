"""
PowerShell remoting transport for Windows targets.

Every command runs in its own short-lived PSSession opened by a local
PowerShell process (`pwsh` off Windows) using Negotiate authentication
against the built-in Administrator account. There is no persistent session
to hold open between steps.
"""
from __future__ import annotations

import asyncio
import logging
import os
import subprocess

from ..errors import RemoteAuthError, RemoteError, RemoteTimeoutError
from ..models import CommandResult, ConnectionTarget, OSFamily
from .base import AttemptCallback, RemoteConnector, connect_with_retry

logger = logging.getLogger(__name__)

ACCESS_DENIED_MARKER = "Access is denied"
CONNECTED_SENTINEL = "CONNECTED"
PROBE_COMMAND = f"Write-Output '{CONNECTED_SENTINEL}'"
WINDOWS_ADMIN_USER = "Administrator"


def powershell_executable() -> str:
    return "powershell.exe" if os.name == "nt" else "pwsh"


def quote_ps_literal(value: str) -> str:
    """Escape a value for a single-quoted PowerShell string."""
    return value.replace("'", "''")


def build_session_script(
    host: str,
    password: str,
    command: str,
    username: str = WINDOWS_ADMIN_USER,
    local_is_windows: bool | None = None,
) -> str:
    """Wrap `command` in credential setup, session open, invoke and teardown.

    Any error caught around the session makes the local process exit 1.
    """
    if local_is_windows is None:
        local_is_windows = os.name == "nt"
    if local_is_windows:
        session_options = "$so = New-PSSessionOption -SkipCACheck -SkipCNCheck -SkipRevocationCheck"
        auth_param = ""
    else:
        # pwsh on Linux has no -SkipRevocationCheck and needs Negotiate spelled out
        session_options = "$so = New-PSSessionOption -SkipCACheck -SkipCNCheck"
        auth_param = "-Authentication Negotiate"

    return f"""
$ErrorActionPreference = 'Continue'
$pw = '{quote_ps_literal(password)}'
$secpwd = ConvertTo-SecureString $pw -AsPlainText -Force
$cred = New-Object System.Management.Automation.PSCredential('{quote_ps_literal(username)}', $secpwd)
{session_options}
$session = $null
try {{
  $session = New-PSSession -ComputerName {host} -Credential $cred -SessionOption $so {auth_param} -ErrorAction Stop
  $result = Invoke-Command -Session $session -ScriptBlock {{
    {command}
  }} -ErrorAction Stop 2>&1
  $result | ForEach-Object {{ Write-Output $_ }}
  $code = 0
}} catch {{
  Write-Error $_.Exception.Message
  $code = 1
}} finally {{
  if ($session) {{ Remove-PSSession $session -ErrorAction SilentlyContinue }}
}}
exit $code
"""


def run_powershell(script: str, timeout: float, executable: str | None = None) -> CommandResult:
    """Run a script in a local PowerShell process, killing it at `timeout`."""
    executable = executable or powershell_executable()
    try:
        completed = subprocess.run(
            [executable, "-NoProfile", "-NonInteractive", "-Command", script],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise RemoteTimeoutError(f"PS Remote timeout ({timeout:g}s)", timeout) from e
    return CommandResult(
        exit_code=completed.returncode,
        stdout=(completed.stdout or "").strip(),
        stderr=(completed.stderr or "").strip(),
    )


class WinRMConnector(RemoteConnector):
    os_family = OSFamily.WINDOWS

    def __init__(
        self,
        target: ConnectionTarget,
        *,
        max_attempts: int = 40,
        retry_delay: float = 15,
        probe_timeout: float = 20,
        executable: str | None = None,
    ):
        super().__init__(target)
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.probe_timeout = probe_timeout
        self.executable = executable or powershell_executable()

    async def _probe(self) -> None:
        result = await self.execute(PROBE_COMMAND, self.probe_timeout)
        if CONNECTED_SENTINEL in result.stdout:
            return
        message = result.stderr or result.stdout or "Unexpected response"
        if ACCESS_DENIED_MARKER in message:
            raise RemoteAuthError(f"WinRM access denied on {self.target.host}: {message}")
        raise RemoteError(message)

    async def connect(self, on_attempt: AttemptCallback | None = None) -> None:
        # A missing local PowerShell will not appear by waiting either.
        await connect_with_retry(
            self._probe,
            max_attempts=self.max_attempts,
            retry_delay=self.retry_delay,
            on_attempt=on_attempt,
            fatal=(RemoteAuthError, FileNotFoundError),
            description=f"[winrm {self.target.host}]",
        )
        logger.info(f"[winrm {self.target.host}] connected")

    async def execute(self, command: str, timeout: float) -> CommandResult:
        script = build_session_script(self.target.host, self.target.password, command)
        return await asyncio.to_thread(run_powershell, script, timeout, self.executable)
