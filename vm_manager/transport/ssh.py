"""SSH transport for Linux targets."""
from __future__ import annotations

import asyncio
import logging
import time

import paramiko

from ..errors import RemoteError, RemoteTimeoutError
from ..models import CommandResult, ConnectionTarget, OSFamily
from .base import AttemptCallback, RemoteConnector, connect_with_retry

logger = logging.getLogger(__name__)

READ_CHUNK = 32768
POLL_INTERVAL = 0.05


def run_channel_command(
    transport: paramiko.Transport,
    command: str,
    timeout: float,
    poll_interval: float = POLL_INTERVAL,
) -> CommandResult:
    """Run `command` on a fresh session channel and collect both streams.

    Returns:
        CommandResult with trimmed stdout and stderr.

    Raises:
        RemoteTimeoutError: the channel did not finish within `timeout` seconds.
    """
    channel = transport.open_session()
    stdout: list[bytes] = []
    stderr: list[bytes] = []
    deadline = time.monotonic() + timeout
    try:
        channel.exec_command(command)
        while True:
            if time.monotonic() >= deadline:
                raise RemoteTimeoutError(f"Timeout: {command[:60]}", timeout)
            if channel.recv_ready():
                stdout.append(channel.recv(READ_CHUNK))
                continue
            if channel.recv_stderr_ready():
                stderr.append(channel.recv_stderr(READ_CHUNK))
                continue
            if channel.exit_status_ready():
                break
            time.sleep(poll_interval)
        exit_code = channel.recv_exit_status()
    finally:
        channel.close()

    return CommandResult(
        exit_code=exit_code,
        stdout=b"".join(stdout).decode("utf-8", errors="replace").strip(),
        stderr=b"".join(stderr).decode("utf-8", errors="replace").strip(),
    )


class SSHConnector(RemoteConnector):
    """One interactive SSH session, kept open for the whole pipeline."""

    os_family = OSFamily.LINUX

    def __init__(
        self,
        target: ConnectionTarget,
        *,
        max_attempts: int = 30,
        retry_delay: float = 10,
        connect_timeout: float = 15,
        client_factory=paramiko.SSHClient,
    ):
        super().__init__(target)
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.connect_timeout = connect_timeout
        self._client_factory = client_factory
        self._client: paramiko.SSHClient | None = None

    def _open_client(self) -> paramiko.SSHClient:
        client = self._client_factory()
        # Freshly created machines have host keys we have never seen.
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=self.target.host,
                port=self.target.port,
                username=self.target.username,
                password=self.target.password,
                timeout=self.connect_timeout,
                banner_timeout=self.connect_timeout,
                auth_timeout=self.connect_timeout,
                look_for_keys=False,
                allow_agent=False,
            )
        except Exception:
            client.close()
            raise
        return client

    async def connect(self, on_attempt: AttemptCallback | None = None) -> None:
        # Auth and network failures look alike while sshd is still starting,
        # so both are retried.
        self._client = await connect_with_retry(
            lambda: asyncio.to_thread(self._open_client),
            max_attempts=self.max_attempts,
            retry_delay=self.retry_delay,
            on_attempt=on_attempt,
            description=f"[ssh {self.target.host}]",
        )
        logger.info(f"[ssh {self.target.host}] connected")

    async def execute(self, command: str, timeout: float) -> CommandResult:
        if not self._client:
            raise RemoteError("SSH client not connected")
        transport = self._client.get_transport()
        if transport is None or not transport.is_active():
            raise RemoteError(f"SSH session to {self.target.host} is closed")
        return await asyncio.to_thread(run_channel_command, transport, command, timeout)

    async def close(self) -> None:
        if self._client:
            self._client.close()
            self._client = None
            logger.info(f"[ssh {self.target.host}] session closed")
