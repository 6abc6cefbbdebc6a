"""Shared shape of the remote connectors and the connect retry driver."""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, TypeVar

from ..errors import RemoteConnectionError
from ..models import CommandResult, ConnectionTarget, OSFamily

logger = logging.getLogger(__name__)

T = TypeVar("T")

AttemptCallback = Callable[[int, int], None]


async def connect_with_retry(
    attempt: Callable[[], Awaitable[T]],
    *,
    max_attempts: int,
    retry_delay: float,
    on_attempt: AttemptCallback | None = None,
    fatal: tuple[type[BaseException], ...] = (),
    description: str = "connect",
) -> T:
    """Call `attempt` until it succeeds or the budget runs out.

    `on_attempt(n, max_attempts)` fires before every try. Exceptions listed in
    `fatal` propagate immediately; anything else is retried after
    `retry_delay` seconds. There is no sleep after the final failure.

    Raises:
        RemoteConnectionError: every attempt failed.
    """
    last_error: Exception | None = None
    for number in range(1, max_attempts + 1):
        if on_attempt:
            on_attempt(number, max_attempts)
        try:
            return await attempt()
        except fatal:
            raise
        except Exception as e:
            last_error = e
            logger.info(f"{description}: attempt {number}/{max_attempts} failed: {e}")
        if number < max_attempts:
            await asyncio.sleep(retry_delay)

    raise RemoteConnectionError(
        f"{description} failed after {max_attempts} attempts: {last_error}",
        attempts=max_attempts,
    )


class RemoteConnector(ABC):
    """Connect-with-retry plus execute-with-timeout for one target machine."""

    os_family: OSFamily

    def __init__(self, target: ConnectionTarget):
        self.target = target

    @abstractmethod
    async def connect(self, on_attempt: AttemptCallback | None = None) -> None:
        """Block until the target answers, retrying while it boots."""

    @abstractmethod
    async def execute(self, command: str, timeout: float) -> CommandResult:
        """Run one command. Raises RemoteTimeoutError if it outlives `timeout`."""

    async def close(self) -> None:
        """Release the channel. Connectors without a persistent session do nothing."""

    async def __aenter__(self) -> "RemoteConnector":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
