# Copyright 2025 Ben Mensi
# SPDX-License-Identifier: Apache-2.0

"""
Message transport between the Shim and the Controller, with delivery retry.

The privileged side may not be listening yet right after injection. Sends
that fail with a "no receiver" condition are retried with a linear backoff
(base delay x attempt number); every other failure propagates at once.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol

from scriptext.bridge.protocol import NO_RECEIVER_MARKER, NoReceiverError


logger = logging.getLogger(__name__)

DEFAULT_SEND_ATTEMPTS = 8
DEFAULT_RETRY_BASE_DELAY = 0.15

Message = Dict[str, Any]
Listener = Callable[[Message], Awaitable[Any]]
Sleep = Callable[[float], Awaitable[None]]


class Transport(Protocol):
    """Anything that can deliver one message and return the single reply."""

    async def send_message(self, message: Message) -> Any: ...


def is_no_receiver(error: BaseException) -> bool:
    """True when the failure means nothing is listening on the other side yet."""
    return isinstance(error, NoReceiverError) or NO_RECEIVER_MARKER in str(error)


async def send_with_retry(
    transport: Transport,
    message: Message,
    attempts: int = DEFAULT_SEND_ATTEMPTS,
    base_delay: float = DEFAULT_RETRY_BASE_DELAY,
    sleep: Sleep = asyncio.sleep,
) -> Any:
    """
    Send a message, retrying only while no receiver is listening.

    Args:
        transport: Delivery channel
        message: Wire message
        attempts: Total attempts, including the first
        base_delay: Seconds; attempt n waits base_delay * n before retrying
        sleep: Awaitable sleep, replaceable in tests

    Returns:
        The reply of the first successful attempt

    Raises:
        The last error once attempts are exhausted, or any non-retryable error
    """
    last_error: Optional[BaseException] = None
    for attempt in range(1, attempts + 1):
        try:
            return await transport.send_message(message)
        except Exception as e:
            if not is_no_receiver(e):
                raise
            last_error = e
            if attempt == attempts:
                break
            delay = base_delay * attempt
            logger.warning(
                f"No receiver for {message.get('type')} "
                f"(attempt {attempt}/{attempts}), retrying in {delay:.2f}s"
            )
            await sleep(delay)
    raise last_error


class MessageBus:
    """
    In-process stand-in for the runtime messaging channel.

    The first registered listener answers each message. With no listener the
    send fails with NoReceiverError, like a runtime whose privileged context
    has not started listening yet.
    """

    def __init__(self):
        self._listeners: List[Listener] = []

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def has_listeners(self) -> bool:
        return bool(self._listeners)

    async def send_message(self, message: Message) -> Any:
        if not self._listeners:
            raise NoReceiverError()
        return await self._listeners[0](message)
