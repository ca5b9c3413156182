# eventcast/utils/timeouts.py

import asyncio
import logging

logger = logging.getLogger(__name__)


class OperationTimeoutError(Exception):
    """An external call exceeded its time box."""

    def __init__(self, operation, timeout):
        self.operation = operation
        self.timeout = timeout
        super().__init__(f"{operation} timed out after {timeout}s")


async def call_with_timeout(awaitable, timeout, operation='external call', error_cls=OperationTimeoutError):
    """
    Await ``awaitable`` for at most ``timeout`` seconds.

    A timeout surfaces as ``error_cls(operation, timeout)`` so callers treat it
    like any other per-call failure. ``asyncio.wait_for`` cancels the inner
    task and releases its timer on success, failure and timeout alike.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"⏱️ {operation} timed out after {timeout}s")
        raise error_cls(operation, timeout) from None
