"""Shared error types and timeout helper for pipeline stages."""

from __future__ import annotations

import asyncio
from typing import Awaitable, TypeVar

T = TypeVar("T")


class OperationTimeoutError(Exception):
    """An external call did not finish within its time budget."""

    def __init__(self, operation: str, timeout: float):
        super().__init__(f"{operation} timed out after {timeout:g}s")
        self.operation = operation
        self.timeout = timeout


async def with_timeout(awaitable: Awaitable[T], timeout: float, operation: str) -> T:
    """Await `awaitable`, raising OperationTimeoutError once `timeout` elapses.

    A timed-out operation is a terminal failure for the current attempt.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise OperationTimeoutError(operation, timeout) from e


def describe_error(error: BaseException) -> str:
    """Human-readable message for persisting on a failed row."""
    message = str(error).strip()
    return message or type(error).__name__
