"""
Bounded-timeout helper for calls into external capabilities.

Every adapter call made by the orchestrators goes through ``bounded`` so that a
hung provider surfaces as that call's own failure type instead of an indefinite
wait.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Type, TypeVar

from cryptoanalyst.errors import CryptoAnalystError

T = TypeVar("T")


async def bounded(
    awaitable: Awaitable[T],
    timeout: float,
    error_cls: Type[CryptoAnalystError],
    operation: str,
) -> T:
    """
    Await ``awaitable`` for at most ``timeout`` seconds.

    Parameters
    ----------
    awaitable : Awaitable
        The external call.
    timeout : float
        Upper bound in seconds.
    error_cls : type
        Error raised on timeout; should be the call's normal failure type.
    operation : str
        Label used in the error message.

    Raises
    ------
    error_cls
        If the call does not complete in time.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise error_cls(f"{operation} timed out after {timeout}s", operation=operation) from exc


__all__ = ["bounded"]
