"""
Cancellable, time-bounded RPC execution.

Every RPC issued for a device runs as its own task tracked by the session's
executor. Closing the session cancels all tracked tasks at once; callers of
a cancelled RPC get ``RpcCancelledError`` rather than a bare cancellation.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from ..errors import RpcCancelledError, RpcTimeoutError
from ..transport import P4RuntimeStub

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(eq=False)
class PendingRpc:
    """An in-flight call owned by an executor."""

    op: str
    timeout: float | None
    task: asyncio.Future
    started_at: float = field(default_factory=time.monotonic)
    cancelled_by_scope: bool = False

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started_at


class RpcExecutor:
    """Runs units of work against a stub inside a shared cancellation scope."""

    def __init__(self, stub: P4RuntimeStub, device_id: str) -> None:
        self._stub = stub
        self._device_id = device_id
        self._pending: set[PendingRpc] = set()

    @property
    def pending(self) -> list[PendingRpc]:
        return list(self._pending)

    async def execute(
        self,
        work: Callable[[P4RuntimeStub], Awaitable[T]],
        timeout: float | None = None,
        op: str = "RPC",
    ) -> T:
        """Run ``work`` with an optional deadline.

        Transport failures propagate unchanged. Deadline expiry raises
        ``RpcTimeoutError``; cancellation by :meth:`cancel_all` raises
        ``RpcCancelledError``.
        """
        if logger.isEnabledFor(logging.DEBUG):
            if timeout is None:
                logger.debug("Executing %s on %s with no timeout", op, self._device_id)
            else:
                logger.debug("Executing %s on %s with timeout %.1f seconds", op, self._device_id, timeout)

        task = asyncio.ensure_future(work(self._stub))
        pending = PendingRpc(op=op, timeout=timeout, task=task)
        self._pending.add(pending)
        try:
            async with asyncio.timeout(timeout):
                return await task
        except TimeoutError as e:
            raise RpcTimeoutError(op, details=f"no response within {timeout} seconds") from e
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if pending.cancelled_by_scope and (current is None or not current.cancelling()):
                raise RpcCancelledError(op, details="session closed") from None
            raise
        finally:
            self._pending.discard(pending)

    def cancel_all(self) -> int:
        """Cancel every in-flight RPC without waiting for it. Returns the count."""
        pending = list(self._pending)
        for rpc in pending:
            rpc.cancelled_by_scope = True
            rpc.task.cancel()
        if pending:
            logger.debug("Cancelled %d in-flight RPC(s) on %s", len(pending), self._device_id)
        return len(pending)
