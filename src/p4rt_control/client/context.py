"""
Shared call path for request/response RPCs of one device session.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from ..errors import ProtocolViolationError
from ..transport import P4RuntimeStub
from .classifier import ErrorClassifier, RpcOutcome
from .executor import RpcExecutor
from .stream import StreamSession

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ClientContext:
    """Bundles the session, executor and classifier RPC-issuing components share.

    Calls fail fast with ``SessionNotOpenError`` when the session is closed.
    A channel error closes the session, so later calls fail fast too.
    """

    def __init__(self, session: StreamSession, executor: RpcExecutor, classifier: ErrorClassifier) -> None:
        self.session = session
        self.executor = executor
        self.classifier = classifier

    @property
    def device_id(self) -> str:
        return self.classifier.device_id

    async def call(
        self,
        op: str,
        work: Callable[[P4RuntimeStub], Awaitable[T]],
        timeout: float | None = None,
        generation: int | None = None,
    ) -> T:
        """Run ``work`` for ``op``. A ``generation`` pins the call to the stream it started on."""
        self.session.require_open(op, generation)
        try:
            return await self.executor.execute(work, timeout=timeout, op=op)
        except Exception as e:
            result = self.classifier.classify(e, op)
            if result.outcome is RpcOutcome.CHANNEL_ERROR:
                await self.session.close()
            if result.error is e:
                raise
            raise result.error from e

    def protocol_violation(self, op: str, reason: str) -> ProtocolViolationError:
        """Log and build the error for a malformed response to ``op``."""
        logger.warning("Protocol violation while performing %s on %s: %s", op, self.device_id, reason)
        return ProtocolViolationError(f"{op} on {self.device_id}: {reason}")
