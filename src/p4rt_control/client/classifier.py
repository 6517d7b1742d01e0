"""
Classification of RPC failures into domain outcomes.

The mapping from transport status to outcome is a plain table so it can be
checked without any transport:

- PERMISSION_DENIED -> mastership lost (PERMISSION_DENIED event)
- UNAVAILABLE       -> channel error (CHANNEL_ERROR event)
- anything else     -> plain failure, no event
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from types import MappingProxyType

import grpc

from ..errors import (
    P4RuntimeError,
    PermissionDeniedError,
    RpcCancelledError,
    RpcError,
    RpcTimeoutError,
    TransportUnavailableError,
)
from ..events import DomainEvent, EventSink, EventSubject, EventType

logger = logging.getLogger(__name__)


class RpcOutcome(StrEnum):
    MASTERSHIP_LOST = "mastership_lost"
    CHANNEL_ERROR = "channel_error"
    FAILURE = "failure"


OUTCOMES = MappingProxyType(
    {
        grpc.StatusCode.PERMISSION_DENIED: RpcOutcome.MASTERSHIP_LOST,
        grpc.StatusCode.UNAVAILABLE: RpcOutcome.CHANNEL_ERROR,
    }
)

OUTCOME_EVENTS = MappingProxyType(
    {
        RpcOutcome.MASTERSHIP_LOST: EventType.PERMISSION_DENIED,
        RpcOutcome.CHANNEL_ERROR: EventType.CHANNEL_ERROR,
    }
)

_ERROR_TYPES: dict[grpc.StatusCode, type[RpcError]] = {
    grpc.StatusCode.PERMISSION_DENIED: PermissionDeniedError,
    grpc.StatusCode.UNAVAILABLE: TransportUnavailableError,
    grpc.StatusCode.DEADLINE_EXCEEDED: RpcTimeoutError,
    grpc.StatusCode.CANCELLED: RpcCancelledError,
}


def outcome_for(code: grpc.StatusCode | None) -> RpcOutcome:
    """Return the domain outcome of a failure status. Unknown codes are plain failures."""
    return OUTCOMES.get(code, RpcOutcome.FAILURE)


@dataclass(frozen=True)
class Classification:
    outcome: RpcOutcome
    error: P4RuntimeError


class ErrorClassifier:
    """Logs RPC failures and reports the ones the controller cares about."""

    def __init__(self, device_id: str, event_sink: EventSink) -> None:
        self.device_id = device_id
        self._event_sink = event_sink

    def classify(self, error: BaseException, op: str) -> Classification:
        """Classify a failure raised while performing ``op``.

        Posts an event for mastership loss and channel errors. The returned
        error is what the caller should raise.
        """
        if isinstance(error, P4RuntimeError):
            # Already a local failure (timeout, cancellation, closed session).
            logger.warning("Error while performing %s on %s: %s", op, self.device_id, error)
            return Classification(RpcOutcome.FAILURE, error)

        code = error.code() if isinstance(error, grpc.RpcError) and hasattr(error, "code") else None
        if code is None:
            logger.error("Exception while performing %s on %s", op, self.device_id, exc_info=error)
            return Classification(RpcOutcome.FAILURE, RpcError(op, details=str(error) or type(error).__name__))

        details = error.details() if hasattr(error, "details") else ""
        return self.report(code, op, details or "", cause=error)

    def report(
        self,
        code: grpc.StatusCode,
        op: str,
        details: str = "",
        cause: BaseException | None = None,
    ) -> Classification:
        """Classify a failure status for ``op``, posting an event if it maps to one."""
        message = details or code.name
        if cause is not None and cause.__cause__ is not None:
            message = f"{message} ({cause.__cause__!r})"
        logger.warning("Error while performing %s on %s: %s", op, self.device_id, message)
        if cause is not None:
            logger.debug("Traceback for %s on %s", op, self.device_id, exc_info=cause)

        outcome = outcome_for(code)
        event_type = OUTCOME_EVENTS.get(outcome)
        if event_type is not None:
            self._event_sink.post_event(DomainEvent(event_type, EventSubject(self.device_id)))

        error_type = _ERROR_TYPES.get(code, RpcError)
        return Classification(outcome, error_type(op, code, details))
