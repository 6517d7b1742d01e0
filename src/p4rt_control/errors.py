"""
P4Runtime client exceptions.
"""

from __future__ import annotations

from typing import Any


class P4RuntimeError(Exception):
    """Base exception for P4Runtime client errors."""

    pass


class SessionNotOpenError(P4RuntimeError):
    """Raised when an operation needs an open stream session and there is none."""

    pass


class RpcError(P4RuntimeError):
    """Raised when an RPC against the device fails."""

    def __init__(self, op: str, code: Any = None, details: str = "") -> None:
        self.op = op
        self.code = code
        self.details = details
        message = f"{op} failed"
        if code is not None:
            message += f" [{getattr(code, 'name', code)}]"
        if details:
            message += f": {details}"
        super().__init__(message)


class TransportUnavailableError(RpcError):
    """Raised when the channel to the device is unavailable."""

    pass


class PermissionDeniedError(RpcError):
    """Raised when the device rejects a call because this client is not master."""

    pass


class RpcTimeoutError(RpcError):
    """Raised when an RPC does not complete before its deadline."""

    pass


class RpcCancelledError(RpcError):
    """Raised when an RPC is aborted by session shutdown."""

    pass


class ProtocolViolationError(P4RuntimeError):
    """Raised when the device sends a malformed or unexpected response."""

    pass


class StreamBackPressureError(P4RuntimeError):
    """Raised when the outbound stream queue is full."""

    pass


class PipeconfError(P4RuntimeError):
    """Raised when a pipeconf cannot translate packet metadata."""

    pass


class NoChannelError(P4RuntimeError):
    """Raised when no channel is available for a device."""

    pass


class WriteFailedError(P4RuntimeError):
    """Raised on request when one or more updates in a write batch failed."""

    def __init__(self, failures: list[Any]) -> None:
        self.failures = failures
        super().__init__(f"{len(failures)} update(s) failed")
