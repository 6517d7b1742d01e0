"""
Session and mastership state enums.
"""

from __future__ import annotations

from enum import StrEnum


class ConnectionState(StrEnum):
    """Whether the device's stream session is attached."""

    CLOSED = "closed"
    OPEN = "open"


class MastershipState(StrEnum):
    """Mastership of this client for its device, as last reported by the server."""

    NOT_MASTER = "not_master"
    PENDING = "pending"  # Claim sent, no acknowledgement yet
    MASTER = "master"
