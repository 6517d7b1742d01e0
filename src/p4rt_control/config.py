"""
Client configuration.

Timeouts come in two classes: short for handshake-like calls (arbitration,
pipeline config query, read setup, write) and long for calls that may move a
large amount of data (pipeline config push).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from .messages import Atomicity

#: Timeout in seconds for short/fast RPCs.
SHORT_TIMEOUT_SECONDS = 10.0

#: Timeout in seconds for RPCs that transfer potentially large data, such as
#: pipeline binaries pushed over a slow network.
LONG_TIMEOUT_SECONDS = 60.0


@dataclass
class ClientConfig:
    """Configuration for a P4Runtime client."""

    short_timeout_s: float = SHORT_TIMEOUT_SECONDS
    long_timeout_s: float = LONG_TIMEOUT_SECONDS
    #: Maximum outbound stream frames waiting to be sent (0 = unbounded).
    max_packet_out_queue: int = 0
    atomicity: Atomicity = Atomicity.CONTINUE_ON_ERROR

    def __post_init__(self) -> None:
        if self.short_timeout_s <= 0 or self.long_timeout_s <= 0:
            raise ValueError("timeouts must be positive")
        if self.max_packet_out_queue < 0:
            raise ValueError("max_packet_out_queue must be >= 0")

    def to_dict(self) -> dict[str, Any]:
        return {
            "short_timeout_s": self.short_timeout_s,
            "long_timeout_s": self.long_timeout_s,
            "max_packet_out_queue": self.max_packet_out_queue,
            "atomicity": self.atomicity.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ClientConfig:
        return cls(
            short_timeout_s=data.get("short_timeout_s", SHORT_TIMEOUT_SECONDS),
            long_timeout_s=data.get("long_timeout_s", LONG_TIMEOUT_SECONDS),
            max_packet_out_queue=data.get("max_packet_out_queue", 0),
            atomicity=Atomicity(data.get("atomicity", Atomicity.CONTINUE_ON_ERROR.value)),
        )
