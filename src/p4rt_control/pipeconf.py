"""
Pipeline configuration (pipeconf) model and lookup interface.

The pipeline binary itself is opaque to the client. Only its cookie, a 64-bit
fingerprint of the pipeconf and device data, is used to compare what is
installed on a device with what is expected.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from cryptography.hazmat.primitives import hashes

from .errors import PipeconfError
from .messages import PacketMetadata


def compute_cookie(pipeconf: Pipeconf, device_data: bytes) -> int:
    """Derive the 64-bit pipeline config cookie for a pipeconf and device data."""
    digest = hashes.Hash(hashes.SHA256())
    digest.update(pipeconf.pipeconf_id.encode())
    digest.update(len(pipeconf.p4info).to_bytes(8, "big"))
    digest.update(pipeconf.p4info)
    digest.update(device_data)
    return int.from_bytes(digest.finalize()[:8], "big")


@dataclass(frozen=True)
class Pipeconf:
    """A pipeline configuration known to the controller.

    ``packet_metadata`` maps controller packet metadata names to the ids
    declared in the P4Info.
    """

    pipeconf_id: str
    p4info: bytes = b""
    packet_metadata: dict[str, int] = field(default_factory=dict, hash=False)

    def cookie(self, device_data: bytes) -> int:
        return compute_cookie(self, device_data)

    def encode_metadata(self, metadata: dict[str, bytes]) -> tuple[PacketMetadata, ...]:
        encoded = []
        for name, value in metadata.items():
            metadata_id = self.packet_metadata.get(name)
            if metadata_id is None:
                raise PipeconfError(f"Unknown packet metadata '{name}' for pipeconf {self.pipeconf_id}")
            encoded.append(PacketMetadata(metadata_id=metadata_id, value=value))
        return tuple(encoded)

    def decode_metadata(self, metadata: tuple[PacketMetadata, ...]) -> dict[str, bytes]:
        names = {v: k for k, v in self.packet_metadata.items()}
        return {names.get(m.metadata_id, str(m.metadata_id)): m.value for m in metadata}


@runtime_checkable
class PipeconfService(Protocol):
    """Resolves the pipeconf currently associated with a device."""

    def get_pipeconf(self, device_id: str) -> Pipeconf | None: ...


@dataclass(frozen=True)
class PacketOperation:
    """A packet to inject into a device, with metadata keyed by name."""

    payload: bytes
    metadata: dict[str, bytes] = field(default_factory=dict, hash=False)
