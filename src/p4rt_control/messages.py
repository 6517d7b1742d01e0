"""
P4Runtime protocol message shapes.

These dataclasses mirror the P4Runtime service messages used by the client:
stream arbitration and packet I/O, pipeline configuration, and table
read/write. They carry no wire encoding of their own; ``to_dict`` and
``from_dict`` give a plain representation that a transport codec can
serialize. Entity contents are opaque to the client.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import grpc

_UINT64_MAX = (1 << 64) - 1

_CODES_BY_VALUE: dict[int, grpc.StatusCode] = {code.value[0]: code for code in grpc.StatusCode}


def _hex(value: bytes) -> str:
    return value.hex()


def _unhex(value: str | bytes) -> bytes:
    if isinstance(value, str):
        return bytes.fromhex(value)
    return value


# =============================================================================
# Common
# =============================================================================


@dataclass(frozen=True, order=True)
class ElectionId:
    """128-bit election identifier, ordered by (high, low)."""

    high: int = 0
    low: int = 0

    def __post_init__(self) -> None:
        for half in (self.high, self.low):
            if not 0 <= half <= _UINT64_MAX:
                raise ValueError(f"election id halves must fit in 64 bits, got {half}")

    @classmethod
    def from_int(cls, value: int) -> ElectionId:
        if not 0 <= value < (1 << 128):
            raise ValueError(f"election id out of range: {value}")
        return cls(high=value >> 64, low=value & _UINT64_MAX)

    def __int__(self) -> int:
        return (self.high << 64) | self.low

    def __str__(self) -> str:
        return f"{self.high}:{self.low}"

    def to_dict(self) -> dict[str, Any]:
        return {"high": self.high, "low": self.low}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ElectionId:
        return cls(high=data.get("high", 0), low=data.get("low", 0))


@dataclass(frozen=True)
class Status:
    """Protocol status (canonical gRPC code plus message)."""

    code: int = 0
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.code == grpc.StatusCode.OK.value[0]

    @property
    def status_code(self) -> grpc.StatusCode:
        return _CODES_BY_VALUE.get(self.code, grpc.StatusCode.UNKNOWN)

    @classmethod
    def from_code(cls, code: grpc.StatusCode, message: str = "") -> Status:
        return cls(code=code.value[0], message=message)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Status:
        return cls(code=data.get("code", 0), message=data.get("message", ""))


def _opt(cls: Any, data: dict[str, Any] | None) -> Any:
    return cls.from_dict(data) if data is not None else None


def _opt_dict(value: Any) -> dict[str, Any] | None:
    return value.to_dict() if value is not None else None


# =============================================================================
# Stream channel
# =============================================================================


@dataclass(frozen=True)
class MasterArbitrationUpdate:
    """Mastership claim (client to server) or current-master notice (server to client)."""

    device_id: int
    election_id: ElectionId | None = None
    status: Status | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "device_id": self.device_id,
            "election_id": _opt_dict(self.election_id),
            "status": _opt_dict(self.status),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MasterArbitrationUpdate:
        return cls(
            device_id=data["device_id"],
            election_id=_opt(ElectionId, data.get("election_id")),
            status=_opt(Status, data.get("status")),
        )


@dataclass(frozen=True)
class PacketMetadata:
    metadata_id: int
    value: bytes

    def to_dict(self) -> dict[str, Any]:
        return {"metadata_id": self.metadata_id, "value": _hex(self.value)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PacketMetadata:
        return cls(metadata_id=data["metadata_id"], value=_unhex(data["value"]))


@dataclass(frozen=True)
class _Packet:
    payload: bytes
    metadata: tuple[PacketMetadata, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "payload": _hex(self.payload),
            "metadata": [m.to_dict() for m in self.metadata],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Any:
        return cls(
            payload=_unhex(data["payload"]),
            metadata=tuple(PacketMetadata.from_dict(m) for m in data.get("metadata", [])),
        )


@dataclass(frozen=True)
class PacketOut(_Packet):
    """Packet injected by the controller into the device pipeline."""


@dataclass(frozen=True)
class PacketIn(_Packet):
    """Packet punted by the device to the controller."""


@dataclass(frozen=True)
class StreamError:
    """Asynchronous error reported by the server on the stream."""

    code: int
    message: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StreamError:
        return cls(code=data["code"], message=data.get("message", ""))


@dataclass(frozen=True)
class StreamMessageRequest:
    """Outbound stream frame. Exactly one field is set."""

    arbitration: MasterArbitrationUpdate | None = None
    packet: PacketOut | None = None

    def __post_init__(self) -> None:
        if (self.arbitration is None) == (self.packet is None):
            raise ValueError("StreamMessageRequest needs exactly one of arbitration or packet")

    def to_dict(self) -> dict[str, Any]:
        if self.arbitration is not None:
            return {"arbitration": self.arbitration.to_dict()}
        return {"packet": self.packet.to_dict()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StreamMessageRequest:
        return cls(
            arbitration=_opt(MasterArbitrationUpdate, data.get("arbitration")),
            packet=_opt(PacketOut, data.get("packet")),
        )


@dataclass(frozen=True)
class StreamMessageResponse:
    """Inbound stream frame. Unlike requests, malformed frames are tolerated
    here and rejected by the session dispatcher."""

    arbitration: MasterArbitrationUpdate | None = None
    packet: PacketIn | None = None
    error: StreamError | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.arbitration is not None:
            data["arbitration"] = self.arbitration.to_dict()
        if self.packet is not None:
            data["packet"] = self.packet.to_dict()
        if self.error is not None:
            data["error"] = self.error.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StreamMessageResponse:
        return cls(
            arbitration=_opt(MasterArbitrationUpdate, data.get("arbitration")),
            packet=_opt(PacketIn, data.get("packet")),
            error=_opt(StreamError, data.get("error")),
        )


# =============================================================================
# Pipeline config
# =============================================================================


class PipelineConfigAction(StrEnum):
    VERIFY = "verify"
    VERIFY_AND_SAVE = "verify_and_save"
    VERIFY_AND_COMMIT = "verify_and_commit"
    COMMIT = "commit"
    RECONCILE_AND_COMMIT = "reconcile_and_commit"


class PipelineConfigResponseType(StrEnum):
    ALL = "all"
    COOKIE_ONLY = "cookie_only"
    P4INFO_AND_COOKIE = "p4info_and_cookie"
    DEVICE_CONFIG_AND_COOKIE = "device_config_and_cookie"


@dataclass(frozen=True)
class ForwardingPipelineConfig:
    p4info: bytes = b""
    p4_device_config: bytes = b""
    cookie: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "p4info": _hex(self.p4info),
            "p4_device_config": _hex(self.p4_device_config),
            "cookie": self.cookie,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ForwardingPipelineConfig:
        return cls(
            p4info=_unhex(data.get("p4info", "")),
            p4_device_config=_unhex(data.get("p4_device_config", "")),
            cookie=data.get("cookie"),
        )


@dataclass(frozen=True)
class SetPipelineConfigRequest:
    device_id: int
    election_id: ElectionId | None
    config: ForwardingPipelineConfig
    action: PipelineConfigAction = PipelineConfigAction.VERIFY_AND_COMMIT

    def to_dict(self) -> dict[str, Any]:
        return {
            "device_id": self.device_id,
            "election_id": _opt_dict(self.election_id),
            "config": self.config.to_dict(),
            "action": self.action.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SetPipelineConfigRequest:
        return cls(
            device_id=data["device_id"],
            election_id=_opt(ElectionId, data.get("election_id")),
            config=ForwardingPipelineConfig.from_dict(data["config"]),
            action=PipelineConfigAction(data.get("action", PipelineConfigAction.VERIFY_AND_COMMIT.value)),
        )


@dataclass(frozen=True)
class SetPipelineConfigResponse:
    def to_dict(self) -> dict[str, Any]:
        return {}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SetPipelineConfigResponse:
        return cls()


@dataclass(frozen=True)
class GetPipelineConfigRequest:
    device_id: int
    response_type: PipelineConfigResponseType = PipelineConfigResponseType.COOKIE_ONLY

    def to_dict(self) -> dict[str, Any]:
        return {"device_id": self.device_id, "response_type": self.response_type.value}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GetPipelineConfigRequest:
        return cls(
            device_id=data["device_id"],
            response_type=PipelineConfigResponseType(
                data.get("response_type", PipelineConfigResponseType.COOKIE_ONLY.value)
            ),
        )


@dataclass(frozen=True)
class GetPipelineConfigResponse:
    config: ForwardingPipelineConfig | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"config": _opt_dict(self.config)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> GetPipelineConfigResponse:
        return cls(config=_opt(ForwardingPipelineConfig, data.get("config")))


# =============================================================================
# Table I/O
# =============================================================================


class EntityKind(StrEnum):
    TABLE_ENTRY = "table_entry"
    ACTION_PROFILE_MEMBER = "action_profile_member"
    ACTION_PROFILE_GROUP = "action_profile_group"
    COUNTER_ENTRY = "counter_entry"
    DIRECT_COUNTER_ENTRY = "direct_counter_entry"
    METER_ENTRY = "meter_entry"
    DIRECT_METER_ENTRY = "direct_meter_entry"
    REGISTER_ENTRY = "register_entry"
    PACKET_REPLICATION_ENGINE_ENTRY = "packet_replication_engine_entry"


class UpdateType(StrEnum):
    INSERT = "insert"
    MODIFY = "modify"
    DELETE = "delete"


class Atomicity(StrEnum):
    CONTINUE_ON_ERROR = "continue_on_error"
    ROLLBACK_ON_ERROR = "rollback_on_error"
    DATAPLANE_ATOMIC = "dataplane_atomic"


@dataclass(frozen=True)
class Entity:
    """A forwarding-state entity.

    ``entity_id`` is the P4Info id of the table/counter/meter the entity
    belongs to (0 acts as a wildcard in reads). ``fields`` is opaque to the
    client and must hold plain values if the default JSON codec is used.
    """

    kind: EntityKind
    entity_id: int = 0
    fields: dict[str, Any] = field(default_factory=dict, hash=False)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "entity_id": self.entity_id, "fields": dict(self.fields)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Entity:
        return cls(
            kind=EntityKind(data["kind"]),
            entity_id=data.get("entity_id", 0),
            fields=dict(data.get("fields", {})),
        )


@dataclass(frozen=True)
class Update:
    type: UpdateType
    entity: Entity

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "entity": self.entity.to_dict()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Update:
        return cls(type=UpdateType(data["type"]), entity=Entity.from_dict(data["entity"]))


@dataclass(frozen=True)
class ReadRequestMessage:
    device_id: int
    entities: tuple[Entity, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"device_id": self.device_id, "entities": [e.to_dict() for e in self.entities]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReadRequestMessage:
        return cls(
            device_id=data["device_id"],
            entities=tuple(Entity.from_dict(e) for e in data.get("entities", [])),
        )


@dataclass(frozen=True)
class ReadResponseMessage:
    entities: tuple[Entity, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"entities": [e.to_dict() for e in self.entities]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReadResponseMessage:
        return cls(entities=tuple(Entity.from_dict(e) for e in data.get("entities", [])))


@dataclass(frozen=True)
class WriteRequestMessage:
    device_id: int
    election_id: ElectionId | None
    updates: tuple[Update, ...] = ()
    atomicity: Atomicity = Atomicity.CONTINUE_ON_ERROR

    def to_dict(self) -> dict[str, Any]:
        return {
            "device_id": self.device_id,
            "election_id": _opt_dict(self.election_id),
            "updates": [u.to_dict() for u in self.updates],
            "atomicity": self.atomicity.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WriteRequestMessage:
        return cls(
            device_id=data["device_id"],
            election_id=_opt(ElectionId, data.get("election_id")),
            updates=tuple(Update.from_dict(u) for u in data.get("updates", [])),
            atomicity=Atomicity(data.get("atomicity", Atomicity.CONTINUE_ON_ERROR.value)),
        )


@dataclass(frozen=True)
class WriteResponseMessage:
    """Write outcome with one status per submitted update, in order.

    An empty ``statuses`` means every update succeeded.
    """

    statuses: tuple[Status, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {"statuses": [s.to_dict() for s in self.statuses]}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WriteResponseMessage:
        return cls(statuses=tuple(Status.from_dict(s) for s in data.get("statuses", [])))
