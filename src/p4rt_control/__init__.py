"""
P4Runtime control-plane client.

Maintains a session to a switch's P4Runtime agent, arbitrates mastership for
the device over the stream channel, and runs pipeline configuration and
table read/write RPCs under that session.
"""

__version__ = "0.1.0"

from p4rt_control.client import (
    ClientKey,
    ConnectionState,
    ErrorClassifier,
    MastershipArbiter,
    MastershipState,
    P4RuntimeClient,
    PipelineConfigClient,
    ReadRequest,
    ReadResponse,
    RpcExecutor,
    RpcOutcome,
    StreamSession,
    TableIOClient,
    WriteRequest,
    WriteResponse,
    WriteResult,
    create_client,
    outcome_for,
)
from p4rt_control.config import LONG_TIMEOUT_SECONDS, SHORT_TIMEOUT_SECONDS, ClientConfig
from p4rt_control.errors import (
    NoChannelError,
    P4RuntimeError,
    PermissionDeniedError,
    PipeconfError,
    ProtocolViolationError,
    RpcCancelledError,
    RpcError,
    RpcTimeoutError,
    SessionNotOpenError,
    StreamBackPressureError,
    TransportUnavailableError,
    WriteFailedError,
)
from p4rt_control.events import (
    DomainEvent,
    EventSink,
    EventSubject,
    EventType,
    PacketInSubject,
    QueueEventSink,
)
from p4rt_control.messages import (
    Atomicity,
    ElectionId,
    Entity,
    EntityKind,
    Status,
    Update,
    UpdateType,
)
from p4rt_control.pipeconf import PacketOperation, Pipeconf, PipeconfService, compute_cookie
from p4rt_control.transport import ChannelProvider, GrpcP4RuntimeStub, JsonCodec, P4RuntimeStub

__all__ = [
    "__version__",
    # Client
    "P4RuntimeClient",
    "ClientKey",
    "create_client",
    "ClientConfig",
    "SHORT_TIMEOUT_SECONDS",
    "LONG_TIMEOUT_SECONDS",
    # Components
    "RpcExecutor",
    "ErrorClassifier",
    "RpcOutcome",
    "outcome_for",
    "StreamSession",
    "MastershipArbiter",
    "PipelineConfigClient",
    "TableIOClient",
    # State
    "ConnectionState",
    "MastershipState",
    # Table I/O
    "ReadRequest",
    "ReadResponse",
    "WriteRequest",
    "WriteResponse",
    "WriteResult",
    # Messages
    "ElectionId",
    "Entity",
    "EntityKind",
    "Update",
    "UpdateType",
    "Atomicity",
    "Status",
    # Pipeconf
    "Pipeconf",
    "PipeconfService",
    "PacketOperation",
    "compute_cookie",
    # Events
    "DomainEvent",
    "EventType",
    "EventSubject",
    "PacketInSubject",
    "EventSink",
    "QueueEventSink",
    # Transport
    "P4RuntimeStub",
    "GrpcP4RuntimeStub",
    "ChannelProvider",
    "JsonCodec",
    # Errors
    "P4RuntimeError",
    "SessionNotOpenError",
    "RpcError",
    "TransportUnavailableError",
    "PermissionDeniedError",
    "RpcTimeoutError",
    "RpcCancelledError",
    "ProtocolViolationError",
    "StreamBackPressureError",
    "PipeconfError",
    "NoChannelError",
    "WriteFailedError",
]
