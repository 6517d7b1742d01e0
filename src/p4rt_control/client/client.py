"""
P4Runtime client for one device.

Composes the stream session, mastership arbiter, pipeline config client and
table I/O client behind a single per-device session. All RPCs run in the
session's cancellation scope, so closing the session aborts outstanding work.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..config import ClientConfig
from ..errors import NoChannelError, SessionNotOpenError
from ..events import EventSink
from ..messages import ElectionId, PacketOut, StreamMessageRequest
from ..pipeconf import PacketOperation, Pipeconf, PipeconfService
from ..transport import ChannelProvider, Codec, GrpcP4RuntimeStub, P4RuntimeStub
from .arbiter import MastershipArbiter
from .classifier import ErrorClassifier
from .context import ClientContext
from .executor import RpcExecutor
from .pipeline import PipelineConfigClient
from .stream import StreamSession
from .table import ReadRequest, TableIOClient, WriteRequest

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientKey:
    """Identifies a client: the device, its P4Runtime-internal id, and the agent address."""

    device_id: str
    p4_device_id: int
    server_addr: str = ""


class P4RuntimeClient:
    """
    Control-plane client for a single P4Runtime device.

    Example:
        client = create_client(key, channels, events)
        await client.open_session()
        if await client.run_for_mastership(ElectionId(0, 5)):
            await client.set_pipeline_config(pipeconf, device_data)
    """

    def __init__(
        self,
        key: ClientKey,
        stub: P4RuntimeStub,
        event_sink: EventSink,
        pipeconf_service: PipeconfService | None = None,
        config: ClientConfig | None = None,
    ) -> None:
        self.key = key
        self.config = config or ClientConfig()
        self._shut_down = False

        self._executor = RpcExecutor(stub, key.device_id)
        self._classifier = ErrorClassifier(key.device_id, event_sink)
        self._session = StreamSession(
            key.device_id,
            stub,
            self._executor,
            self._classifier,
            event_sink,
            pipeconf_service=pipeconf_service,
            config=self.config,
        )
        self._arbiter = MastershipArbiter(self._session, key.p4_device_id)
        context = ClientContext(self._session, self._executor, self._classifier)
        self._pipeline = PipelineConfigClient(context, key.p4_device_id, self._arbiter, self.config)
        self._tables = TableIOClient(context, key.p4_device_id, self._arbiter, self.config)

    @property
    def device_id(self) -> str:
        return self.key.device_id

    @property
    def p4_device_id(self) -> int:
        """P4Runtime-internal device id."""
        return self.key.p4_device_id

    # -------------------------------------------------------------------------
    # Session
    # -------------------------------------------------------------------------

    async def open_session(self) -> None:
        if self._shut_down:
            raise SessionNotOpenError(f"Client for {self.device_id} has been shut down")
        await self._session.open()

    async def close_session(self) -> None:
        await self._session.close()

    def is_session_open(self) -> bool:
        return self._session.is_open()

    async def shutdown(self) -> None:
        """Close the session for good. Later operations fail with SessionNotOpenError."""
        self._shut_down = True
        await self._session.close()
        logger.debug("Shut down client for %s", self.device_id)

    async def __aenter__(self) -> P4RuntimeClient:
        await self.open_session()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.shutdown()

    # -------------------------------------------------------------------------
    # Mastership
    # -------------------------------------------------------------------------

    async def run_for_mastership(self, election_id: ElectionId) -> bool:
        """Claim mastership and wait (short timeout) for the server's answer."""
        self._arbiter.run_for_mastership(election_id)
        return await self._arbiter.wait_for_outcome(self.config.short_timeout_s)

    def is_master(self) -> bool:
        return self._arbiter.is_master()

    def last_used_election_id(self) -> ElectionId | None:
        """Election id last sent to the server.

        No guarantee is given that the server accepted it or that it is still
        the current one.
        """
        return self._arbiter.last_used_election_id()

    # -------------------------------------------------------------------------
    # Packet I/O
    # -------------------------------------------------------------------------

    def packet_out(self, packet: PacketOperation, pipeconf: Pipeconf) -> None:
        frame = StreamMessageRequest(
            packet=PacketOut(payload=packet.payload, metadata=pipeconf.encode_metadata(packet.metadata))
        )
        self._session.send(frame)

    # -------------------------------------------------------------------------
    # Forwarding state
    # -------------------------------------------------------------------------

    def read(self, pipeconf: Pipeconf) -> ReadRequest:
        return self._tables.read(pipeconf)

    def write(self, pipeconf: Pipeconf) -> WriteRequest:
        return self._tables.write(pipeconf)

    async def set_pipeline_config(self, pipeconf: Pipeconf, device_data: bytes) -> bool:
        return await self._pipeline.set_pipeline_config(pipeconf, device_data)

    async def is_pipeline_config_set(self, pipeconf: Pipeconf, device_data: bytes) -> bool:
        return await self._pipeline.is_pipeline_config_set(pipeconf, device_data)


def create_client(
    key: ClientKey,
    channel_provider: ChannelProvider,
    event_sink: EventSink,
    pipeconf_service: PipeconfService | None = None,
    config: ClientConfig | None = None,
    codec: Codec | None = None,
) -> P4RuntimeClient:
    """Create a client over the provider's channel for ``key.device_id``."""
    channel = channel_provider.get_channel(key.device_id)
    if channel is None:
        raise NoChannelError(f"No channel available for {key.device_id}")
    return P4RuntimeClient(
        key,
        GrpcP4RuntimeStub(channel, codec=codec),
        event_sink,
        pipeconf_service=pipeconf_service,
        config=config,
    )
