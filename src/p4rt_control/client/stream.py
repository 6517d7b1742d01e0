"""
Stream session: the single long-lived bidirectional stream per device.

The stream carries mastership arbitration and packet I/O. Outbound frames go
through a FIFO queue that feeds the request iterator, so ``send`` never
blocks. Inbound frames are moved by a reader task into one inbound queue and
dispatched by a single processing loop. Stream termination is queued behind
the frames that preceded it, so those frames are always handled first.

Unexpected termination is reported through the error classifier and closes
the session. Re-opening is left to whoever owns reconnection policy.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any, Protocol

import grpc

from ..config import ClientConfig
from ..errors import ProtocolViolationError, SessionNotOpenError, StreamBackPressureError
from ..events import DomainEvent, EventSink, EventSubject, EventType, PacketInSubject
from ..messages import PacketIn, StreamError, StreamMessageRequest, StreamMessageResponse
from ..pipeconf import PipeconfService
from ..transport import P4RuntimeStub
from .classifier import ErrorClassifier
from .executor import RpcExecutor
from .state import ConnectionState

logger = logging.getLogger(__name__)

STREAM_OP = "stream channel"


@dataclass(frozen=True)
class _StreamEnd:
    error: BaseException | None = None


class Closable(Protocol):
    """Session-bound work that outlives a single RPC, such as a streaming read."""

    async def aclose(self) -> None: ...


class StreamSession:
    """Owns the stream to one device and tracks whether it is open."""

    def __init__(
        self,
        device_id: str,
        stub: P4RuntimeStub,
        executor: RpcExecutor,
        classifier: ErrorClassifier,
        event_sink: EventSink,
        pipeconf_service: PipeconfService | None = None,
        config: ClientConfig | None = None,
    ) -> None:
        self.device_id = device_id
        self.config = config or ClientConfig()
        self._stub = stub
        self._executor = executor
        self._classifier = classifier
        self._event_sink = event_sink
        self._pipeconf_service = pipeconf_service

        self._lock = threading.Lock()
        self._state = ConnectionState.CLOSED
        self._opened_before = False
        self._generation = 0
        self._closables: set[Closable] = set()
        self._outbound: asyncio.Queue[StreamMessageRequest] | None = None
        self._reader: asyncio.Task | None = None
        self._processor: asyncio.Task | None = None

        self._handlers: dict[type, Callable[[Any], None]] = {}
        self._state_listeners: list[Callable[[ConnectionState], None]] = []

    # -------------------------------------------------------------------------
    # Wiring
    # -------------------------------------------------------------------------

    def register_handler(self, frame_type: type, handler: Callable[[Any], None]) -> None:
        """Route inbound frames of ``frame_type`` to ``handler``."""
        self._handlers[frame_type] = handler

    def add_state_listener(self, listener: Callable[[ConnectionState], None]) -> None:
        """Call ``listener`` on every open/closed transition."""
        self._state_listeners.append(listener)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        with self._lock:
            return self._state

    @property
    def generation(self) -> int:
        """Incremented on every open; identifies the current stream."""
        with self._lock:
            return self._generation

    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    def require_open(self, op: str, generation: int | None = None) -> None:
        """Raise ``SessionNotOpenError`` unless open (and still on ``generation``, if given)."""
        with self._lock:
            current = self._state is ConnectionState.OPEN and generation in (None, self._generation)
        if not current:
            raise SessionNotOpenError(f"Cannot perform {op} on {self.device_id}: session not open")

    def track(self, resource: Closable, generation: int) -> bool:
        """Close ``resource`` when the session closes.

        Returns False, without tracking, if the session has already closed
        or reopened since ``generation``.
        """
        with self._lock:
            if self._state is not ConnectionState.OPEN or generation != self._generation:
                return False
            self._closables.add(resource)
        return True

    def untrack(self, resource: Closable) -> None:
        with self._lock:
            self._closables.discard(resource)

    async def open(self) -> None:
        """Open the stream. Does nothing if it is already open."""
        with self._lock:
            if self._state is ConnectionState.OPEN:
                return
            self._state = ConnectionState.OPEN
            self._generation += 1
            reconnected = self._opened_before
            outbound: asyncio.Queue[StreamMessageRequest] = asyncio.Queue(
                maxsize=self.config.max_packet_out_queue
            )
            self._outbound = outbound

        inbound: asyncio.Queue[StreamMessageResponse | _StreamEnd] = asyncio.Queue()
        try:
            stream = self._stub.stream_channel(self._requests(outbound))
            self._reader = asyncio.create_task(
                self._read_loop(stream, inbound), name=f"p4rt-stream-reader-{self.device_id}"
            )
            self._processor = asyncio.create_task(
                self._process_loop(inbound), name=f"p4rt-stream-processor-{self.device_id}"
            )
        except Exception:
            logger.warning("Failed to open stream session for %s", self.device_id)
            if self._reader is not None:
                self._reader.cancel()
            self._reader = self._processor = None
            with self._lock:
                self._state = ConnectionState.CLOSED
                self._outbound = None
            raise

        with self._lock:
            self._opened_before = True
        logger.debug("Opened stream session for %s", self.device_id)
        self._notify(ConnectionState.OPEN)

        if reconnected:
            self._event_sink.post_event(
                DomainEvent(EventType.CHANNEL_RECONNECTED, EventSubject(self.device_id))
            )

    async def close(self) -> None:
        """Close the stream and cancel in-flight RPCs. Safe to call repeatedly."""
        if not self._mark_closed():
            return
        cancelled = self._executor.cancel_all()

        current = asyncio.current_task()
        tasks = [t for t in (self._reader, self._processor) if t is not None and t is not current]
        self._reader = self._processor = None
        for task in tasks:
            task.cancel()
        # Only waits for the stream tasks to unwind, never for RPCs.
        await asyncio.gather(*tasks, return_exceptions=True)
        await self._close_tracked()
        logger.debug("Closed stream session for %s (%d in-flight RPC(s) cancelled)", self.device_id, cancelled)

    def _mark_closed(self) -> bool:
        with self._lock:
            if self._state is ConnectionState.CLOSED:
                return False
            self._state = ConnectionState.CLOSED
            self._outbound = None
        self._notify(ConnectionState.CLOSED)
        return True

    async def _close_tracked(self) -> None:
        with self._lock:
            resources, self._closables = self._closables, set()
        results = await asyncio.gather(*(r.aclose() for r in resources), return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.warning("Error while closing session resource on %s: %s", self.device_id, result)

    def _notify(self, state: ConnectionState) -> None:
        for listener in self._state_listeners:
            listener(state)

    # -------------------------------------------------------------------------
    # Outbound
    # -------------------------------------------------------------------------

    def send(self, frame: StreamMessageRequest) -> None:
        """Queue a frame for sending. Never blocks."""
        with self._lock:
            outbound = self._outbound if self._state is ConnectionState.OPEN else None
        if outbound is None:
            raise SessionNotOpenError(f"Cannot send stream frame to {self.device_id}: session not open")
        try:
            outbound.put_nowait(frame)
        except asyncio.QueueFull:
            raise StreamBackPressureError(
                f"Outbound stream queue for {self.device_id} is full ({outbound.maxsize} frames)"
            ) from None

    @staticmethod
    async def _requests(outbound: asyncio.Queue[StreamMessageRequest]) -> AsyncIterator[StreamMessageRequest]:
        while True:
            yield await outbound.get()

    # -------------------------------------------------------------------------
    # Inbound
    # -------------------------------------------------------------------------

    @staticmethod
    async def _read_loop(
        stream: AsyncIterator[StreamMessageResponse],
        inbound: asyncio.Queue[StreamMessageResponse | _StreamEnd],
    ) -> None:
        try:
            async for frame in stream:
                inbound.put_nowait(frame)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            inbound.put_nowait(_StreamEnd(e))
        else:
            inbound.put_nowait(_StreamEnd())

    async def _process_loop(self, inbound: asyncio.Queue[StreamMessageResponse | _StreamEnd]) -> None:
        while True:
            item = await inbound.get()
            if isinstance(item, _StreamEnd):
                await self._on_stream_end(item.error)
                return
            try:
                self._dispatch(item)
            except ProtocolViolationError as e:
                logger.warning("Dropping stream frame from %s: %s", self.device_id, e)
            except Exception:
                logger.exception("Error while handling stream frame from %s", self.device_id)

    def _dispatch(self, frame: StreamMessageResponse) -> None:
        payloads = [p for p in (frame.arbitration, frame.packet, frame.error) if p is not None]
        if len(payloads) != 1:
            raise ProtocolViolationError(f"stream frame must carry exactly one update, got {len(payloads)}")
        payload = payloads[0]

        if isinstance(payload, PacketIn):
            self._on_packet_in(payload)
        elif isinstance(payload, StreamError):
            logger.warning(
                "Stream error from %s: %s (%s)",
                self.device_id,
                payload.message,
                payload.code,
            )
        else:
            handler = self._handlers.get(type(payload))
            if handler is None:
                logger.debug("No handler for %s from %s", type(payload).__name__, self.device_id)
                return
            handler(payload)

    def _on_packet_in(self, packet: PacketIn) -> None:
        pipeconf = self._pipeconf_service.get_pipeconf(self.device_id) if self._pipeconf_service else None
        if pipeconf is not None:
            metadata = pipeconf.decode_metadata(packet.metadata)
        else:
            metadata = {str(m.metadata_id): m.value for m in packet.metadata}
        self._event_sink.post_event(
            DomainEvent(
                EventType.PACKET_IN,
                PacketInSubject(self.device_id, packet=packet, metadata=metadata),
            )
        )

    async def _on_stream_end(self, error: BaseException | None) -> None:
        if not self._mark_closed():
            return
        if error is None:
            self._classifier.report(grpc.StatusCode.UNAVAILABLE, STREAM_OP, "stream closed by server")
        else:
            self._classifier.classify(error, STREAM_OP)
        self._executor.cancel_all()
        self._reader = self._processor = None
        await self._close_tracked()
