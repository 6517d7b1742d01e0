"""
Table read/write RPCs.

Reads and writes are built with request builders obtained from
``TableIOClient.read()`` / ``TableIOClient.write()`` and sent with
``submit()``.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass

from ..config import ClientConfig
from ..errors import SessionNotOpenError, WriteFailedError
from ..messages import (
    Entity,
    EntityKind,
    ReadRequestMessage,
    ReadResponseMessage,
    Status,
    Update,
    UpdateType,
    WriteRequestMessage,
    WriteResponseMessage,
)
from ..pipeconf import Pipeconf
from ..transport import P4RuntimeStub
from .arbiter import MastershipArbiter
from .context import ClientContext

logger = logging.getLogger(__name__)


# =============================================================================
# Read
# =============================================================================


async def _close_stream(stream: AsyncIterator[ReadResponseMessage] | None) -> None:
    close = getattr(stream, "aclose", None)
    if close is not None:
        await close()


class ReadResponse:
    """Entities returned by a read, as a one-shot async iterator.

    The first batch is already received when this object is created; later
    batches are fetched lazily with no deadline. The read belongs to the
    stream it was started on: closing the session releases it, and iterating
    it after the session closed (or was reopened) raises
    ``SessionNotOpenError``. Use ``aclose()`` or ``async with`` to abandon a
    read part way through.
    """

    def __init__(
        self,
        context: ClientContext,
        op: str,
        stream: AsyncIterator[ReadResponseMessage] | None,
        first: ReadResponseMessage | None,
        generation: int,
    ) -> None:
        self._context = context
        self._op = op
        self._stream = stream
        self._generation = generation
        self._buffer: list[Entity] = list(first.entities) if first is not None else []
        self._finished = first is None
        self._closed = False
        self._fetching = False
        self._iterating = False

    def __aiter__(self) -> ReadResponse:
        if self._iterating:
            raise RuntimeError("ReadResponse can only be iterated once")
        self._iterating = True
        return self

    async def __anext__(self) -> Entity:
        if self._finished:
            raise StopAsyncIteration
        self._context.session.require_open(self._op, self._generation)
        while not self._buffer:
            if self._closed:
                raise StopAsyncIteration
            batch = await self._fetch()
            if batch is None:
                self._finished = True
                await self.aclose()
                raise StopAsyncIteration
            if not isinstance(batch, ReadResponseMessage):
                await self.aclose()
                raise self._context.protocol_violation(self._op, f"unexpected response {type(batch).__name__}")
            self._buffer.extend(batch.entities)
        return self._buffer.pop(0)

    async def _fetch(self) -> ReadResponseMessage | None:
        self._fetching = True
        try:
            batch = await self._context.call(self._op, self._next_batch, generation=self._generation)
        except BaseException:
            self._fetching = False
            await self.aclose()
            raise
        self._fetching = False
        return batch

    async def _next_batch(self, stub: P4RuntimeStub) -> ReadResponseMessage | None:
        return await anext(self._stream, None)

    async def aclose(self) -> None:
        """Stop reading and release the server stream. Safe to call repeatedly."""
        self._closed = True
        self._buffer.clear()
        self._context.session.untrack(self)
        stream, self._stream = self._stream, None
        # An in-flight fetch is cancelled with the session and unwinds the stream itself.
        if not self._fetching:
            await _close_stream(stream)

    async def __aenter__(self) -> ReadResponse:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def all(self) -> list[Entity]:
        return [entity async for entity in self]


class ReadRequest:
    """Builder for a read of forwarding state."""

    def __init__(self, context: ClientContext, p4_device_id: int, pipeconf: Pipeconf, config: ClientConfig) -> None:
        self._context = context
        self._p4_device_id = p4_device_id
        self.pipeconf = pipeconf
        self._config = config
        self._entities: list[Entity] = []

    @property
    def entities(self) -> list[Entity]:
        return list(self._entities)

    def entity(self, entity: Entity) -> ReadRequest:
        self._entities.append(entity)
        return self

    def _ids(self, kind: EntityKind, ids: Iterable[int]) -> ReadRequest:
        ids = list(ids) or [0]
        for entity_id in ids:
            self._entities.append(Entity(kind=kind, entity_id=entity_id))
        return self

    def table_entries(self, *table_ids: int) -> ReadRequest:
        """Read entries of the given tables (all tables if none given)."""
        return self._ids(EntityKind.TABLE_ENTRY, table_ids)

    def counter_cells(self, *counter_ids: int) -> ReadRequest:
        return self._ids(EntityKind.COUNTER_ENTRY, counter_ids)

    def meter_cells(self, *meter_ids: int) -> ReadRequest:
        return self._ids(EntityKind.METER_ENTRY, meter_ids)

    def action_profile_members(self, *profile_ids: int) -> ReadRequest:
        return self._ids(EntityKind.ACTION_PROFILE_MEMBER, profile_ids)

    def action_profile_groups(self, *profile_ids: int) -> ReadRequest:
        return self._ids(EntityKind.ACTION_PROFILE_GROUP, profile_ids)

    async def submit(self) -> ReadResponse:
        op = f"read ({self.pipeconf.pipeconf_id})"
        request = ReadRequestMessage(device_id=self._p4_device_id, entities=tuple(self._entities))
        generation = self._context.session.generation
        stream: AsyncIterator[ReadResponseMessage] | None = None

        async def setup(stub: P4RuntimeStub) -> ReadResponseMessage | None:
            nonlocal stream
            stream = stub.read(request)
            return await anext(stream, None)

        first = await self._context.call(op, setup, timeout=self._config.short_timeout_s, generation=generation)
        if first is not None and not isinstance(first, ReadResponseMessage):
            await _close_stream(stream)
            raise self._context.protocol_violation(op, f"unexpected response {type(first).__name__}")
        response = ReadResponse(self._context, op, stream, first, generation)
        if first is not None and not self._context.session.track(response, generation):
            # Session closed between the first batch and here.
            await response.aclose()
            raise SessionNotOpenError(f"Cannot perform {op} on {self._context.device_id}: session not open")
        return response


# =============================================================================
# Write
# =============================================================================


@dataclass(frozen=True)
class WriteResult:
    """Outcome of one update in a write batch."""

    update: Update
    status: Status

    @property
    def success(self) -> bool:
        return self.status.ok


@dataclass(frozen=True)
class WriteResponse:
    """Per-update outcomes of a write, in submission order."""

    results: tuple[WriteResult, ...] = ()

    @property
    def success(self) -> bool:
        return all(r.success for r in self.results)

    @property
    def successes(self) -> list[WriteResult]:
        return [r for r in self.results if r.success]

    @property
    def failures(self) -> list[WriteResult]:
        return [r for r in self.results if not r.success]

    def raise_for_failures(self) -> None:
        failures = self.failures
        if failures:
            raise WriteFailedError(failures)


class WriteRequest:
    """Builder for a batch of updates submitted as one write RPC."""

    def __init__(
        self,
        context: ClientContext,
        p4_device_id: int,
        pipeconf: Pipeconf,
        arbiter: MastershipArbiter,
        config: ClientConfig,
    ) -> None:
        self._context = context
        self._p4_device_id = p4_device_id
        self.pipeconf = pipeconf
        self._arbiter = arbiter
        self._config = config
        self._updates: list[Update] = []

    def __len__(self) -> int:
        return len(self._updates)

    @property
    def updates(self) -> list[Update]:
        return list(self._updates)

    def update(self, type: UpdateType, entity: Entity) -> WriteRequest:
        self._updates.append(Update(type=type, entity=entity))
        return self

    def insert(self, *entities: Entity) -> WriteRequest:
        for entity in entities:
            self.update(UpdateType.INSERT, entity)
        return self

    def modify(self, *entities: Entity) -> WriteRequest:
        for entity in entities:
            self.update(UpdateType.MODIFY, entity)
        return self

    def delete(self, *entities: Entity) -> WriteRequest:
        for entity in entities:
            self.update(UpdateType.DELETE, entity)
        return self

    async def submit(self) -> WriteResponse:
        """Send the batch. Per-update failures are returned, not raised."""
        op = f"write ({self.pipeconf.pipeconf_id})"
        updates = tuple(self._updates)
        if not updates:
            self._context.session.require_open(op)
            return WriteResponse()

        request = WriteRequestMessage(
            device_id=self._p4_device_id,
            election_id=self._arbiter.last_used_election_id(),
            updates=updates,
            atomicity=self._config.atomicity,
        )
        response = await self._context.call(
            op,
            lambda stub: stub.write(request),
            timeout=self._config.short_timeout_s,
        )
        if not isinstance(response, WriteResponseMessage):
            raise self._context.protocol_violation(op, f"unexpected response {type(response).__name__}")

        statuses = response.statuses or tuple(Status() for _ in updates)
        if len(statuses) != len(updates):
            raise self._context.protocol_violation(
                op, f"expected {len(updates)} update statuses, got {len(statuses)}"
            )
        result = WriteResponse(tuple(WriteResult(u, s) for u, s in zip(updates, statuses)))
        failures = result.failures
        if failures:
            logger.warning(
                "%d of %d update(s) failed while performing %s on %s",
                len(failures),
                len(updates),
                op,
                self._context.device_id,
            )
        return result


class TableIOClient:
    """Creates read and write requests bound to a device session."""

    def __init__(
        self,
        context: ClientContext,
        p4_device_id: int,
        arbiter: MastershipArbiter,
        config: ClientConfig,
    ) -> None:
        self._context = context
        self._p4_device_id = p4_device_id
        self._arbiter = arbiter
        self._config = config

    def read(self, pipeconf: Pipeconf) -> ReadRequest:
        return ReadRequest(self._context, self._p4_device_id, pipeconf, self._config)

    def write(self, pipeconf: Pipeconf) -> WriteRequest:
        return WriteRequest(self._context, self._p4_device_id, pipeconf, self._arbiter, self._config)
