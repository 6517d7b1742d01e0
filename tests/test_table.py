"""
Tests for table read/write RPCs.
"""

from __future__ import annotations

import asyncio

import grpc
import pytest

from p4rt_control.errors import (
    ProtocolViolationError,
    RpcCancelledError,
    SessionNotOpenError,
    TransportUnavailableError,
    WriteFailedError,
)
from p4rt_control.events import EventType
from p4rt_control.messages import (
    Atomicity,
    ElectionId,
    Entity,
    EntityKind,
    Status,
    UpdateType,
)

from .conftest import P4_DEVICE_ID, rpc_error, wait_until


def table_entry(n: int) -> Entity:
    return Entity(EntityKind.TABLE_ENTRY, entity_id=100, fields={"match": {"dst": f"10.0.0.{n}"}})


# =============================================================================
# READ
# =============================================================================


class TestRead:
    @pytest.mark.asyncio
    async def test_builder_collects_entities(self, client, pipeconf):
        request = client.read(pipeconf).table_entries(100, 200).counter_cells()
        assert request.entities == [
            Entity(EntityKind.TABLE_ENTRY, 100),
            Entity(EntityKind.TABLE_ENTRY, 200),
            Entity(EntityKind.COUNTER_ENTRY, 0),
        ]

    @pytest.mark.asyncio
    async def test_streams_all_batches(self, client, agent, pipeconf):
        agent.read_batches = [[table_entry(1), table_entry(2)], [], [table_entry(3)]]
        await client.open_session()

        response = await client.read(pipeconf).table_entries(100).submit()
        entities = await response.all()

        assert entities == [table_entry(1), table_entry(2), table_entry(3)]
        request = agent.requests["read"][0]
        assert request.device_id == P4_DEVICE_ID
        assert request.entities == (Entity(EntityKind.TABLE_ENTRY, 100),)

    @pytest.mark.asyncio
    async def test_empty_result(self, client, agent, pipeconf):
        await client.open_session()
        response = await client.read(pipeconf).table_entries().submit()
        assert await response.all() == []

    @pytest.mark.asyncio
    async def test_response_is_one_shot(self, client, agent, pipeconf):
        agent.read_batches = [[table_entry(1)]]
        await client.open_session()
        response = await client.read(pipeconf).table_entries().submit()

        assert [e async for e in response] == [table_entry(1)]
        with pytest.raises(RuntimeError):
            async for _ in response:
                pass

    @pytest.mark.asyncio
    async def test_read_after_close_fails_fast(self, client, agent, pipeconf):
        await client.open_session()
        await client.close_session()
        with pytest.raises(SessionNotOpenError):
            await client.read(pipeconf).table_entries().submit()
        assert "read" not in agent.requests

    @pytest.mark.asyncio
    async def test_close_during_setup_cancels_read(self, client, agent, pipeconf):
        agent.hang.add("read")
        await client.open_session()
        call = asyncio.create_task(client.read(pipeconf).table_entries().submit())
        await asyncio.sleep(0.01)

        await client.close_session()
        with pytest.raises(RpcCancelledError):
            await call
        assert agent.open_reads == 0


class TestReadLifecycle:
    """A read belongs to the session it was started on."""

    @pytest.mark.asyncio
    async def test_close_releases_partly_consumed_read(self, client, agent, pipeconf):
        agent.read_batches = [[table_entry(1)], [table_entry(2)], [table_entry(3)]]
        await client.open_session()
        response = await client.read(pipeconf).table_entries().submit()
        assert await anext(response) == table_entry(1)
        assert agent.open_reads == 1

        await client.close_session()
        assert agent.open_reads == 0
        with pytest.raises(SessionNotOpenError):
            await anext(response)

    @pytest.mark.asyncio
    async def test_read_from_previous_session_not_resumed_after_reopen(self, client, agent, pipeconf):
        agent.read_batches = [[table_entry(1)], [table_entry(2)]]
        await client.open_session()
        response = await client.read(pipeconf).table_entries().submit()
        assert await anext(response) == table_entry(1)

        await client.close_session()
        await client.open_session()
        with pytest.raises(SessionNotOpenError):
            await anext(response)
        assert len(agent.requests["read"]) == 1

    @pytest.mark.asyncio
    async def test_stream_end_releases_read(self, client, agent, pipeconf):
        agent.read_batches = [[table_entry(1)], [table_entry(2)]]
        await client.open_session()
        response = await client.read(pipeconf).table_entries().submit()
        assert await anext(response) == table_entry(1)

        agent.end_stream()
        await wait_until(lambda: agent.open_reads == 0)
        assert not client.is_session_open()
        with pytest.raises(SessionNotOpenError):
            await anext(response)

    @pytest.mark.asyncio
    async def test_abandoned_read_closed_by_context_manager(self, client, agent, pipeconf):
        agent.read_batches = [[table_entry(1)], [table_entry(2)]]
        await client.open_session()

        async with await client.read(pipeconf).table_entries().submit() as response:
            assert await anext(response) == table_entry(1)

        assert agent.open_reads == 0
        with pytest.raises(StopAsyncIteration):
            await anext(response)
        assert client.is_session_open()

    @pytest.mark.asyncio
    async def test_aclose_is_idempotent(self, client, agent, pipeconf):
        agent.read_batches = [[table_entry(1)], [table_entry(2)]]
        await client.open_session()
        response = await client.read(pipeconf).table_entries().submit()

        await response.aclose()
        await response.aclose()
        assert agent.open_reads == 0
        assert await response.all() == []

    @pytest.mark.asyncio
    async def test_fully_consumed_read_releases_stream(self, client, agent, pipeconf):
        agent.read_batches = [[table_entry(1)], [table_entry(2)]]
        await client.open_session()
        response = await client.read(pipeconf).table_entries().submit()

        assert await response.all() == [table_entry(1), table_entry(2)]
        assert agent.open_reads == 0


# =============================================================================
# WRITE
# =============================================================================


class TestWrite:
    @pytest.mark.asyncio
    async def test_batch_submitted_as_single_rpc(self, client, agent, pipeconf):
        await client.open_session()
        await client.run_for_mastership(ElectionId(0, 5))

        response = await (
            client.write(pipeconf).insert(table_entry(1), table_entry(2)).modify(table_entry(3)).submit()
        )

        assert response.success
        assert len(response.results) == 3
        assert len(agent.requests["write"]) == 1
        request = agent.requests["write"][0]
        assert request.election_id == ElectionId(0, 5)
        assert request.atomicity is Atomicity.CONTINUE_ON_ERROR
        assert [u.type for u in request.updates] == [UpdateType.INSERT, UpdateType.INSERT, UpdateType.MODIFY]

    @pytest.mark.asyncio
    async def test_per_update_failure_reported_individually(self, client, agent, pipeconf):
        agent.write_failures = {1: Status.from_code(grpc.StatusCode.ALREADY_EXISTS, "entry exists")}
        await client.open_session()

        response = await client.write(pipeconf).insert(table_entry(1), table_entry(2), table_entry(3)).submit()

        assert not response.success
        assert [r.success for r in response.results] == [True, False, True]
        assert [r.update.entity for r in response.successes] == [table_entry(1), table_entry(3)]
        (failure,) = response.failures
        assert failure.update.entity == table_entry(2)
        assert failure.status.status_code is grpc.StatusCode.ALREADY_EXISTS
        with pytest.raises(WriteFailedError) as exc_info:
            response.raise_for_failures()
        assert exc_info.value.failures == [failure]

    @pytest.mark.asyncio
    async def test_status_count_mismatch_is_protocol_violation(self, client, agent, pipeconf):
        agent.write_statuses = (Status(),)
        await client.open_session()

        with pytest.raises(ProtocolViolationError):
            await client.write(pipeconf).delete(table_entry(1), table_entry(2)).submit()
        assert client.is_session_open()

    @pytest.mark.asyncio
    async def test_empty_batch_sends_nothing(self, client, agent, pipeconf):
        await client.open_session()
        request = client.write(pipeconf)
        assert len(request) == 0
        response = await request.submit()
        assert response.results == ()
        assert "write" not in agent.requests

    @pytest.mark.asyncio
    async def test_unavailable_mid_rpc(self, client, agent, events, pipeconf):
        await client.open_session()
        agent.errors["write"] = rpc_error(grpc.StatusCode.UNAVAILABLE, "connection reset")

        with pytest.raises(TransportUnavailableError):
            await client.write(pipeconf).insert(table_entry(1)).submit()

        assert [e.type for e in events.drain()] == [EventType.CHANNEL_ERROR]
        assert not client.is_session_open()

    @pytest.mark.asyncio
    async def test_write_after_close_fails_fast(self, client, pipeconf):
        await client.open_session()
        await client.close_session()
        with pytest.raises(SessionNotOpenError):
            await client.write(pipeconf).insert(table_entry(1)).submit()
        with pytest.raises(SessionNotOpenError):
            await client.write(pipeconf).submit()
