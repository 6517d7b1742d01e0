"""
Tests for pipeline configuration RPCs.
"""

from __future__ import annotations

import asyncio

import grpc
import pytest

from p4rt_control.errors import (
    PermissionDeniedError,
    ProtocolViolationError,
    RpcTimeoutError,
    SessionNotOpenError,
)
from p4rt_control.events import EventType
from p4rt_control.messages import ElectionId, PipelineConfigAction, PipelineConfigResponseType
from p4rt_control.pipeconf import Pipeconf, compute_cookie

from .conftest import P4_DEVICE_ID, rpc_error

DEVICE_DATA = b"\x00bmv2-json"


class TestCookie:
    def test_cookie_is_stable(self, pipeconf):
        assert compute_cookie(pipeconf, DEVICE_DATA) == compute_cookie(pipeconf, DEVICE_DATA)
        assert 0 <= pipeconf.cookie(DEVICE_DATA) < 2**64

    def test_cookie_depends_on_pipeconf_and_data(self, pipeconf):
        other = Pipeconf(pipeconf_id="org.example.other", p4info=pipeconf.p4info)
        assert pipeconf.cookie(DEVICE_DATA) != pipeconf.cookie(b"other-data")
        assert pipeconf.cookie(DEVICE_DATA) != other.cookie(DEVICE_DATA)


class TestSetPipelineConfig:
    @pytest.mark.asyncio
    async def test_push_sends_config_and_cookie(self, client, agent, pipeconf):
        await client.open_session()
        await client.run_for_mastership(ElectionId(0, 5))

        assert await client.set_pipeline_config(pipeconf, DEVICE_DATA) is True

        request = agent.requests["set_pipeline_config"][0]
        assert request.device_id == P4_DEVICE_ID
        assert request.election_id == ElectionId(0, 5)
        assert request.action is PipelineConfigAction.VERIFY_AND_COMMIT
        assert request.config.p4info == pipeconf.p4info
        assert request.config.p4_device_config == DEVICE_DATA
        assert request.config.cookie == pipeconf.cookie(DEVICE_DATA)

    @pytest.mark.asyncio
    async def test_rejected_when_not_master(self, client, agent, events, pipeconf):
        await client.open_session()
        agent.errors["set_pipeline_config"] = rpc_error(grpc.StatusCode.PERMISSION_DENIED, "not master")

        with pytest.raises(PermissionDeniedError):
            await client.set_pipeline_config(pipeconf, DEVICE_DATA)
        assert [e.type for e in events.drain()] == [EventType.PERMISSION_DENIED]
        assert client.is_session_open()

    @pytest.mark.asyncio
    async def test_push_uses_long_timeout(self, client, agent, pipeconf, config):
        await client.open_session()
        agent.hang.add("set_pipeline_config")

        loop = asyncio.get_running_loop()
        started = loop.time()
        with pytest.raises(RpcTimeoutError):
            await client.set_pipeline_config(pipeconf, DEVICE_DATA)
        assert loop.time() - started >= config.long_timeout_s * 0.9


class TestIsPipelineConfigSet:
    @pytest.mark.asyncio
    async def test_true_after_set_with_same_arguments(self, client, pipeconf):
        await client.open_session()
        await client.set_pipeline_config(pipeconf, DEVICE_DATA)
        assert await client.is_pipeline_config_set(pipeconf, DEVICE_DATA) is True

    @pytest.mark.asyncio
    async def test_false_for_different_data(self, client, pipeconf):
        await client.open_session()
        await client.set_pipeline_config(pipeconf, DEVICE_DATA)
        assert await client.is_pipeline_config_set(pipeconf, b"different") is False

    @pytest.mark.asyncio
    async def test_false_when_nothing_installed(self, client, agent, pipeconf):
        await client.open_session()
        assert await client.is_pipeline_config_set(pipeconf, DEVICE_DATA) is False
        assert agent.requests["get_pipeline_config"][0].response_type is PipelineConfigResponseType.COOKIE_ONLY

    @pytest.mark.asyncio
    async def test_query_uses_short_timeout(self, client, agent, pipeconf, config):
        await client.open_session()
        agent.hang.add("get_pipeline_config")

        loop = asyncio.get_running_loop()
        started = loop.time()
        with pytest.raises(RpcTimeoutError):
            await client.is_pipeline_config_set(pipeconf, DEVICE_DATA)
        elapsed = loop.time() - started
        assert config.short_timeout_s * 0.9 <= elapsed < config.long_timeout_s

    @pytest.mark.asyncio
    async def test_unexpected_response_is_protocol_violation(self, client, agent, pipeconf):
        await client.open_session()

        async def bogus(request):
            return "not a response"

        agent.get_pipeline_config = bogus
        with pytest.raises(ProtocolViolationError):
            await client.is_pipeline_config_set(pipeconf, DEVICE_DATA)
        assert client.is_session_open()


class TestClosedSession:
    @pytest.mark.asyncio
    async def test_both_operations_fail_fast(self, client, agent, pipeconf):
        with pytest.raises(SessionNotOpenError):
            await client.set_pipeline_config(pipeconf, DEVICE_DATA)
        with pytest.raises(SessionNotOpenError):
            await client.is_pipeline_config_set(pipeconf, DEVICE_DATA)
        assert agent.requests == {}
