"""
Shared fixtures: an in-memory P4Runtime agent standing in for a device.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Callable

import grpc
import pytest
import pytest_asyncio

from p4rt_control.client import ClientKey, P4RuntimeClient
from p4rt_control.config import ClientConfig
from p4rt_control.events import QueueEventSink
from p4rt_control.messages import (
    ElectionId,
    Entity,
    ForwardingPipelineConfig,
    GetPipelineConfigResponse,
    MasterArbitrationUpdate,
    ReadResponseMessage,
    SetPipelineConfigResponse,
    Status,
    StreamMessageResponse,
    WriteResponseMessage,
)
from p4rt_control.pipeconf import Pipeconf

DEVICE_ID = "device:leaf1"
P4_DEVICE_ID = 1

_END = object()


def rpc_error(code: grpc.StatusCode, details: str = "") -> grpc.aio.AioRpcError:
    """Build the error a gRPC asyncio call raises for ``code``."""
    return grpc.aio.AioRpcError(code, grpc.aio.Metadata(), grpc.aio.Metadata(), details=details)


async def wait_until(predicate: Callable[[], bool], timeout: float = 1.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.005)


class FakeP4RuntimeAgent:
    """Implements the P4RuntimeStub interface against in-memory state."""

    def __init__(self, p4_device_id: int = P4_DEVICE_ID) -> None:
        self.p4_device_id = p4_device_id
        self.stream_requests: list = []
        self.stream_opens = 0
        self.responses: asyncio.Queue = asyncio.Queue()
        self.auto_ack = True
        self.master_election_id: ElectionId | None = None

        self.installed: ForwardingPipelineConfig | None = None
        self.read_batches: list[list[Entity]] = []
        self.open_reads = 0
        self.write_failures: dict[int, Status] = {}
        self.write_statuses: tuple[Status, ...] | None = None

        self.errors: dict[str, BaseException] = {}
        self.hang: set[str] = set()
        self.requests: dict[str, list] = defaultdict(list)

    # -- stream --------------------------------------------------------------

    def stream_channel(self, requests):
        self.stream_opens += 1
        self.responses = asyncio.Queue()
        return self._stream(requests, self.responses)

    async def _stream(self, requests, responses: asyncio.Queue):
        pump = asyncio.create_task(self._pump(requests))
        try:
            while True:
                item = await responses.get()
                if item is _END:
                    return
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            pump.cancel()

    async def _pump(self, requests) -> None:
        async for frame in requests:
            self.stream_requests.append(frame)
            if frame.arbitration is not None and self.auto_ack:
                claim = frame.arbitration.election_id
                if self.master_election_id is None or claim >= self.master_election_id:
                    self.master_election_id = claim
                self.push_arbitration(self.master_election_id)

    def push(self, frame: StreamMessageResponse) -> None:
        self.responses.put_nowait(frame)

    def push_arbitration(self, election_id: ElectionId, device_id: int | None = None) -> None:
        self.push(
            StreamMessageResponse(
                arbitration=MasterArbitrationUpdate(
                    device_id=self.p4_device_id if device_id is None else device_id,
                    election_id=election_id,
                    status=Status(),
                )
            )
        )

    def end_stream(self) -> None:
        self.responses.put_nowait(_END)

    def fail_stream(self, error: BaseException) -> None:
        self.responses.put_nowait(error)

    # -- request/response ----------------------------------------------------

    async def _enter(self, method: str, request) -> None:
        self.requests[method].append(request)
        if method in self.hang:
            await asyncio.Event().wait()
        error = self.errors.pop(method, None)
        if error is not None:
            raise error

    async def set_pipeline_config(self, request):
        await self._enter("set_pipeline_config", request)
        self.installed = request.config
        return SetPipelineConfigResponse()

    async def get_pipeline_config(self, request):
        await self._enter("get_pipeline_config", request)
        if self.installed is None:
            return GetPipelineConfigResponse()
        return GetPipelineConfigResponse(config=ForwardingPipelineConfig(cookie=self.installed.cookie))

    def read(self, request):
        return self._read(request)

    async def _read(self, request):
        self.open_reads += 1
        try:
            await self._enter("read", request)
            for batch in self.read_batches:
                yield ReadResponseMessage(entities=tuple(batch))
        finally:
            self.open_reads -= 1

    async def write(self, request):
        await self._enter("write", request)
        if self.write_statuses is not None:
            return WriteResponseMessage(statuses=self.write_statuses)
        if not self.write_failures:
            return WriteResponseMessage()
        return WriteResponseMessage(
            statuses=tuple(self.write_failures.get(i, Status()) for i in range(len(request.updates)))
        )


class StaticPipeconfService:
    def __init__(self, pipeconfs: dict[str, Pipeconf] | None = None) -> None:
        self.pipeconfs = pipeconfs or {}

    def get_pipeconf(self, device_id: str) -> Pipeconf | None:
        return self.pipeconfs.get(device_id)


@pytest.fixture
def agent():
    return FakeP4RuntimeAgent()


@pytest.fixture
def events():
    return QueueEventSink()


@pytest.fixture
def pipeconf():
    return Pipeconf(
        pipeconf_id="org.example.basic",
        p4info=b"\x0a\x04test-p4info",
        packet_metadata={"ingress_port": 1, "egress_port": 2},
    )


@pytest.fixture
def config():
    return ClientConfig(short_timeout_s=0.5, long_timeout_s=1.0)


@pytest_asyncio.fixture
async def client(agent, events, pipeconf, config):
    c = P4RuntimeClient(
        ClientKey(device_id=DEVICE_ID, p4_device_id=P4_DEVICE_ID, server_addr="127.0.0.1:9559"),
        agent,
        events,
        pipeconf_service=StaticPipeconfService({DEVICE_ID: pipeconf}),
        config=config,
    )
    yield c
    await c.shutdown()
