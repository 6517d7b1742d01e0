"""
Transport interfaces and the gRPC adapter.

The client never builds channels. A channel provider hands out an
already-connected ``grpc.aio.Channel`` per device; ``GrpcP4RuntimeStub``
turns that channel into the five P4Runtime service calls. Message
(de)serialization is delegated to a codec so the wire encoding can be
swapped without touching the client.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterable, AsyncIterator, Callable
from typing import Any, Protocol, TypeVar, runtime_checkable

import grpc

from .messages import (
    GetPipelineConfigRequest,
    GetPipelineConfigResponse,
    ReadRequestMessage,
    ReadResponseMessage,
    SetPipelineConfigRequest,
    SetPipelineConfigResponse,
    StreamMessageRequest,
    StreamMessageResponse,
    WriteRequestMessage,
    WriteResponseMessage,
)

M = TypeVar("M")

SERVICE = "/p4.v1.P4Runtime"


@runtime_checkable
class P4RuntimeStub(Protocol):
    """The P4Runtime service as seen by the client."""

    def stream_channel(
        self, requests: AsyncIterator[StreamMessageRequest]
    ) -> AsyncIterator[StreamMessageResponse]: ...

    async def set_pipeline_config(self, request: SetPipelineConfigRequest) -> SetPipelineConfigResponse: ...

    async def get_pipeline_config(self, request: GetPipelineConfigRequest) -> GetPipelineConfigResponse: ...

    def read(self, request: ReadRequestMessage) -> AsyncIterator[ReadResponseMessage]: ...

    async def write(self, request: WriteRequestMessage) -> WriteResponseMessage: ...


@runtime_checkable
class ChannelProvider(Protocol):
    """Hands out connected channels keyed by device."""

    def get_channel(self, device_id: str) -> grpc.aio.Channel | None: ...


class Codec(Protocol):
    def encode(self, message: Any) -> bytes: ...

    def decoder(self, cls: type[M]) -> Callable[[bytes], M]: ...


class JsonCodec:
    """Encodes messages as UTF-8 JSON of their ``to_dict`` form."""

    def encode(self, message: Any) -> bytes:
        return json.dumps(message.to_dict(), separators=(",", ":")).encode()

    def decoder(self, cls: type[M]) -> Callable[[bytes], M]:
        def decode(data: bytes) -> M:
            return cls.from_dict(json.loads(data))  # type: ignore[attr-defined]

        return decode


class GrpcP4RuntimeStub:
    """P4Runtime stub over a gRPC asyncio channel."""

    def __init__(self, channel: grpc.aio.Channel, codec: Codec | None = None) -> None:
        self.channel = channel
        self.codec = codec or JsonCodec()
        encode = self.codec.encode
        decoder = self.codec.decoder

        self._stream_channel = channel.stream_stream(
            f"{SERVICE}/StreamChannel",
            request_serializer=encode,
            response_deserializer=decoder(StreamMessageResponse),
        )
        self._set_pipeline_config = channel.unary_unary(
            f"{SERVICE}/SetForwardingPipelineConfig",
            request_serializer=encode,
            response_deserializer=decoder(SetPipelineConfigResponse),
        )
        self._get_pipeline_config = channel.unary_unary(
            f"{SERVICE}/GetForwardingPipelineConfig",
            request_serializer=encode,
            response_deserializer=decoder(GetPipelineConfigResponse),
        )
        self._read = channel.unary_stream(
            f"{SERVICE}/Read",
            request_serializer=encode,
            response_deserializer=decoder(ReadResponseMessage),
        )
        self._write = channel.unary_unary(
            f"{SERVICE}/Write",
            request_serializer=encode,
            response_deserializer=decoder(WriteResponseMessage),
        )

    async def stream_channel(
        self, requests: AsyncIterable[StreamMessageRequest]
    ) -> AsyncIterator[StreamMessageResponse]:
        call = self._stream_channel(requests)
        try:
            async for response in call:
                yield response
        finally:
            call.cancel()

    async def set_pipeline_config(self, request: SetPipelineConfigRequest) -> SetPipelineConfigResponse:
        return await self._set_pipeline_config(request)

    async def get_pipeline_config(self, request: GetPipelineConfigRequest) -> GetPipelineConfigResponse:
        return await self._get_pipeline_config(request)

    async def read(self, request: ReadRequestMessage) -> AsyncIterator[ReadResponseMessage]:
        call = self._read(request)
        try:
            async for response in call:
                yield response
        finally:
            call.cancel()

    async def write(self, request: WriteRequestMessage) -> WriteResponseMessage:
        return await self._write(request)
