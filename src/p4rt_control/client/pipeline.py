"""
Pipeline configuration RPCs.
"""

from __future__ import annotations

import logging

from ..config import ClientConfig
from ..messages import (
    ForwardingPipelineConfig,
    GetPipelineConfigRequest,
    GetPipelineConfigResponse,
    PipelineConfigResponseType,
    SetPipelineConfigRequest,
)
from ..pipeconf import Pipeconf
from .arbiter import MastershipArbiter
from .context import ClientContext

logger = logging.getLogger(__name__)


class PipelineConfigClient:
    """Pushes and checks the forwarding pipeline installed on a device.

    Mastership is not checked here; a device rejects pushes from a
    non-master and that surfaces as an ordinary RPC failure.
    """

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

    async def set_pipeline_config(self, pipeconf: Pipeconf, device_data: bytes) -> bool:
        request = SetPipelineConfigRequest(
            device_id=self._p4_device_id,
            election_id=self._arbiter.last_used_election_id(),
            config=ForwardingPipelineConfig(
                p4info=pipeconf.p4info,
                p4_device_config=device_data,
                cookie=pipeconf.cookie(device_data),
            ),
        )
        await self._context.call(
            "set pipeline config",
            lambda stub: stub.set_pipeline_config(request),
            timeout=self._config.long_timeout_s,
        )
        logger.info("Set pipeline config %s on %s", pipeconf.pipeconf_id, self._context.device_id)
        return True

    async def is_pipeline_config_set(self, pipeconf: Pipeconf, device_data: bytes) -> bool:
        """Return True if the device reports the cookie of ``pipeconf`` + ``device_data``."""
        op = "get pipeline config"
        request = GetPipelineConfigRequest(
            device_id=self._p4_device_id,
            response_type=PipelineConfigResponseType.COOKIE_ONLY,
        )
        response = await self._context.call(
            op,
            lambda stub: stub.get_pipeline_config(request),
            timeout=self._config.short_timeout_s,
        )
        if not isinstance(response, GetPipelineConfigResponse):
            raise self._context.protocol_violation(op, f"unexpected response {type(response).__name__}")
        if response.config is None or response.config.cookie is None:
            # No pipeline installed yet.
            return False
        return response.config.cookie == pipeconf.cookie(device_data)
