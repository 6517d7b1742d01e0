"""
P4Runtime device client - session, mastership and RPCs for one device.

Split into submodules by concern:
- state.py: ConnectionState, MastershipState
- executor.py: RpcExecutor, PendingRpc
- classifier.py: ErrorClassifier and the status-to-outcome table
- stream.py: StreamSession
- arbiter.py: MastershipArbiter
- context.py: ClientContext (shared call path)
- pipeline.py: PipelineConfigClient
- table.py: TableIOClient and read/write request builders
- client.py: P4RuntimeClient, ClientKey, create_client
"""

from .arbiter import MastershipArbiter
from .classifier import OUTCOMES, Classification, ErrorClassifier, RpcOutcome, outcome_for
from .client import ClientKey, P4RuntimeClient, create_client
from .context import ClientContext
from .executor import PendingRpc, RpcExecutor
from .pipeline import PipelineConfigClient
from .state import ConnectionState, MastershipState
from .stream import StreamSession
from .table import (
    ReadRequest,
    ReadResponse,
    TableIOClient,
    WriteRequest,
    WriteResponse,
    WriteResult,
)

__all__ = [
    # Main client
    "P4RuntimeClient",
    "ClientKey",
    "create_client",
    # State
    "ConnectionState",
    "MastershipState",
    # Components
    "RpcExecutor",
    "PendingRpc",
    "ErrorClassifier",
    "Classification",
    "RpcOutcome",
    "OUTCOMES",
    "outcome_for",
    "StreamSession",
    "MastershipArbiter",
    "ClientContext",
    "PipelineConfigClient",
    "TableIOClient",
    # Table I/O
    "ReadRequest",
    "ReadResponse",
    "WriteRequest",
    "WriteResponse",
    "WriteResult",
]
