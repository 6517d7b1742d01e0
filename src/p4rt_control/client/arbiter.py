"""
Mastership arbitration over the stream session.

A claim is a MasterArbitrationUpdate carrying an election id. The server
answers (and later re-announces) with the election id of the current master;
this client is master exactly when that id equals the one it last sent.
"""

from __future__ import annotations

import asyncio
import logging
import threading

from ..errors import ProtocolViolationError, RpcTimeoutError
from ..messages import ElectionId, MasterArbitrationUpdate, StreamMessageRequest
from .state import ConnectionState, MastershipState
from .stream import StreamSession

logger = logging.getLogger(__name__)


class MastershipArbiter:
    """Tracks whether this client is master for its device."""

    def __init__(self, session: StreamSession, p4_device_id: int) -> None:
        self._session = session
        self._p4_device_id = p4_device_id
        self._lock = threading.Lock()
        self._state = MastershipState.NOT_MASTER
        self._last_used: ElectionId | None = None
        # Claims sent on the current stream, to spot replies to superseded ones.
        self._claims: set[ElectionId] = set()
        self._waiters: list[asyncio.Future[bool]] = []

        session.register_handler(MasterArbitrationUpdate, self.handle_update)
        session.add_state_listener(self._on_session_state)

    @property
    def device_id(self) -> str:
        return self._session.device_id

    @property
    def state(self) -> MastershipState:
        with self._lock:
            return self._state

    def is_master(self) -> bool:
        return self.state is MastershipState.MASTER

    def last_used_election_id(self) -> ElectionId | None:
        """Return the election id most recently sent, whatever the server made of it."""
        with self._lock:
            return self._last_used

    def run_for_mastership(self, election_id: ElectionId) -> None:
        """Send a mastership claim. The outcome arrives asynchronously."""
        self._session.send(
            StreamMessageRequest(
                arbitration=MasterArbitrationUpdate(device_id=self._p4_device_id, election_id=election_id)
            )
        )
        with self._lock:
            self._last_used = election_id
            self._claims.add(election_id)
            self._state = MastershipState.PENDING
        logger.debug("Sent mastership claim for %s with election id %s", self.device_id, election_id)

    async def wait_for_outcome(self, timeout: float | None = None) -> bool:
        """Wait until a pending claim is answered. Returns ``is_master()``."""
        with self._lock:
            if self._state is not MastershipState.PENDING:
                return self._state is MastershipState.MASTER
            waiter: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
            self._waiters.append(waiter)
        try:
            async with asyncio.timeout(timeout):
                return await waiter
        except TimeoutError as e:
            raise RpcTimeoutError(
                "mastership arbitration", details=f"no response within {timeout} seconds"
            ) from e
        finally:
            with self._lock:
                if waiter in self._waiters:
                    self._waiters.remove(waiter)

    def handle_update(self, update: MasterArbitrationUpdate) -> None:
        """Apply an arbitration update received from the server."""
        if update.device_id != self._p4_device_id:
            raise ProtocolViolationError(
                f"arbitration update for device {update.device_id}, expected {self._p4_device_id}"
            )
        if update.election_id is None:
            raise ProtocolViolationError("arbitration update without election id")

        with self._lock:
            previous = self._state
            is_master = self._last_used is not None and update.election_id == self._last_used
            stale = (
                previous is MastershipState.PENDING
                and not is_master
                and update.election_id in self._claims
            )
            if stale:
                self._claims.discard(update.election_id)
            else:
                self._state = MastershipState.MASTER if is_master else MastershipState.NOT_MASTER
            current = self._state
        if stale:
            # The answer to an earlier claim; the pending one is still unanswered.
            logger.debug(
                "Ignoring reply to superseded claim %s on %s (waiting on %s)",
                update.election_id,
                self.device_id,
                self._last_used,
            )
            return
        if previous is not current:
            logger.info(
                "Mastership for %s is now %s (master election id %s)",
                self.device_id,
                current,
                update.election_id,
            )
        self._resolve_waiters(is_master)

    def _on_session_state(self, state: ConnectionState) -> None:
        with self._lock:
            self._state = MastershipState.NOT_MASTER
            if state is ConnectionState.OPEN:
                self._last_used = None
            self._claims.clear()
        self._resolve_waiters(False)

    def _resolve_waiters(self, result: bool) -> None:
        with self._lock:
            waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(result)
