"""
Module that tracks the state of the connection with the storage peer.

The state only changes in response to the handshake performed by RemoteFileSystem and
to lifecycle broadcasts of the peer:

    DISCONNECTED -> CONNECTING -> CONNECTED <-> RECONNECTING
         ^                           |              |
         +---------------------------+--------------+

Whenever the connection is (re-)established, the watches in the registry are sent to
the peer again, because a peer that lost its connection may also have lost its watches.
Retrying a failed connection is left to the caller.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Callable, List, Optional

from remotevfs.channel import ChannelUnavailableError
from remotevfs.logger import log
import remotevfs.protocol as protocol
from remotevfs.rpc import Correlator
from remotevfs.watch import WatchRegistry


class ConnectionState(Enum):
    """States of the connection with the storage peer."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"


ConnectionStateListener = Callable[[ConnectionState], None]


class ConnectionStateMachine:
    """State of a single connection and the listeners interested in its changes."""

    def __init__(
        self,
        registry: WatchRegistry,
        correlator: Optional[Correlator] = None,
        fail_fast_on_disconnect: bool = False,
    ) -> None:
        """
        Instantiate a machine in the DISCONNECTED state.

        If fail_fast_on_disconnect is set then calls in flight on the correlator are
        failed as soon as the connection is lost, rather than when they time out.
        """
        self._registry = registry
        self._correlator = correlator
        self.fail_fast_on_disconnect = fail_fast_on_disconnect

        self._state = ConnectionState.DISCONNECTED
        self._listeners: List[ConnectionStateListener] = []

        self._resync_task: Optional[asyncio.Future] = None

    @property
    def state(self) -> ConnectionState:
        return self._state

    def add_listener(self, listener: ConnectionStateListener) -> Callable[[], None]:
        """
        Register a listener for state changes and return a function that removes it.

        The listener is immediately called with the current state.
        """
        self._listeners.append(listener)
        self._notify(listener, self._state)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def clear_listeners(self) -> None:
        self._listeners.clear()

    def transition(self, state: ConnectionState) -> None:
        """Move to a new state and tell every listener, in order of registration."""
        previous, self._state = self._state, state

        if previous != state:
            log.info(f"connection {previous.value} -> {state.value}")

        if (
            state == ConnectionState.DISCONNECTED
            and self.fail_fast_on_disconnect
            and self._correlator is not None
        ):
            count = self._correlator.reject_all(
                ChannelUnavailableError("connection to storage peer lost")
            )

            if count > 0:
                log.info(f"rejected {count} calls in flight on disconnect")

        for listener in list(self._listeners):
            self._notify(listener, state)

    @staticmethod
    def _notify(listener: ConnectionStateListener, state: ConnectionState) -> None:
        try:
            listener(state)
        except Exception:
            log.exception("connection state listener failed")

    async def recover(self) -> int:
        """Enter the CONNECTED state and re-establish all watches."""
        self.transition(ConnectionState.CONNECTED)

        return await self._registry.resync_all()

    def handle_broadcast(self, broadcast: protocol.Broadcast) -> None:
        """Follow a lifecycle broadcast of the peer."""
        if broadcast.kind == protocol.DISCONNECTED:
            self.transition(ConnectionState.DISCONNECTED)
        elif broadcast.kind == protocol.RECONNECTING:
            log.info(f"storage peer is reconnecting (attempt {broadcast.attempt})")
            self.transition(ConnectionState.RECONNECTING)
        elif broadcast.kind == protocol.RECONNECTED:
            self._schedule_recovery()
        elif broadcast.kind == protocol.RECONNECTION_FAILED:
            log.error("storage peer failed to reconnect")
            self.transition(ConnectionState.DISCONNECTED)
        elif broadcast.kind == protocol.READY:
            log.debug("storage peer is ready")
        elif broadcast.kind == protocol.RESYNC_COMPLETE:
            log.info(f"storage peer re-established {broadcast.count} watches")
        else:
            raise ValueError(f"unexpected broadcast {broadcast.kind}")

    def _schedule_recovery(self) -> None:
        self.transition(ConnectionState.CONNECTED)

        # Broadcasts are handled synchronously, so the resync runs as a separate task
        task = asyncio.ensure_future(self._registry.resync_all())
        self._resync_task = task
        task.add_done_callback(self._recovery_done)

    def _recovery_done(self, task: asyncio.Future) -> None:
        if self._resync_task is task:
            self._resync_task = None

        if not task.cancelled() and task.exception() is not None:
            log.error(f"failed to re-establish watches: {task.exception()}")

    async def wait_recovered(self) -> None:
        """
        Wait for a resync triggered by a broadcast to finish, if there is one.

        Broadcasts are handled without waiting for the resync, so this is the hook for
        callers that need to know when the watches are back in place.
        """
        if self._resync_task is not None:
            await asyncio.shield(self._resync_task)

    def close(self) -> None:
        if self._resync_task is not None:
            self._resync_task.cancel()
            self._resync_task = None
