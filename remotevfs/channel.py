"""
Message channel to the storage peer.

The channel is the only pathway between this client and the peer. It delivers single
messages in both directions and nothing more: there are no replies, no retries and no
queueing. A message that is sent while the peer cannot be reached is refused with
ChannelUnavailableError rather than buffered, so that the caller learns about it right
away instead of having a stale request delivered after a reconnect.

Incoming messages are handed to exactly one handler, which is expected to do its own
dispatching (see RemoteFileSystem).
"""

from abc import ABC, abstractmethod
import asyncio
from typing import Any, Callable, Optional

import zmq
import zmq.asyncio
from zmq.utils.monitor import parse_monitor_message

from remotevfs.constants import DEFAULT_CONNECT_TIMEOUT
from remotevfs.encoding import Encoding
from remotevfs.logger import log

MessageHandler = Callable[[Any], None]


class ChannelUnavailableError(IOError):
    """Exception raised when a message cannot be handed to the storage peer."""


class Channel(ABC):
    """Base class of transports that carry envelopes to and from the storage peer."""

    def __init__(self) -> None:
        """Instantiate a channel without a message handler."""
        self._handler: Optional[MessageHandler] = None

    def on_message(self, handler: MessageHandler) -> None:
        """Register the single entry point for messages received from the peer."""
        if self._handler is not None and self._handler is not handler:
            log.warning("replacing existing message handler of channel")

        self._handler = handler

    def _deliver(self, message: Any) -> None:
        """Pass a received message on to the handler."""
        if self._handler is None:
            log.debug("dropping message, no handler registered")
            return

        try:
            self._handler(message)
        except Exception:
            log.exception("message handler failed")

    @property
    @abstractmethod
    def is_open(self) -> bool:
        """Return whether messages can currently be sent."""

    async def open(self) -> None:
        """Set up the transport."""

    async def close(self) -> None:
        """Tear down the transport."""

    @abstractmethod
    def send(self, message: Any) -> None:
        """
        Hand a message to the peer without waiting for any kind of reply.

        Raises ChannelUnavailableError if the peer cannot be reached.
        """


class ZmqChannel(Channel):
    """
    Channel based on a ZeroMQ DEALER socket connected to the ROUTER socket of the peer.

    Example:
    ```
    channel = ZmqChannel("tcp://localhost:7007")
    await channel.open()
    channel.on_message(print)
    channel.send(ReadFile("/notes.txt", correlation_id="req_1"))
    ```
    """

    def __init__(
        self,
        endpoint: str,
        encoding: Optional[Encoding] = None,
        linger_ms: int = 0,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    ) -> None:
        """
        Instantiate a channel for the peer at the given endpoint.

        The endpoint should follow the format of endpoint in zmq_connect
        (http://api.zeromq.org/3-2:zmq-connect), for example "tcp://localhost:7007".
        open() gives up if no connection is made within connect_timeout seconds.
        """
        super().__init__()

        self.endpoint = endpoint
        self.linger_ms = linger_ms
        self.connect_timeout = connect_timeout

        self._encoding = encoding or Encoding()

        self._context: Optional[zmq.asyncio.Context] = None
        self._socket: Optional[zmq.asyncio.Socket] = None
        self._receiver: Optional[asyncio.Future] = None

    @property
    def is_open(self) -> bool:
        return self._socket is not None

    async def open(self) -> None:
        """
        Connect to the peer and start receiving messages.

        Returns once the connection with the peer is established, so that messages can
        be sent right away. Raises ChannelUnavailableError if that doesn't happen within
        the connect timeout.
        """
        if self._socket is not None:
            return

        context = zmq.asyncio.Context()

        sock = context.socket(zmq.DEALER)
        sock.setsockopt(zmq.LINGER, self.linger_ms)

        # Only queue messages on completed connections, so that sending to a peer
        # that isn't there fails instead of buffering the message.
        sock.setsockopt(zmq.IMMEDIATE, 1)

        connected = False
        monitor = sock.get_monitor_socket(zmq.EVENT_HANDSHAKE_SUCCEEDED)

        try:
            sock.connect(self.endpoint)
            connected = await self._wait_connected(monitor)
        finally:
            sock.disable_monitor()
            monitor.close(linger=0)

            if not connected:
                sock.close(linger=0)
                context.term()

        if not connected:
            raise ChannelUnavailableError(
                f"storage peer at {self.endpoint} is not reachable "
                f"(no connection after {self.connect_timeout:g}s)"
            )

        self._context = context
        self._socket = sock
        self._receiver = asyncio.ensure_future(self._receive_loop(sock))

        log.debug(f"channel connected to {self.endpoint}")

    async def _wait_connected(self, monitor: zmq.asyncio.Socket) -> bool:
        """Wait for the monitor to report a completed handshake with the peer."""

        async def handshake() -> None:
            while True:
                event = parse_monitor_message(await monitor.recv_multipart())

                if event["event"] == zmq.EVENT_HANDSHAKE_SUCCEEDED:
                    return

        try:
            await asyncio.wait_for(handshake(), self.connect_timeout)
        except asyncio.TimeoutError:
            return False

        return True

    async def close(self) -> None:
        """Stop receiving messages and close the socket and its ZeroMQ context."""
        if self._socket is None:
            return

        sock, self._socket = self._socket, None

        if self._receiver is not None:
            self._receiver.cancel()

            try:
                await self._receiver
            except asyncio.CancelledError:
                pass

            self._receiver = None

        sock.close(linger=self.linger_ms)

        if self._context is not None:
            self._context.term()
            self._context = None

        log.debug(f"channel to {self.endpoint} closed")

    def send(self, message: Any) -> None:
        if self._socket is None:
            raise ChannelUnavailableError("channel is not open")

        data = self._encoding.pack(message)

        # Non-blocking sends on an asyncio socket complete (or fail) immediately.
        f = self._socket.send(data, flags=zmq.NOBLOCK)

        if f.done() and f.exception() is not None:
            exc = f.exception()

            if isinstance(exc, zmq.Again):
                raise ChannelUnavailableError(
                    f"storage peer at {self.endpoint} is not reachable"
                ) from exc
            else:
                raise ChannelUnavailableError(f"failed to send message: {exc}") from exc

    async def _receive_loop(self, sock: zmq.asyncio.Socket) -> None:
        """Receive and decode messages until the socket is closed."""
        while True:
            try:
                data = await sock.recv()
            except zmq.ZMQError as e:
                log.error(f"channel to {self.endpoint} stopped receiving: {e}")
                return

            try:
                message = self._encoding.unpack(data)
            except Exception as e:
                log.warning(f"dropping undecodable message: {e}")
                continue

            self._deliver(message)
