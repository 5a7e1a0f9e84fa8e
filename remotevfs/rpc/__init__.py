"""
Request/response calls on top of a fire-and-forget message channel.

The channel to the storage peer only knows how to deliver single messages. It gives no
guarantee that an answer ever comes back, nor in which order answers arrive when
multiple calls are in flight. The Correlator turns it into a call mechanism:

* Every request is tagged with a correlation identifier that is unique for the lifetime
of the correlator ("req_1", "req_2", ...).
* A pending call is recorded for that identifier before the request is sent. The peer
echoes the identifier in its response, which is how the response finds its way back to
the right caller, independent of the order in which responses arrive.
* Each call has its own time budget. If no response arrives in time the call fails with
RequestTimeoutError and its record is dropped. A late response for it is ignored.

The timeout is the only way in which a call that lost its response to a channel failure
ends. The correlator doesn't fail calls when the peer reports a disconnect on its own
(see ConnectionStateMachine for the opt-in policy that does), but it does fail all of
them immediately when it is closed.
"""

import asyncio
from dataclasses import dataclass
import itertools
import logging
import time
from typing import Any, Dict, Optional

from remotevfs.channel import Channel, ChannelUnavailableError
from remotevfs.constants import DEFAULT_REQUEST_TIMEOUT
from remotevfs.logger import log, summarize
from remotevfs.protocol import Request, Response


class RemoteError(Exception):
    """Exception raised when the storage peer reports that a call failed."""


class RequestTimeoutError(TimeoutError):
    """Exception raised when no response arrives for a call within its time budget."""


@dataclass
class PendingCall:
    """Bookkeeping for a call that is waiting for its response."""

    kind: str
    future: asyncio.Future
    timeout_handle: asyncio.TimerHandle
    created: float


class Correlator:
    """
    Matches responses from the storage peer with the calls that are waiting for them.

    Example:
    ```
    correlator = Correlator(channel, timeout=5)
    channel.on_message(lambda m: correlator.resolve(decode_message(m)))

    document = await correlator.call(ReadFile("/notes.txt"))
    ```
    """

    def __init__(self, channel: Channel, timeout: float = DEFAULT_REQUEST_TIMEOUT):
        """Instantiate a correlator that sends its calls over the given channel."""
        self._channel = channel
        self.timeout = timeout

        self._counter = itertools.count(1)
        self._pending: Dict[str, PendingCall] = {}

    def next_id(self) -> str:
        """Generate a new correlation identifier."""
        return f"req_{next(self._counter)}"

    @property
    def pending_count(self) -> int:
        """Return the number of calls waiting for a response."""
        return len(self._pending)

    def __contains__(self, correlation_id: str) -> bool:
        return correlation_id in self._pending

    async def call(self, request: Request, timeout: Optional[float] = None) -> Any:
        """
        Send a request and wait for the data in its response.

        A correlation identifier is assigned if the request doesn't have one yet. Raises
        RemoteError if the peer reports failure, RequestTimeoutError if it doesn't
        answer in time and ChannelUnavailableError if the request could not be sent.
        """
        if request.correlation_id is None:
            request.correlation_id = self.next_id()

        correlation_id = request.correlation_id

        if correlation_id in self._pending:
            raise ValueError(f"call {correlation_id} is already in flight")

        if timeout is None:
            timeout = self.timeout

        loop = asyncio.get_running_loop()
        future = loop.create_future()

        t_call = time.monotonic()

        self._pending[correlation_id] = PendingCall(
            kind=request.kind,
            future=future,
            timeout_handle=loop.call_later(
                timeout, self._expire, correlation_id, timeout
            ),
            created=t_call,
        )

        try:
            self._channel.send(request)
        except Exception:
            self._discard(correlation_id)
            raise

        try:
            ret = await future
        finally:
            # Only has an effect if the caller gave up on the call (cancellation)
            self._discard(correlation_id)

        # Explicit check before logging because summarizing the request is slow
        if log.isEnabledFor(logging.DEBUG):
            t_millis = round((time.monotonic() - t_call) * 1000)
            log.debug(f"rpc::{request.kind}({self._summarize(request)}) - {t_millis} ms")

        return ret

    @staticmethod
    def _summarize(request: Request) -> str:
        """Summarize the arguments of a request."""
        args = request.to_wire()
        args.pop("kind", None)
        args.pop("correlationId", None)

        return summarize(args)

    def resolve(self, response: Response) -> bool:
        """
        Complete the call that the response belongs to.

        Returns False if no call is waiting for it, for example because it already
        timed out.
        """
        pending = self._pending.pop(response.correlation_id, None)

        if pending is None:
            log.debug(
                f"dropping {response.kind} response for unknown call "
                f"{response.correlation_id}"
            )
            return False

        pending.timeout_handle.cancel()

        if pending.future.done():
            return False

        if response.success:
            pending.future.set_result(response.data)
        else:
            pending.future.set_exception(RemoteError(response.error or "unknown error"))

        return True

    def reject_all(self, exc: BaseException) -> int:
        """Fail all calls that are waiting for a response with the given exception."""
        pending_calls = list(self._pending.values())
        self._pending.clear()

        for pending in pending_calls:
            pending.timeout_handle.cancel()

            if not pending.future.done():
                pending.future.set_exception(exc)

        return len(pending_calls)

    def close(self) -> None:
        """Fail all calls in flight, nothing will answer them anymore."""
        count = self.reject_all(ChannelUnavailableError("connection closed"))

        if count > 0:
            log.info(f"rejected {count} calls in flight on close")

    def _expire(self, correlation_id: str, timeout: float) -> None:
        pending = self._pending.pop(correlation_id, None)

        if pending is not None and not pending.future.done():
            pending.future.set_exception(
                RequestTimeoutError(
                    f"{pending.kind} call {correlation_id} timed out after {timeout:g}s"
                )
            )

    def _discard(self, correlation_id: str) -> None:
        pending = self._pending.pop(correlation_id, None)

        if pending is not None:
            pending.timeout_handle.cancel()
