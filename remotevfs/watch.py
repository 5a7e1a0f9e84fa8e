"""
Module that keeps track of watches on files and directories of the storage peer.

A watch is a standing request to be notified when its subject changes. The peer only
knows a watch by its subscription identifier, so the registry remembers for every
identifier what is being watched and who to tell about changes. That is also enough to
ask the peer for all of the watches again after it has lost them, for example because it
was restarted. The same identifiers are reused for that, so notifications that are
still underway with the old identifier are delivered as usual.

The local registry is the source of truth for which watches exist: a watch is removed
locally even if the peer fails to acknowledge its removal, and it is kept while the
connection is down.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
import inspect
import itertools
from typing import Any, Callable, Dict, Optional, Set

from remotevfs.logger import log
from remotevfs.protocol import (
    DocumentData,
    Request,
    UnwatchDirectory,
    UnwatchFile,
    WatchDirectory,
    WatchFile,
)
from remotevfs.rpc import Correlator

WatchCallback = Callable[[Any], Any]


class WatchKind(Enum):
    """Type of subject of a watch."""

    FILE = "file"
    DIRECTORY = "directory"


@dataclass
class Watch:
    """Subject and subscriber of a watch."""

    path: str
    kind: WatchKind
    callback: WatchCallback


class WatchRegistry:
    """Registry of watches that dispatches change notifications to their subscribers."""

    def __init__(self, correlator: Correlator) -> None:
        """Instantiate an empty registry that talks to the peer through a correlator."""
        self._correlator = correlator

        self._counter = itertools.count(1)
        self._watches: Dict[str, Watch] = {}

        # Tasks of asynchronous callbacks that are still running
        self._tasks: Set[asyncio.Future] = set()

    def __len__(self) -> int:
        return len(self._watches)

    def __contains__(self, subscription_id: str) -> bool:
        return subscription_id in self._watches

    def get(self, subscription_id: str) -> Optional[Watch]:
        """Return the watch with the given identifier for inspection, if it exists."""
        return self._watches.get(subscription_id)

    async def subscribe(self, path: str, kind: WatchKind, callback: WatchCallback) -> str:
        """
        Start watching a path and return the identifier of the new watch.

        The watch is only kept if the peer acknowledges it.
        """
        subscription_id = f"watch_{next(self._counter)}"
        self._watches[subscription_id] = Watch(path, kind, callback)

        try:
            await self._correlator.call(self._watch_request(subscription_id, path, kind))
        except Exception:
            self._watches.pop(subscription_id, None)
            raise

        log.debug(f"watching {kind.value} {path} as {subscription_id}")

        return subscription_id

    async def unsubscribe(self, subscription_id: str) -> None:
        """
        Stop watching, regardless of whether the peer acknowledges it.

        Raises KeyError for an unknown watch.
        """
        watch = self._watches.pop(subscription_id)

        request: Request
        if watch.kind == WatchKind.FILE:
            request = UnwatchFile(subscription_id)
        else:
            request = UnwatchDirectory(subscription_id)

        await self._correlator.call(request)

    def dispatch(self, subscription_id: str, payload: Any) -> bool:
        """
        Hand a change notification to the subscriber of a watch.

        Failures of the subscriber are logged rather than raised, since they should not
        affect the delivery of other notifications. Returns False if the watch is not
        known (anymore).
        """
        watch = self._watches.get(subscription_id)

        if watch is None:
            log.debug(f"dropping notification for unknown watch {subscription_id}")
            return False

        try:
            if watch.kind == WatchKind.FILE:
                payload = DocumentData.from_wire(payload)

            ret = watch.callback(payload)
        except Exception:
            log.exception(f"callback of watch {subscription_id} on {watch.path} failed")
            return True

        if inspect.isawaitable(ret):
            task = asyncio.ensure_future(ret)
            self._tasks.add(task)
            task.add_done_callback(
                lambda t: self._callback_done(subscription_id, watch.path, t)
            )

        return True

    def _callback_done(self, subscription_id: str, path: str, task: asyncio.Future):
        self._tasks.discard(task)

        if not task.cancelled() and task.exception() is not None:
            log.error(
                f"callback of watch {subscription_id} on {path} failed: "
                f"{task.exception()!r}"
            )

    async def resync_all(self) -> int:
        """
        Ask the peer for all known watches again, under their existing identifiers.

        Every watch is requested separately and a failure for one of them doesn't stop
        the others. Returns the number of watches that the peer acknowledged.
        """
        subscriptions = list(self._watches.items())

        if len(subscriptions) == 0:
            return 0

        log.info(f"re-establishing {len(subscriptions)} watches")

        results = await asyncio.gather(
            *[
                self._correlator.call(
                    self._watch_request(subscription_id, watch.path, watch.kind)
                )
                for subscription_id, watch in subscriptions
            ],
            return_exceptions=True,
        )

        count = 0

        for (subscription_id, watch), result in zip(subscriptions, results):
            if isinstance(result, BaseException):
                log.error(
                    f"failed to re-establish watch {subscription_id} on "
                    f"{watch.path}: {result}"
                )
            else:
                count += 1

        log.info(f"re-established {count} of {len(subscriptions)} watches")

        return count

    def clear(self) -> None:
        """Forget all watches without telling the peer."""
        self._watches.clear()

        for task in self._tasks:
            task.cancel()

        self._tasks.clear()

    @staticmethod
    def _watch_request(subscription_id: str, path: str, kind: WatchKind) -> Request:
        if kind == WatchKind.FILE:
            return WatchFile(path, subscription_id)
        else:
            return WatchDirectory(path, subscription_id)
