"""Module with in-memory stand-ins for the storage peer and the channel to it."""

import asyncio
import posixpath
from typing import Any, Dict, List, Optional, Set, Tuple

import pytest

from remotevfs.channel import Channel, ChannelUnavailableError
from remotevfs.constants import PROTOCOL_VERSION
from remotevfs.encoding import Encoding
import remotevfs.protocol as protocol
from remotevfs.filesystem import RemoteFileSystem


class LoopbackChannel(Channel):
    """
    Channel that hands messages to an in-memory peer on the running event loop.

    Messages go through MessagePack in both directions, so only what survives the wire
    reaches the other end.
    """

    def __init__(self) -> None:
        super().__init__()

        self.encoding = Encoding()
        self.peer: Optional["MemoryPeer"] = None

        self.opened = False
        self.reachable = True

        self.sent: List[Dict[str, Any]] = []

    @property
    def is_open(self) -> bool:
        return self.opened

    async def open(self) -> None:
        self.opened = True

    async def close(self) -> None:
        self.opened = False

    def send(self, message: Any) -> None:
        if not self.opened or not self.reachable:
            raise ChannelUnavailableError("storage peer is not reachable")

        raw = self.encoding.unpack(self.encoding.pack(message))
        self.sent.append(raw)

        if self.peer is not None:
            asyncio.get_running_loop().call_soon(self.peer.handle, raw)

    def push(self, message: Any) -> None:
        """Deliver a message from the peer to the client."""
        raw = self.encoding.unpack(self.encoding.pack(message))
        asyncio.get_running_loop().call_soon(self._deliver, raw)

    def sent_kinds(self) -> List[str]:
        return [m["kind"] for m in self.sent]


class MemoryPeer:
    """Storage peer that keeps its documents in a dictionary."""

    def __init__(self, channel: LoopbackChannel) -> None:
        self.channel = channel
        channel.peer = self

        self.protocol = PROTOCOL_VERSION

        self.documents: Dict[str, Dict[str, Any]] = {}
        self.watches: Dict[str, Tuple[str, str]] = {}

        # Kinds of requests that are never answered, or answered with an error
        self.withhold: Set[str] = set()
        self.failures: Dict[str, str] = {}

        self.withheld: List[protocol.Request] = []
        self.received: List[protocol.Request] = []

    def handle(self, raw: Dict[str, Any]) -> None:
        request = protocol.decode_request(raw)
        self.received.append(request)

        if request.kind in self.withhold:
            self.withheld.append(request)
            return

        if request.kind in self.failures:
            self.respond(request, error=self.failures[request.kind])
            return

        handler = getattr(self, "_" + request.kind)

        try:
            data = handler(request)
        except (KeyError, ValueError) as e:
            self.respond(request, error=str(e.args[0]))
        else:
            self.respond(request, data=data)

    def respond(
        self, request: protocol.Request, data: Any = None, error: Optional[str] = None
    ) -> None:
        self.channel.push(
            protocol.Response(
                kind=request.kind,
                correlation_id=request.correlation_id,
                success=error is None,
                data=data,
                error=error,
            )
        )

    def broadcast(self, kind: str, **kwargs: Any) -> None:
        self.channel.push(protocol.Broadcast(kind, **kwargs))

    def restart(self) -> None:
        """Lose all watches, like a peer process that was restarted."""
        self.watches.clear()

    def notify(self, subscription_id: str, payload: Any, path: str = None) -> None:
        self.channel.push(protocol.Changed(subscription_id, payload, path))

    def received_kinds(self) -> List[str]:
        return [r.kind for r in self.received]

    #
    # Requests
    #

    def _ping(self, request: protocol.Ping) -> None:
        return None

    def _initialize(self, request: protocol.Initialize) -> Dict[str, Any]:
        return {"protocol": self.protocol}

    def _readFile(self, request: protocol.ReadFile) -> Dict[str, Any]:
        return self._document(request.path)

    def _writeFile(self, request: protocol.WriteFile) -> None:
        if not request.create and request.path not in self.documents:
            raise KeyError(f"file not found: {request.path}")

        self._store(request.path, request.content.content, request.content.binary)

    def _deleteFile(self, request: protocol.DeleteFile) -> None:
        self._document(request.path)
        del self.documents[request.path]
        self._changed(request.path, None)

    def _rename(self, request: protocol.Rename) -> None:
        doc = self._document(request.old_path)
        del self.documents[request.old_path]
        self._store(request.new_path, doc["content"], doc.get("bytes"))

    def _listDirectory(self, request: protocol.ListDirectory) -> List[Dict[str, Any]]:
        prefix = request.path.rstrip("/") + "/"
        entries: Dict[str, str] = {}

        for path in self.documents:
            if path.startswith(prefix):
                name, *rest = path[len(prefix) :].split("/")
                entries[name] = "directory" if rest else "document"

        return [{"name": n, "type": t} for n, t in sorted(entries.items())]

    def _exists(self, request: protocol.Exists) -> bool:
        prefix = request.path.rstrip("/") + "/"
        return request.path in self.documents or any(
            path.startswith(prefix) for path in self.documents
        )

    def _patchFile(self, request: protocol.PatchFile) -> bool:
        doc = self._document(request.path)

        target = doc["content"]
        for key in request.json_path[:-1]:
            target = target.setdefault(key, {})
        target[request.json_path[-1]] = request.value

        self._changed(request.path, doc)
        return True

    def _updateFile(self, request: protocol.UpdateFile) -> bool:
        doc = self._document(request.path)

        if doc["content"] == request.content:
            return False

        doc["content"] = request.content
        self._changed(request.path, doc)
        return True

    def _watchFile(self, request: protocol.WatchFile) -> None:
        self.watches[request.subscription_id] = ("file", request.path)

    def _watchDirectory(self, request: protocol.WatchDirectory) -> None:
        self.watches[request.subscription_id] = ("directory", request.path)

    def _unwatchFile(self, request: protocol.UnwatchFile) -> None:
        self.watches.pop(request.subscription_id, None)

    def _unwatchDirectory(self, request: protocol.UnwatchDirectory) -> None:
        self.watches.pop(request.subscription_id, None)

    #
    # Storage
    #

    def _document(self, path: str) -> Dict[str, Any]:
        if path not in self.documents:
            raise KeyError(f"file not found: {path}")

        return self.documents[path]

    def _store(self, path: str, content: Any, binary: Optional[str]) -> None:
        doc = {"type": "document", "name": posixpath.basename(path), "content": content}

        if binary is not None:
            doc["bytes"] = binary

        self.documents[path] = doc
        self._changed(path, doc)

    def _changed(self, path: str, doc: Optional[Dict[str, Any]]) -> None:
        for subscription_id, (kind, subject) in list(self.watches.items()):
            if kind == "file" and subject == path and doc is not None:
                self.notify(subscription_id, doc, path)
            elif kind == "directory" and posixpath.dirname(path) == subject:
                self.notify(
                    subscription_id,
                    {"path": path, "deleted": doc is None},
                    subject,
                )


@pytest.fixture
def channel() -> LoopbackChannel:
    return LoopbackChannel()


@pytest.fixture
def peer(channel: LoopbackChannel) -> MemoryPeer:
    return MemoryPeer(channel)


@pytest.fixture
def fs(channel: LoopbackChannel, peer: MemoryPeer) -> RemoteFileSystem:
    return RemoteFileSystem(channel, request_timeout=1.0)
