"""Module that contains the file system that forwards all of its calls to the peer."""

from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional, Union

from semver import VersionInfo

from remotevfs.channel import Channel, ZmqChannel
from remotevfs.config import ConnectionConfig
from remotevfs.connection import (
    ConnectionState,
    ConnectionStateListener,
    ConnectionStateMachine,
)
from remotevfs.constants import DEFAULT_REQUEST_TIMEOUT, PROTOCOL_VERSION
from remotevfs.filesystem.common import decode_bytes, encode_bytes, with_mime_hint
from remotevfs.logger import log
import remotevfs.protocol as protocol
from remotevfs.protocol import Document, DocumentData, Entry
from remotevfs.rpc import Correlator
from remotevfs.watch import WatchCallback, WatchKind, WatchRegistry

BinaryData = Union[bytes, bytearray, memoryview, str]


def _require(**paths: str) -> None:
    for name, path in paths.items():
        if not path:
            raise ValueError(f"{name} is required")


class RemoteFileSystem:
    """
    Virtual file system whose documents are kept by a remote storage peer.

    Every instance owns one channel for its whole lifetime. Create one instance per
    logical connection rather than sharing it.

    Example:
    ```
    async with RemoteFileSystem(ZmqChannel("tcp://localhost:7007")) as fs:
        await fs.connect()
        await fs.write_file("/notes.txt", {"text": "hi"}, create=True)
        doc = await fs.read_file("/notes.txt")
    ```
    """

    def __init__(
        self,
        channel: Channel,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        fail_fast_on_disconnect: bool = False,
    ) -> None:
        """Instantiate a file system that talks to the peer over the given channel."""
        self._channel = channel

        self._correlator = Correlator(channel, timeout=request_timeout)
        self._watches = WatchRegistry(self._correlator)
        self._connection = ConnectionStateMachine(
            self._watches,
            self._correlator,
            fail_fast_on_disconnect=fail_fast_on_disconnect,
        )

        self._initialized = False
        self._closed = False

        channel.on_message(self._handle_message)

    @classmethod
    def from_config(cls, config: ConnectionConfig) -> RemoteFileSystem:
        """Instantiate a file system for the peer described by the configuration."""
        return cls(
            ZmqChannel(
                config.endpoint,
                linger_ms=config.linger_ms,
                connect_timeout=config.connect_timeout,
            ),
            request_timeout=config.request_timeout,
            fail_fast_on_disconnect=config.fail_fast_on_disconnect,
        )

    async def __aenter__(self) -> RemoteFileSystem:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    #
    # Message dispatching
    #

    def _handle_message(self, raw: Any) -> None:
        """Route a message from the peer to the component responsible for it."""
        try:
            message = protocol.decode_message(raw)
        except protocol.ProtocolError as e:
            log.warning(f"ignoring message: {e}")
            return

        if isinstance(message, protocol.Response):
            self._correlator.resolve(message)
        elif isinstance(message, protocol.Changed):
            self._watches.dispatch(message.subscription_id, message.payload)
        elif isinstance(message, protocol.Broadcast):
            self._connection.handle_broadcast(message)
        else:
            raise TypeError(f"unhandled message type {type(message).__name__}")

    #
    # Connection
    #

    @property
    def connection_state(self) -> ConnectionState:
        return self._connection.state

    def on_connection_state_change(
        self, listener: ConnectionStateListener
    ) -> Callable[[], None]:
        """
        Call the listener with the current connection state and on every change.

        Returns a function that unregisters the listener.
        """
        return self._connection.add_listener(listener)

    def is_initialized(self) -> bool:
        return self._initialized

    async def connect(self) -> None:
        """Connect to a peer that has already been initialized."""
        await self._handshake(protocol.Ping())

    async def initialize(self, options: Optional[Dict[str, Any]] = None) -> None:
        """
        Connect to the peer and have it initialize its storage with the given options.

        The peer answers with its protocol version, which must be compatible with ours.
        """
        await self._handshake(protocol.Initialize(PROTOCOL_VERSION, options or {}))

    async def _handshake(self, request: protocol.Request) -> None:
        self._connection.transition(ConnectionState.CONNECTING)

        try:
            await self._channel.open()
            ret = await self._correlator.call(request)

            if isinstance(request, protocol.Initialize):
                self._check_protocol(ret)
        except Exception as e:
            self._connection.transition(ConnectionState.DISCONNECTED)
            raise ConnectionError(f"failed to initialize: {e}") from e

        self._initialized = True

        await self._connection.recover()

    @staticmethod
    def _check_protocol(ret: Any) -> None:
        remote = ret.get("protocol") if isinstance(ret, dict) else None

        if remote is None:
            raise ValueError("peer did not report its protocol version")

        try:
            remote_version = VersionInfo.parse(remote)
        except (ValueError, TypeError) as e:
            raise ValueError(
                f"peer reported invalid protocol version {remote!r}"
            ) from e

        if remote_version.major != VersionInfo.parse(PROTOCOL_VERSION).major:
            raise ValueError(
                f"incompatible protocol ({remote} != {PROTOCOL_VERSION})"
            )

    async def close(self) -> None:
        """Fail calls in flight, forget all watches and listeners, close the channel."""
        if self._closed:
            return

        self._closed = True

        self._correlator.close()
        self._watches.clear()
        self._connection.close()
        self._connection.transition(ConnectionState.DISCONNECTED)
        self._connection.clear_listeners()

        self._initialized = False

        await self._channel.close()

    #
    # Documents
    #

    async def read_file(self, path: str) -> DocumentData:
        _require(path=path)

        ret = await self._correlator.call(protocol.ReadFile(path))
        return DocumentData.from_wire(ret)

    async def write_file(
        self, path: str, content: Union[Document, Any], create: bool = False
    ) -> None:
        """
        Write a document.

        With create=False the path must already exist on the peer. Plain values are
        stored as the content of a document without binary payload.
        """
        _require(path=path)

        if not isinstance(content, Document):
            content = Document(content)

        content.validate()

        await self._correlator.call(protocol.WriteFile(path, content, create))

    async def write_file_with_bytes(
        self, path: str, content: Any, data: BinaryData, create: bool = False
    ) -> None:
        """Write a document with a binary payload, adding a content type if missing."""
        _require(path=path)

        document = Document(with_mime_hint(content, path), encode_bytes(data))
        await self.write_file(path, document, create)

    async def write_string_as_bytes(
        self, path: str, text: str, create: bool = False
    ) -> None:
        """Write text as the binary payload of a document."""
        await self.write_file_with_bytes(path, None, text.encode("utf-8"), create)

    async def read_bytes(self, path: str) -> bytes:
        """Read the binary payload of a document."""
        document = await self.read_file(path)

        if document.binary is None:
            raise ValueError(f"{path} has no binary payload")

        return decode_bytes(document.binary)

    async def read_bytes_as_string(self, path: str) -> str:
        """
        Read the binary payload of a document as text.

        Documents without a binary payload return their content as JSON.
        """
        document = await self.read_file(path)

        if document.binary is None:
            log.warning(f"{path} was not stored as bytes, returning content instead")
            return json.dumps(document.content)

        return decode_bytes(document.binary).decode("utf-8")

    async def rename_file(self, old_path: str, new_path: str) -> None:
        """
        Move a document by copying it to the new path and deleting the old one.

        This is not atomic. If the deletion fails then the document exists at both
        paths afterwards.
        """
        _require(old_path=old_path, new_path=new_path)

        document = await self.read_file(old_path)

        copy = Document(document.content, document.binary)
        if copy.binary is not None:
            copy.content = with_mime_hint(copy.content, old_path)

        await self.write_file(new_path, copy, create=True)
        await self.delete_file(old_path)

    async def delete_file(self, path: str) -> None:
        _require(path=path)

        await self._correlator.call(protocol.DeleteFile(path))

    async def exists(self, path: str) -> bool:
        _require(path=path)

        return bool(await self._correlator.call(protocol.Exists(path)))

    async def list_directory(self, path: str) -> List[Entry]:
        _require(path=path)

        ret = await self._correlator.call(protocol.ListDirectory(path))
        return [Entry.from_wire(obj) for obj in ret or []]

    async def patch_file(self, path: str, json_path: List[str], value: Any) -> bool:
        """Replace the value at a key path within the content of a document."""
        _require(path=path)

        if len(json_path) == 0:
            raise ValueError("json_path must not be empty")

        return bool(
            await self._correlator.call(
                protocol.PatchFile(path, [str(key) for key in json_path], value)
            )
        )

    async def update_file(self, path: str, content: Any) -> bool:
        """
        Replace the content of an existing document.

        Returns whether the peer had to change anything.
        """
        _require(path=path)

        return bool(await self._correlator.call(protocol.UpdateFile(path, content)))

    #
    # Watches
    #

    async def watch_file(
        self, path: str, callback: Callable[[DocumentData], Any]
    ) -> str:
        """Call the callback with the new document whenever the file changes."""
        _require(path=path)

        return await self._watches.subscribe(path, WatchKind.FILE, callback)

    async def unwatch_file(self, watch_id: str) -> None:
        await self._watches.unsubscribe(watch_id)

    async def watch_directory(self, path: str, callback: WatchCallback) -> str:
        """Call the callback with a description of the change whenever it changes."""
        _require(path=path)

        return await self._watches.subscribe(path, WatchKind.DIRECTORY, callback)

    async def unwatch_directory(self, watch_id: str) -> None:
        await self._watches.unsubscribe(watch_id)
