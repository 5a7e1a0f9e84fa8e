"""
Envelopes exchanged with the storage peer.

Every message on the channel is a map with a "kind" tag. The client sends call-style
requests that carry a correlation identifier, and the peer answers each of them with a
response of the same kind and identifier:

    {"kind": "readFile", "correlationId": "req_1", "path": "/notes.txt"}
    {"kind": "readFile", "correlationId": "req_1", "success": true, "data": {...}}

Two kinds of messages arrive unsolicited and carry no correlation identifier: change
notifications for a subscription, and broadcasts about the lifecycle of the peer.

    {"kind": "changed", "subscriptionId": "watch_3", "payload": {...}}
    {"kind": "reconnecting", "attempt": 2}

Each kind is modelled as a dataclass here, and decoding checks the tag exhaustively so
that both ends can be validated against the same set of types. Field names are
snake_case in Python and camelCase on the wire.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from typing import Any, ClassVar, Dict, List, Optional, Type, Union


class ProtocolError(ValueError):
    """Exception raised when a message does not match any known envelope."""


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


#
# Document model
#


@dataclass
class Document:
    """
    Unit of stored content: a JSON-compatible value and an optional binary payload.

    The binary payload is transported as a base64 string. A document with a binary
    payload must also describe it with a content-type hint in content["mime"].
    """

    content: Any = None
    binary: Optional[str] = None

    def validate(self) -> None:
        """Raise ValueError if the document carries a payload it cannot describe."""
        if self.binary is None:
            return

        if not isinstance(self.content, dict) or not self.content.get("mime"):
            raise ValueError(
                "document with a binary payload requires a 'mime' content-type hint"
            )

    def to_wire(self) -> Dict[str, Any]:
        obj = {"content": self.content}

        if self.binary is not None:
            obj["bytes"] = self.binary

        return obj

    @classmethod
    def from_wire(cls, obj: Any) -> Document:
        if not isinstance(obj, dict):
            raise ProtocolError(f"expected document, got {type(obj).__name__}")

        return cls(content=obj.get("content"), binary=obj.get("bytes"))


@dataclass
class DocumentData(Document):
    """Document as returned by the peer, including the metadata it keeps for it."""

    type: Optional[str] = None
    name: Optional[str] = None
    timestamps: Optional[Dict[str, Any]] = None

    @classmethod
    def from_wire(cls, obj: Any) -> DocumentData:
        if not isinstance(obj, dict):
            raise ProtocolError(f"expected document, got {type(obj).__name__}")

        return cls(
            content=obj.get("content"),
            binary=obj.get("bytes"),
            type=obj.get("type"),
            name=obj.get("name"),
            timestamps=obj.get("timestamps"),
        )


@dataclass
class Entry:
    """Directory entry as returned by listDirectory."""

    name: str
    type: str
    timestamps: Optional[Dict[str, Any]] = None
    pointer: Optional[str] = None

    @property
    def is_directory(self) -> bool:
        return self.type == "directory"

    @classmethod
    def from_wire(cls, obj: Any) -> Entry:
        if not isinstance(obj, dict) or "name" not in obj or "type" not in obj:
            raise ProtocolError(f"malformed directory entry {obj!r}")

        return cls(
            name=obj["name"],
            type=obj["type"],
            timestamps=obj.get("timestamps"),
            pointer=obj.get("pointer"),
        )


#
# Requests (client to peer)
#


@dataclass
class Request:
    """Base class of call-style envelopes."""

    kind: ClassVar[str] = ""

    # Fields that need conversion from their wire representation on decoding.
    _decoders: ClassVar[Dict[str, Any]] = {}

    def to_wire(self) -> Dict[str, Any]:
        obj: Dict[str, Any] = {"kind": self.kind}

        for f in fields(self):
            value = getattr(self, f.name)

            if hasattr(value, "to_wire"):
                value = value.to_wire()

            obj[_camel(f.name)] = value

        return obj

    @classmethod
    def from_wire(cls, obj: Dict[str, Any]) -> Request:
        kwargs = {}

        for f in fields(cls):
            wire_name = _camel(f.name)

            if wire_name in obj:
                value = obj[wire_name]

                if f.name in cls._decoders:
                    value = cls._decoders[f.name](value)

                kwargs[f.name] = value

        try:
            return cls(**kwargs)
        except TypeError:
            raise ProtocolError(f"malformed {cls.kind} request {obj!r}")


@dataclass
class Ping(Request):
    kind = "ping"

    correlation_id: Optional[str] = None


@dataclass
class Initialize(Request):
    kind = "initialize"

    protocol: str
    options: Dict[str, Any] = field(default_factory=dict)
    correlation_id: Optional[str] = None


@dataclass
class ReadFile(Request):
    kind = "readFile"

    path: str
    correlation_id: Optional[str] = None


@dataclass
class WriteFile(Request):
    kind = "writeFile"
    _decoders = {"content": Document.from_wire}

    path: str
    content: Document
    create: bool = False
    correlation_id: Optional[str] = None


@dataclass
class DeleteFile(Request):
    kind = "deleteFile"

    path: str
    correlation_id: Optional[str] = None


@dataclass
class Rename(Request):
    kind = "rename"

    old_path: str
    new_path: str
    correlation_id: Optional[str] = None


@dataclass
class ListDirectory(Request):
    kind = "listDirectory"

    path: str
    correlation_id: Optional[str] = None


@dataclass
class Exists(Request):
    kind = "exists"

    path: str
    correlation_id: Optional[str] = None


@dataclass
class PatchFile(Request):
    kind = "patchFile"

    path: str
    json_path: List[str]
    value: Any
    correlation_id: Optional[str] = None


@dataclass
class UpdateFile(Request):
    kind = "updateFile"

    path: str
    content: Any
    correlation_id: Optional[str] = None


@dataclass
class WatchFile(Request):
    kind = "watchFile"

    path: str
    subscription_id: str
    correlation_id: Optional[str] = None


@dataclass
class UnwatchFile(Request):
    kind = "unwatchFile"

    subscription_id: str
    correlation_id: Optional[str] = None


@dataclass
class WatchDirectory(Request):
    kind = "watchDirectory"

    path: str
    subscription_id: str
    correlation_id: Optional[str] = None


@dataclass
class UnwatchDirectory(Request):
    kind = "unwatchDirectory"

    subscription_id: str
    correlation_id: Optional[str] = None


REQUEST_TYPES: Dict[str, Type[Request]] = {
    cls.kind: cls
    for cls in (
        Ping,
        Initialize,
        ReadFile,
        WriteFile,
        DeleteFile,
        Rename,
        ListDirectory,
        Exists,
        PatchFile,
        UpdateFile,
        WatchFile,
        UnwatchFile,
        WatchDirectory,
        UnwatchDirectory,
    )
}


#
# Messages from the peer
#


@dataclass
class Response:
    """Answer to a request, matched to it by kind and correlation identifier."""

    kind: str
    correlation_id: str
    success: bool
    data: Any = None
    error: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        obj = {
            "kind": self.kind,
            "correlationId": self.correlation_id,
            "success": self.success,
        }

        if self.data is not None:
            obj["data"] = self.data
        if self.error is not None:
            obj["error"] = self.error

        return obj


@dataclass
class Changed:
    """Notification that the subject of a subscription has changed."""

    kind: ClassVar[str] = "changed"

    subscription_id: str
    payload: Any = None
    path: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        obj = {
            "kind": self.kind,
            "subscriptionId": self.subscription_id,
            "payload": self.payload,
        }

        if self.path is not None:
            obj["path"] = self.path

        return obj


# Lifecycle broadcasts from the peer.
READY = "ready"
DISCONNECTED = "disconnected"
RECONNECTING = "reconnecting"
RECONNECTED = "reconnected"
RECONNECTION_FAILED = "reconnectionFailed"
RESYNC_COMPLETE = "resyncComplete"

BROADCAST_KINDS = frozenset(
    [READY, DISCONNECTED, RECONNECTING, RECONNECTED, RECONNECTION_FAILED, RESYNC_COMPLETE]
)


@dataclass
class Broadcast:
    """Unsolicited announcement about the state of the peer."""

    kind: str
    attempt: Optional[int] = None
    count: Optional[int] = None

    def to_wire(self) -> Dict[str, Any]:
        obj: Dict[str, Any] = {"kind": self.kind}

        if self.attempt is not None:
            obj["attempt"] = self.attempt
        if self.count is not None:
            obj["count"] = self.count

        return obj


Message = Union[Response, Changed, Broadcast]


def _kind(obj: Any) -> str:
    if not isinstance(obj, dict):
        raise ProtocolError(f"expected map, got {type(obj).__name__}")

    kind = obj.get("kind")

    if not isinstance(kind, str):
        raise ProtocolError(f"message without kind: {obj!r}")

    return kind


def decode_message(obj: Any) -> Message:
    """Turn a raw message from the peer into its envelope type."""
    kind = _kind(obj)

    if kind == Changed.kind:
        if "subscriptionId" not in obj:
            raise ProtocolError(f"change notification without subscription: {obj!r}")

        return Changed(
            subscription_id=obj["subscriptionId"],
            payload=obj.get("payload"),
            path=obj.get("path"),
        )
    elif kind in BROADCAST_KINDS:
        return Broadcast(kind=kind, attempt=obj.get("attempt"), count=obj.get("count"))
    elif kind in REQUEST_TYPES:
        if "correlationId" not in obj or "success" not in obj:
            raise ProtocolError(f"malformed {kind} response {obj!r}")

        return Response(
            kind=kind,
            correlation_id=obj["correlationId"],
            success=bool(obj["success"]),
            data=obj.get("data"),
            error=obj.get("error"),
        )
    else:
        raise ProtocolError(f"unknown message kind {kind!r}")


def decode_request(obj: Any) -> Request:
    """Turn a raw message from the client into its request type."""
    kind = _kind(obj)

    if kind not in REQUEST_TYPES:
        raise ProtocolError(f"unknown request kind {kind!r}")

    return REQUEST_TYPES[kind].from_wire(obj)
