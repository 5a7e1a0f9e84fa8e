"""Serialization of envelopes using MessagePack or JSON."""

import json
from typing import Any, IO

import msgpack


class Encoding:
    """
    Serialization and deserialization of envelopes using JSON or MessagePack.

    MessagePack serialization is used for the channel to the storage peer and JSON
    serialization for human readable output, like the command-line client.

    Envelope objects (anything with a to_wire() method) are turned into plain maps on
    the way out. Incoming data is always returned as plain maps and lists, turning it
    back into envelopes is the job of the protocol module.
    """

    def pack(self, obj: Any) -> bytes:
        """Serialize an object using MessagePack."""
        return msgpack.packb(obj, default=self.serialize_obj, use_bin_type=True)

    def unpack(self, data: bytes) -> Any:
        """Deserialize an object using MessagePack."""
        return msgpack.unpackb(data, raw=False)

    def dump_json(self, obj: Any, fp: IO[str], indent: int = 2) -> None:
        """Serialize an object to JSON."""
        json.dump(obj, fp, default=self.serialize_obj, indent=indent)

    def load_json(self, fp: IO[str]) -> Any:
        """Deserialize an object from JSON."""
        return json.load(fp)

    @staticmethod
    def serialize_obj(obj: Any) -> Any:
        """Turn an envelope into a serialization friendly representation."""
        if hasattr(obj, "to_wire"):
            return obj.to_wire()
        else:
            raise ValueError(f"unserializable object {obj}")
