"""
Modules that present the documents of a storage peer as a file system.

The storage peer is a separate process that keeps documents at paths, merges
concurrent changes to them, and notifies about changes. This package turns the
messages it understands into an ordinary awaitable API: read, write, delete, rename,
list, existence checks and watches on files and directories.

Documents are JSON-compatible values, optionally with a binary payload. The helpers
for binary payloads in the 'common' module take care of encoding them for transport and
of describing them with a content type, which the peer needs to serve them later on.
"""

from .filesystem import RemoteFileSystem

__all__ = [
    "RemoteFileSystem",
]
