"""
Client for a remote storage peer that presents its documents as a file system.

The storage peer runs in a separate process and is reached through a message channel
(ZeroMQ by default). On top of that channel this package correlates requests with their
responses, keeps watches on files and directories alive across reconnects of the peer,
and tracks the state of the connection. remotevfs.filesystem.RemoteFileSystem ties all
of it together.
"""
