"""Module defining various global constants."""

# remotevfs version
VERSION = "1.0.0"

# remotevfs protocol
# The major version must be identical on the client and the storage peer.
#
# Note that new optional envelope fields can be added without having to change the
# protocol version, since unknown fields are ignored on both ends.
PROTOCOL_VERSION = "1.0.0"

# Special exit code for when the command-line client itself fails.
REMOTEVFS_ERROR_CODE = 254

# Default endpoint of the storage peer (a ZeroMQ ROUTER socket).
DEFAULT_ENDPOINT = "tcp://127.0.0.1:7007"

# Seconds to wait for the response to a single call.
DEFAULT_REQUEST_TIMEOUT = 30.0

# Seconds to wait for the connection with the storage peer when opening the channel.
DEFAULT_CONNECT_TIMEOUT = 5.0
