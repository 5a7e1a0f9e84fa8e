"""
Module implementing the command-line interface of remotevfs.

The command-line client is a thin layer on top of RemoteFileSystem that connects to a
running storage peer, performs a single operation like reading or listing, and prints
the result. It is mostly useful for inspecting the contents of a peer during
development.
"""

import logging
import os
import signal
import sys
from typing import List, NoReturn, Optional

from remotevfs.config import Config
import remotevfs.constants as constants
from remotevfs.logger import log
import remotevfs.operations as operations
from .args import Arguments


def main(arguments: Optional[List[str]] = None) -> NoReturn:
    """
    Run a command against the storage peer with the given arguments.

    Defaults to parsing command-line arguments from sys.argv if none are specified.
    """
    # Parse command-line arguments.
    args = Arguments.parse(arguments)

    # Configure debug logging.
    if args.debug:
        log.setLevel(logging.DEBUG)
    else:
        log.setLevel(logging.ERROR)

    # Load configuration and apply command-line overrides.
    config = Config.load(os.path.expanduser(args.config))

    if args.endpoint is not None:
        config.connection.endpoint = args.endpoint
    if args.timeout is not None:
        config.connection.request_timeout = args.timeout

    ops = operations.FileSystemOperations(args, config)

    try:
        exit_code = ops.run()
    except KeyboardInterrupt:
        exit_code = 128 + signal.SIGINT
    except Exception as e:
        log.error(f"failed to run command: {e}")
        exit_code = constants.REMOTEVFS_ERROR_CODE

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
