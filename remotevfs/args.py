"""Module defining the command-line arguments and providing a parser for them."""

from __future__ import annotations

import argparse
from typing import List, Optional

from remotevfs.constants import PROTOCOL_VERSION, VERSION


class Arguments(argparse.Namespace):
    """Parsed command-line arguments."""

    command: str

    path: str
    new_path: str
    content: Optional[str]

    config: str
    endpoint: Optional[str]
    timeout: Optional[float]

    debug: bool
    create: bool
    text: bool
    directory: bool
    initialize: bool

    @classmethod
    def parse(cls, args: Optional[List[str]] = None) -> Arguments:
        """
        Parse command-line arguments from the given list of strings.

        Defaults to sys.argv if none are specified.
        """
        return cls._get_parser().parse_args(args, namespace=cls())

    @classmethod
    def _get_parser(cls) -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(
            description="Access the documents of a remote storage peer.",
            usage="remotevfs [option...] command [arg...]",
        )

        parser.add_argument(
            "--version",
            action="version",
            version=f"%(prog)s {VERSION} (protocol {PROTOCOL_VERSION})",
            help="show the program version and protocol version",
        )

        # Path to (optional) config file
        parser.add_argument(
            "--config",
            type=str,
            help="path to config file (default is ~/.remotevfs/config)",
            default="~/.remotevfs/config",
        )

        # Overrides for the config file
        parser.add_argument(
            "--endpoint", type=str, help="ZeroMQ endpoint of the storage peer"
        )
        parser.add_argument(
            "--timeout",
            type=cls._parse_timeout,
            help="timeout for a single call in seconds",
        )

        # Enable debug output for development
        parser.add_argument(
            "--debug", action="store_true", help="enable debug information"
        )

        # Ask the peer to initialize its storage instead of expecting it to be ready
        parser.add_argument(
            "--initialize",
            action="store_true",
            help="initialize the storage peer before running the command",
        )

        # Options that only some of the commands have
        parser.set_defaults(
            new_path=None, content=None, create=False, text=False, directory=False
        )

        commands = parser.add_subparsers(dest="command", metavar="command")
        commands.required = True

        read = commands.add_parser("read", help="print a document")
        read.add_argument("path", type=str)
        read.add_argument(
            "--text", action="store_true", help="print binary payload as text"
        )

        write = commands.add_parser("write", help="write a document")
        write.add_argument("path", type=str)
        write.add_argument(
            "content",
            type=str,
            nargs="?",
            help="JSON content (or text with --text), read from stdin if omitted",
        )
        write.add_argument(
            "--create", action="store_true", help="create the document if needed"
        )
        write.add_argument(
            "--text", action="store_true", help="store content as binary payload"
        )

        remove = commands.add_parser("rm", help="delete a document")
        remove.add_argument("path", type=str)

        move = commands.add_parser("mv", help="rename a document (not atomic)")
        move.add_argument("path", type=str)
        move.add_argument("new_path", type=str)

        listing = commands.add_parser("ls", help="list a directory")
        listing.add_argument("path", type=str, nargs="?", default="/")

        exists = commands.add_parser("exists", help="check if a path exists")
        exists.add_argument("path", type=str)

        watch = commands.add_parser("watch", help="print changes until interrupted")
        watch.add_argument("path", type=str)
        watch.add_argument(
            "--directory", action="store_true", help="watch a directory"
        )

        return parser

    @staticmethod
    def _parse_timeout(arg: str) -> float:
        try:
            val = float(arg)
            assert val > 0
            return val
        except (ValueError, AssertionError):
            raise argparse.ArgumentTypeError("expected number > 0")
