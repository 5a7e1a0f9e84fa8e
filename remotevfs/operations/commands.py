"""Module that implements the commands of the command-line client."""

import asyncio
import contextlib
import json
import sys
from typing import Any, Awaitable, Callable, Dict, IO, Optional

from remotevfs.args import Arguments
from remotevfs.config import Config
from remotevfs.connection import ConnectionState
from remotevfs.encoding import Encoding
from remotevfs.filesystem import RemoteFileSystem
from remotevfs.logger import log
from .common import Operations


class FileSystemOperations(Operations):
    """Class that runs a single command against the storage peer."""

    def __init__(
        self,
        args: Arguments,
        config: Config,
        fs: Optional[RemoteFileSystem] = None,
        stdin: IO[str] = sys.stdin,
        stdout: IO[str] = sys.stdout,
    ):
        """Initialize operations based on command-line arguments and configuration."""
        self._args = args
        self._config = config

        self._fs = fs

        self._stdin = stdin
        self._stdout = stdout

        self._encoding = Encoding()

        self._commands: Dict[str, Callable[[RemoteFileSystem], Awaitable[int]]] = {
            "read": self._read,
            "write": self._write,
            "rm": self._remove,
            "mv": self._move,
            "ls": self._list,
            "exists": self._exists,
            "watch": self._watch,
        }

    async def _run(self, stack: contextlib.AsyncExitStack) -> int:
        """Connect to the peer and run the command."""
        command = self._commands[self._args.command]

        fs = self._fs or RemoteFileSystem.from_config(self._config.connection)
        stack.push_async_callback(fs.close)

        if self._args.initialize:
            await fs.initialize()
        else:
            await fs.connect()

        return await command(fs)

    def _print(self, obj: Any) -> None:
        if isinstance(obj, str):
            self._stdout.write(obj)
        else:
            self._encoding.dump_json(obj, self._stdout)

        self._stdout.write("\n")
        self._stdout.flush()

    async def _read(self, fs: RemoteFileSystem) -> int:
        if self._args.text:
            self._print(await fs.read_bytes_as_string(self._args.path))
        else:
            self._print(await fs.read_file(self._args.path))

        return 0

    async def _write(self, fs: RemoteFileSystem) -> int:
        if self._args.content is not None:
            raw = self._args.content
        else:
            raw = self._stdin.read()

        if self._args.text:
            await fs.write_string_as_bytes(self._args.path, raw, self._args.create)
        else:
            try:
                content = json.loads(raw)
            except ValueError as e:
                raise ValueError(f"content is not valid JSON: {e}")

            await fs.write_file(self._args.path, content, self._args.create)

        return 0

    async def _remove(self, fs: RemoteFileSystem) -> int:
        await fs.delete_file(self._args.path)
        return 0

    async def _move(self, fs: RemoteFileSystem) -> int:
        await fs.rename_file(self._args.path, self._args.new_path)
        return 0

    async def _list(self, fs: RemoteFileSystem) -> int:
        for entry in await fs.list_directory(self._args.path):
            self._print(entry.name + ("/" if entry.is_directory else ""))

        return 0

    async def _exists(self, fs: RemoteFileSystem) -> int:
        found = await fs.exists(self._args.path)
        self._print("true" if found else "false")

        return 0 if found else 1

    async def _watch(self, fs: RemoteFileSystem) -> int:
        def state_changed(state: ConnectionState) -> None:
            log.info(f"connection state: {state.value}")

        fs.on_connection_state_change(state_changed)

        if self._args.directory:
            await fs.watch_directory(self._args.path, self._print)
        else:
            await fs.watch_file(self._args.path, self._print)

        # Changes are printed until the user interrupts
        await asyncio.Event().wait()

        assert False, "unreachable"
