"""Shared functionality of command-line operations."""

from abc import ABC
import asyncio
import contextlib


class Operations(ABC):
    """Base class for operations that run on an event loop."""

    def run(self) -> int:
        """Run the operations on a new event loop and return the exit code."""
        return asyncio.run(self._run_with_cleanup())

    async def _run_with_cleanup(self) -> int:
        """Run the operations and clean up properly in case of errors."""
        async with contextlib.AsyncExitStack() as stack:
            return await self._run(stack)

        # https://github.com/python/mypy/issues/7726
        assert False, "unreachable"

    async def _run(self, stack: contextlib.AsyncExitStack) -> int:
        """Run the actual operations."""
        raise NotImplementedError()
