"""Operations that the command-line client can perform."""

from .commands import FileSystemOperations
from .common import Operations

__all__ = [
    "FileSystemOperations",
    "Operations",
]
