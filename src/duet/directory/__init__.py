"""Shared directory backends.

The Redis backend lives in duet.directory.redis and is selected by
duet.runtime based on configuration.
"""

from duet.directory.base import InMemoryDirectory, SharedDirectory
from duet.directory.keys import DirectoryKeys

__all__ = [
    "SharedDirectory",
    "InMemoryDirectory",
    "DirectoryKeys",
]
