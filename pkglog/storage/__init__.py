"""
Local persistence: content bytes and verified registry state.
"""

from .store import ContentStorage, RegistryStorage
from .memory import MemoryContentStorage, MemoryRegistryStorage
from .file_store import FileContentStorage, FileRegistryStorage

__all__ = [
    "ContentStorage",
    "RegistryStorage",
    "MemoryContentStorage",
    "MemoryRegistryStorage",
    "FileContentStorage",
    "FileRegistryStorage",
]
