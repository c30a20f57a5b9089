# modengine/storage/__init__.py
from .kvstore import KeyValueStore, MemoryKeyValueStore, FileKeyValueStore

__all__ = [
    "KeyValueStore",
    "MemoryKeyValueStore",
    "FileKeyValueStore",
]
