"""Document, source and job snapshot stores"""

from .base import DocumentSink, JobSnapshotStore, SourceRegistry
from .filesystem import FileSystemDocumentSink, JsonSourceRegistry
from .memory import InMemoryDocumentSink, InMemorySourceRegistry
from .redis_store import RedisJobSnapshotStore

__all__ = [
    "DocumentSink",
    "JobSnapshotStore",
    "SourceRegistry",
    "FileSystemDocumentSink",
    "JsonSourceRegistry",
    "InMemoryDocumentSink",
    "InMemorySourceRegistry",
    "RedisJobSnapshotStore",
]
