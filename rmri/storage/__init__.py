from .base import ContextStore, RecordStore
from .context import BlobBackend, InMemoryBlobBackend, VersionedContextStore, merge_append
from .errors import ArtifactTooLargeError, RecordNotFoundError, StorageError
from .memory import InMemoryRecordStore
from .models import ArtifactContent, ArtifactMetadata, ArtifactWriteResult

__all__ = [
    "ArtifactContent",
    "ArtifactMetadata",
    "ArtifactTooLargeError",
    "ArtifactWriteResult",
    "BlobBackend",
    "ContextStore",
    "InMemoryBlobBackend",
    "InMemoryRecordStore",
    "RecordNotFoundError",
    "RecordStore",
    "StorageError",
    "VersionedContextStore",
    "merge_append",
]
