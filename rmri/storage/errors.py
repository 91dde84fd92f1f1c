"""Storage error definitions."""


class StorageError(Exception):
    """Base exception for storage errors."""
    pass


class ArtifactTooLargeError(StorageError):
    """Raised when an artifact exceeds the context store size ceiling."""

    def __init__(self, key: str, size_bytes: int, limit_bytes: int):
        self.key = key
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes
        super().__init__(
            f"Artifact '{key}' is {size_bytes} bytes, exceeds limit of {limit_bytes} bytes"
        )


class RecordNotFoundError(StorageError):
    """Raised when a run, agent or artifact id is unknown."""

    def __init__(self, kind: str, record_id: str):
        self.kind = kind
        self.record_id = record_id
        super().__init__(f"{kind} '{record_id}' not found")
