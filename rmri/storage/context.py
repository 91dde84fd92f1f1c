"""
Versioned context store.

Artifacts are addressed by (run_id, agent_id, key). Each write creates a new
version; the previous active version is kept in the history. Writes to the
same key are serialized by a per-key ``asyncio.Lock`` so concurrent writers
never claim the same version number.
"""

import asyncio
import json
import logging
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel

from ..config.constants import MAX_ARTIFACT_BYTES, SUMMARY_CHARS
from .base import ContextStore
from .errors import ArtifactTooLargeError
from .models import ArtifactContent, ArtifactMetadata, ArtifactWriteResult, WriteMode

logger = logging.getLogger(__name__)

ArtifactKey = Tuple[str, str, str]


class BlobBackend(ABC):
    """Raw payload storage addressed by path."""

    @abstractmethod
    async def put(self, path: str, payload: bytes) -> None:
        pass

    @abstractmethod
    async def get(self, path: str) -> Optional[bytes]:
        pass


class InMemoryBlobBackend(BlobBackend):
    def __init__(self):
        self._blobs: Dict[str, bytes] = {}

    async def put(self, path: str, payload: bytes) -> None:
        self._blobs[path] = payload

    async def get(self, path: str) -> Optional[bytes]:
        return self._blobs.get(path)


def _to_jsonable(data: Any) -> Any:
    if isinstance(data, BaseModel):
        return data.model_dump(mode="json")
    return data


def merge_append(existing: Any, new: Any) -> Any:
    """Merge rule for append writes; incompatible types overwrite."""
    if isinstance(existing, list) and isinstance(new, list):
        return existing + new
    if isinstance(existing, dict) and isinstance(new, dict):
        return {**existing, **new}
    if isinstance(existing, str) and isinstance(new, str):
        return f"{existing}\n\n{new}"
    return new


def summarize(data: Any) -> str:
    if isinstance(data, str):
        return data[:SUMMARY_CHARS]
    if isinstance(data, list):
        return f"Array with {len(data)} items"
    if isinstance(data, dict):
        return f"Object with keys: {', '.join(list(data.keys())[:10])}"
    return str(data)[:SUMMARY_CHARS]


class VersionedContextStore(ContextStore):
    """Context store over a pluggable blob backend."""

    def __init__(self, backend: Optional[BlobBackend] = None, max_bytes: int = MAX_ARTIFACT_BYTES):
        self.backend = backend or InMemoryBlobBackend()
        self.max_bytes = max_bytes
        self._history: Dict[ArtifactKey, List[ArtifactMetadata]] = {}
        self._locks: Dict[ArtifactKey, asyncio.Lock] = {}

    def _lock_for(self, key: ArtifactKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def _active(self, key: ArtifactKey) -> Optional[ArtifactMetadata]:
        for meta in reversed(self._history.get(key, [])):
            if meta.is_active:
                return meta
        return None

    async def _load(self, meta: ArtifactMetadata) -> Any:
        payload = await self.backend.get(meta.storage_path)
        if payload is None:
            return None
        return json.loads(payload.decode("utf-8"))

    async def write(
        self,
        run_id: str,
        agent_id: str,
        key: str,
        data: Any,
        mode: WriteMode = "overwrite",
        metadata: Optional[Dict[str, Any]] = None
    ) -> ArtifactWriteResult:
        if not run_id or not agent_id or not key:
            raise ValueError("run_id, agent_id and key are required")
        if mode not in ("overwrite", "append"):
            raise ValueError(f"Unknown write mode: {mode}")

        address = (run_id, agent_id, key)
        data = _to_jsonable(data)

        async with self._lock_for(address):
            current = self._active(address)
            if mode == "append" and current is not None:
                data = merge_append(await self._load(current), data)

            payload = json.dumps(data, default=str).encode("utf-8")
            if len(payload) > self.max_bytes:
                raise ArtifactTooLargeError(key, len(payload), self.max_bytes)

            version = (current.version if current else 0) + 1
            storage_path = f"runs/{run_id}/agents/{agent_id}/{key}/v{version}.json"
            await self.backend.put(storage_path, payload)

            meta = ArtifactMetadata(
                artifact_id=str(uuid.uuid4()),
                run_id=run_id,
                agent_id=agent_id,
                key=key,
                version=version,
                size_bytes=len(payload),
                storage_path=storage_path,
                summary=summarize(data),
                metadata=metadata or {},
            )
            if current is not None:
                current.is_active = False
            self._history.setdefault(address, []).append(meta)

        logger.debug(f"Stored artifact {key} v{version} ({len(payload)} bytes) for run {run_id}")
        return ArtifactWriteResult(
            artifact_id=meta.artifact_id,
            version=version,
            size_bytes=meta.size_bytes,
            storage_path=storage_path,
            summary=meta.summary,
        )

    async def read(
        self,
        run_id: str,
        agent_id: str,
        key: str,
        summary_only: bool = False,
        version: Optional[int] = None
    ) -> Optional[ArtifactContent]:
        address = (run_id, agent_id, key)
        if version is None:
            meta = self._active(address)
        else:
            meta = next((m for m in self._history.get(address, []) if m.version == version), None)
        if meta is None:
            return None
        if summary_only:
            return ArtifactContent(metadata=meta.model_copy())
        return ArtifactContent(metadata=meta.model_copy(), data=await self._load(meta))

    async def list(self, run_id: str, agent_id: Optional[str] = None) -> List[ArtifactMetadata]:
        active = []
        for (r, a, _), history in self._history.items():
            if r != run_id or (agent_id is not None and a != agent_id):
                continue
            active.extend(m.model_copy() for m in history if m.is_active)
        return sorted(active, key=lambda m: (m.key, m.agent_id))

    async def versions(self, run_id: str, agent_id: str, key: str) -> List[ArtifactMetadata]:
        history = self._history.get((run_id, agent_id, key), [])
        return [m.model_copy() for m in reversed(history)]
