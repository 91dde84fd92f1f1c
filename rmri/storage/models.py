from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, Field

WriteMode = Literal["overwrite", "append"]


class ArtifactMetadata(BaseModel):
    """Metadata of one stored artifact version."""
    artifact_id: str
    run_id: str
    agent_id: str
    key: str
    version: int
    size_bytes: int
    storage_path: str
    summary: str
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.now)
    metadata: Dict[str, Any] = Field(default_factory=dict)


class ArtifactWriteResult(BaseModel):
    artifact_id: str
    version: int
    size_bytes: int
    storage_path: str
    summary: str


class ArtifactContent(BaseModel):
    """An artifact read back from the store; ``data`` is None for summary-only reads."""
    metadata: ArtifactMetadata
    data: Optional[Any] = None

    @property
    def summary(self) -> str:
        return self.metadata.summary
