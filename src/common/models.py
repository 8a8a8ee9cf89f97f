"""
Shared data models for the generation pipeline.

- Pydantic models for data validation
- Type hints throughout
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

# path -> content, forward-slash separated paths
ProjectFiles = Dict[str, str]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GenerationMode(str, Enum):
    """How much structure the provider is asked to produce."""

    FAST = "fast"
    PLANNING = "planning"


class GenerationRequest(BaseModel):
    """A prompt submitted for generation. Immutable once submitted."""

    model_config = ConfigDict(frozen=True)

    prompt: str = Field(..., description="Natural-language description of the website")
    mode: GenerationMode = Field(default=GenerationMode.FAST, description="fast|planning")
    model: str = Field(default="auto", description="Catalog model id or 'auto'")

    @field_validator("prompt")
    @classmethod
    def _prompt_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("prompt must not be empty")
        return value

    @field_validator("model", mode="before")
    @classmethod
    def _default_model(cls, value: Any) -> Any:
        return value or "auto"


class ChunkType(str, Enum):
    """Type of a decoded stream delta."""

    CONTENT = "content"
    ERROR = "error"
    END = "end"


class StreamChunk(BaseModel):
    """One delta decoded from the provider's wire format."""

    type: ChunkType
    text: str = ""

    @classmethod
    def content(cls, text: str) -> "StreamChunk":
        return cls(type=ChunkType.CONTENT, text=text)

    @classmethod
    def error(cls, message: str) -> "StreamChunk":
        return cls(type=ChunkType.ERROR, text=message)

    @classmethod
    def end(cls) -> "StreamChunk":
        return cls(type=ChunkType.END)


class StepStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETE = "complete"


class PlanStep(BaseModel):
    """One entry of the visible build plan."""

    title: str
    description: str = ""
    status: StepStatus = StepStatus.PENDING


class SessionState(str, Enum):
    """Lifecycle of a generation session."""

    IDLE = "idle"
    STREAMING = "streaming"
    FINALIZING = "finalizing"
    READY = "ready"
    FAILED = "failed"


class SessionSnapshot(BaseModel):
    """Live view of the working state while the stream is in progress."""

    overview: str = ""
    steps: List[PlanStep] = Field(default_factory=list)
    files: ProjectFiles = Field(default_factory=dict)


class FinalizedProject(BaseModel):
    """Result of the one-shot strict parse (or its fallbacks)."""

    overview: str = ""
    steps: List[PlanStep] = Field(default_factory=list)
    files: ProjectFiles = Field(default_factory=dict)
    index_file: str = "index.html"
    dependencies: List[str] = Field(default_factory=list)
    fallback: Optional[str] = Field(default=None, description="None|partial|html|diagnostic")
    error: Optional[str] = None

    @property
    def usable(self) -> bool:
        """True unless only the diagnostic raw-text file could be produced."""
        return self.fallback != "diagnostic"


class EventType(str, Enum):
    """Kinds of events a running session emits."""

    DELTA = "delta"
    SNAPSHOT = "snapshot"
    NOTICE = "notice"
    RESULT = "result"
    ERROR = "error"


class SessionEvent(BaseModel):
    """Event emitted by GenerationSession.run()."""

    type: EventType
    text: Optional[str] = None
    snapshot: Optional[SessionSnapshot] = None
    result: Optional[FinalizedProject] = None
    document: Optional[str] = None
    record_id: Optional[str] = None
    state: Optional[SessionState] = None


class ProjectRecord(BaseModel):
    """A persisted generation. Created once, never mutated."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    account_id: str
    prompt: str
    overview: str = ""
    files: ProjectFiles = Field(default_factory=dict)
    index_file: str = "index.html"
    title: str
    model: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)


class ErrorResponse(BaseModel):
    """Non-streaming error body."""

    error: str
    details: Optional[str] = None


def derive_title(overview: str, prompt: str, limit: int = 80) -> str:
    """First non-empty line of the overview, without markdown heading marks."""
    for line in overview.splitlines():
        line = line.strip().lstrip("#").strip().strip("*").strip()
        if line:
            return line[:limit]
    return prompt.strip().splitlines()[0][:limit] if prompt.strip() else "Untitled project"
