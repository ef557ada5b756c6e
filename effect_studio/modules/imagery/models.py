"""
Effect Job and Image Models

EffectJob is the only mutable entity in the pipeline; the job manager is its
sole writer. Image blobs and effect descriptors are immutable once created.
"""

import uuid
from enum import Enum
from datetime import datetime
from typing import Optional, Dict, Any

from pydantic import BaseModel, ConfigDict
from sqlmodel import SQLModel, Field


class JobStatus(str, Enum):
    """Job lifecycle states."""
    PENDING = "pending"           # Job created, task not started
    PROCESSING = "processing"     # Transform task running
    COMPLETED = "completed"       # Result image persisted
    FAILED = "failed"             # Any executor failure

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class ResultMethod(str, Enum):
    """How a completed result was produced."""
    GENERATED = "generated"
    FALLBACK = "fallback"


class ImageFormat(str, Enum):
    JPEG = "jpeg"
    PNG = "png"
    WEBP = "webp"

    @property
    def content_type(self) -> str:
        return f"image/{self.value}"

    @property
    def extension(self) -> str:
        return "jpg" if self is ImageFormat.JPEG else self.value


class ImageBlob(BaseModel):
    """Metadata for a stored image; the bytes live in the blob backend."""
    model_config = ConfigDict(frozen=True)

    image_id: str
    storage_key: str
    format: ImageFormat
    width: int
    height: int
    byte_size: int
    created_at: datetime

    @property
    def content_type(self) -> str:
        return self.format.content_type

    def public_metadata(self) -> Dict[str, Any]:
        return {
            "width": self.width,
            "height": self.height,
            "format": self.format.value,
            "byte_size": self.byte_size,
        }


class EffectDescriptor(BaseModel):
    """A named transformation. The directive is never exposed to clients."""
    model_config = ConfigDict(frozen=True)

    id: str
    display_name: str
    description: str
    directive: str

    def public_view(self) -> Dict[str, str]:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "description": self.description,
        }


class JobStatusView(BaseModel):
    """Read-only snapshot of a job, as returned by status polling."""
    model_config = ConfigDict(frozen=True)

    job_id: str
    effect_id: str
    status: JobStatus
    progress: int
    result_image_id: Optional[str] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    method: Optional[ResultMethod] = None
    note: Optional[str] = None
    created_at: datetime
    completed_at: Optional[datetime] = None


class EffectJob(SQLModel):
    """
    In-process job record.

    Only the job manager mutates these, and only from the single task bound
    to the job at submission time.
    """

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)

    # Input references (not ownership)
    source_image_id: str
    effect_id: str
    intensity: float = Field(default=0.8, ge=0.0, le=1.0)

    # Lifecycle
    status: JobStatus = Field(default=JobStatus.PENDING)
    progress: int = Field(default=0, ge=0, le=100)

    # Outcome (result_* only on completed, error_* only on failed)
    result_image_id: Optional[str] = None
    method: Optional[ResultMethod] = None
    note: Optional[str] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    error_stage: Optional[str] = None

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def mark_started(self):
        self.status = JobStatus.PROCESSING
        self.started_at = datetime.utcnow()

    def advance(self, progress: int) -> bool:
        """Raise progress; lower values are ignored so progress never goes back."""
        progress = max(0, min(100, int(progress)))
        if progress <= self.progress:
            return False
        self.progress = progress
        return True

    def mark_completed(self, result_image_id: str, method: ResultMethod, note: Optional[str] = None):
        self.status = JobStatus.COMPLETED
        self.progress = 100
        self.result_image_id = result_image_id
        self.method = method
        self.note = note
        self.completed_at = datetime.utcnow()

    def mark_failed(self, error_message: str, error_code: str, error_stage: Optional[str] = None):
        self.status = JobStatus.FAILED
        self.error_message = error_message
        self.error_code = error_code
        self.error_stage = error_stage
        self.completed_at = datetime.utcnow()

    @property
    def duration_seconds(self) -> float:
        if not self.completed_at:
            return 0.0
        return (self.completed_at - (self.started_at or self.created_at)).total_seconds()

    def to_status(self) -> JobStatusView:
        return JobStatusView(
            job_id=self.id,
            effect_id=self.effect_id,
            status=self.status,
            progress=self.progress,
            result_image_id=self.result_image_id,
            error_message=self.error_message,
            error_code=self.error_code,
            method=self.method,
            note=self.note,
            created_at=self.created_at,
            completed_at=self.completed_at,
        )
