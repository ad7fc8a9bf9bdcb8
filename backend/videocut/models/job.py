"""Clip and export job models for batch export."""
import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from videocut.models.edit import EditSpec, EndCard, OutputFormat
from videocut.models.segment import Segment


class JobStatus(str, enum.Enum):
    """Job status enumeration."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class JobStateError(ValueError):
    """Requested job transition is not allowed from the current status."""
    pass


@dataclass(frozen=True)
class Clip:
    """A segment bound to its export parameters."""
    id: str
    segment: Segment
    target_format: OutputFormat
    end_card: Optional[EndCard] = None
    edits: Optional[EditSpec] = None  # Extra color/speed/overlay edits


@dataclass(frozen=True)
class JobEvent:
    """A single status transition, kept for observers of the job queue."""
    job_id: str
    status: JobStatus
    progress: float
    timestamp: datetime = field(default_factory=datetime.utcnow)
    error: Optional[str] = None
    removed: bool = False  # Job left the queue (cancelled or cleared)


@dataclass
class ExportJob:
    """Execution state of one clip."""
    clip: Clip
    status: JobStatus = JobStatus.PENDING
    progress: float = 0.0  # 0.0 to 100.0
    output_url: Optional[str] = None
    error: Optional[str] = None
    diagnostics: Optional[str] = None  # Engine output, verbatim
    created_at: datetime = field(default_factory=datetime.utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @property
    def id(self) -> str:
        return self.clip.id

    def start(self):
        if self.status != JobStatus.PENDING:
            raise JobStateError(f"Job {self.id} cannot start from {self.status.value}")
        self.status = JobStatus.PROCESSING
        self.progress = 0.0
        self.started_at = datetime.utcnow()

    def advance(self, progress: float) -> bool:
        """Raise progress while processing. Returns True when it changed."""
        if self.status != JobStatus.PROCESSING:
            return False
        progress = min(100.0, max(0.0, progress))
        if progress <= self.progress:
            return False
        self.progress = progress
        return True

    def complete(self, output_url: str):
        if self.status != JobStatus.PROCESSING:
            raise JobStateError(f"Job {self.id} cannot complete from {self.status.value}")
        self.status = JobStatus.COMPLETED
        self.progress = 100.0
        self.output_url = output_url
        self.completed_at = datetime.utcnow()

    def fail(self, error: str, diagnostics: Optional[str] = None):
        if self.status != JobStatus.PROCESSING:
            raise JobStateError(f"Job {self.id} cannot fail from {self.status.value}")
        self.status = JobStatus.FAILED
        self.error = error
        self.diagnostics = diagnostics
        self.completed_at = datetime.utcnow()

    def reset(self):
        """Put a failed job back in the queue."""
        if self.status != JobStatus.FAILED:
            raise JobStateError(f"Only failed jobs can be retried, job {self.id} is {self.status.value}")
        self.status = JobStatus.PENDING
        self.progress = 0.0
        self.error = None
        self.diagnostics = None
        self.started_at = None
        self.completed_at = None

    def __repr__(self):
        return f"<ExportJob(id={self.id}, status={self.status.value}, progress={self.progress:.0f})>"

    def to_dict(self):
        """Convert to dictionary."""
        return {
            "id": self.id,
            "status": self.status.value,
            "progress": self.progress,
            "output_url": self.output_url,
            "error": self.error,
            "diagnostics": self.diagnostics,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }
