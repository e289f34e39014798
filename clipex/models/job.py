"""Render job data model."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional
from pydantic import BaseModel, Field
import uuid


class JobStatus(str, Enum):
    """Render job status.

    Moves strictly forward: pending -> processing -> completed | failed.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# Allowed forward transitions
_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.PROCESSING, JobStatus.FAILED},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}

# Progress bounds while the engine is running; 100 is reserved for success
MIN_RUNNING_PROGRESS = 1
MAX_RUNNING_PROGRESS = 99


class RenderJob(BaseModel):
    """Render job record, mutated in place as the job advances."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    url: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    # Persistence layer correlation
    record_id: Optional[str] = None

    # Output
    output_path: Optional[str] = None
    resolution: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        """Whether the job has completed or failed."""
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)

    def can_transition(self, status: JobStatus) -> bool:
        """Check whether moving to status is a forward transition."""
        return status in _TRANSITIONS[self.status]

    def update_status(self, status: JobStatus, progress: Optional[int] = None) -> bool:
        """Move to a new status. Returns False (and changes nothing) if not forward."""
        if not self.can_transition(status):
            return False
        self.status = status
        if progress is not None:
            self.progress = max(self.progress, progress)
        self.updated_at = datetime.now()
        return True

    def report_progress(self, percent: float) -> bool:
        """Record engine progress, clamped to [1, 99] and never decreasing.

        Only applies while processing. Returns True if progress changed.
        """
        if self.status != JobStatus.PROCESSING:
            return False
        clamped = int(min(max(round(percent), MIN_RUNNING_PROGRESS), MAX_RUNNING_PROGRESS))
        if clamped <= self.progress:
            return False
        self.progress = clamped
        self.updated_at = datetime.now()
        return True

    def complete(self, url: str, output_path: Optional[str] = None) -> bool:
        """Mark the job completed with its output reference."""
        if not self.update_status(JobStatus.COMPLETED):
            return False
        self.progress = 100
        self.url = url
        self.output_path = output_path
        return True

    def fail(self, error: str) -> bool:
        """Mark the job failed with a human-readable error."""
        if not self.update_status(JobStatus.FAILED):
            return False
        self.error = error
        return True

    def age_seconds(self, now: Optional[datetime] = None) -> float:
        """Seconds elapsed since creation."""
        return ((now or datetime.now()) - self.created_at).total_seconds()

    def to_status(self) -> Dict[str, Any]:
        """Public status payload for GET /status/{id}."""
        payload: Dict[str, Any] = {
            "id": self.id,
            "status": self.status.value,
            "progress": self.progress,
        }
        if self.url:
            payload["url"] = self.url
        if self.error:
            payload["error"] = self.error
        return payload
