"""Data models shared by the mirroring pipeline."""

import enum
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple


@dataclass(frozen=True)
class CaptureRef:
    """One archived capture of a URL. A missing timestamp means "look it up"."""

    original_url: str
    timestamp: Optional[str] = None


@dataclass(frozen=True)
class Capture:
    """A row returned by the capture index."""

    timestamp: str
    original_url: str
    mimetype: str = ""
    status_code: str = ""
    length: str = ""

    def ref(self) -> CaptureRef:
        return CaptureRef(self.original_url, self.timestamp)


@dataclass(frozen=True)
class ErrorRecord:
    url: str
    message: str


class JobStatus(str, enum.Enum):
    IDLE = "idle"
    DOWNLOADING = "downloading"
    REWRITING = "rewriting"
    DONE = "done"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (JobStatus.DONE, JobStatus.CANCELLED)

    @property
    def active(self) -> bool:
        return self in (JobStatus.DOWNLOADING, JobStatus.REWRITING)


@dataclass(frozen=True)
class JobSnapshot:
    """Read-only copy of a job's progress, handed to observers."""

    status: JobStatus = JobStatus.IDLE
    total: int = 0
    done: int = 0
    current: str = ""
    errors: Tuple[ErrorRecord, ...] = ()
    domain: str = ""
    output_dir: Optional[Path] = None
    cancelled: bool = False

    def as_dict(self) -> dict:
        return {
            "status": self.status.value,
            "total": self.total,
            "done": self.done,
            "current": self.current,
            "errors": [{"url": e.url, "message": e.message} for e in self.errors],
            "domain": self.domain,
            "output_dir": str(self.output_dir) if self.output_dir else None,
        }
