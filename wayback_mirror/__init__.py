"""Rebuild a browsable, relocatable static copy of a site from the Wayback Machine."""

from .archive import ArchiveClient, ArchiveResponse
from .cdx import CaptureIndex
from .config import MirrorConfig
from .engine import MirrorEngine
from .errors import BusyError, FetchError, MirrorError, SnapshotNotFoundError, WriteError
from .models import Capture, CaptureRef, ErrorRecord, JobSnapshot, JobStatus

__version__ = "1.0.0"

__all__ = [
    "ArchiveClient",
    "ArchiveResponse",
    "BusyError",
    "Capture",
    "CaptureIndex",
    "CaptureRef",
    "ErrorRecord",
    "FetchError",
    "JobSnapshot",
    "JobStatus",
    "MirrorConfig",
    "MirrorEngine",
    "MirrorError",
    "SnapshotNotFoundError",
    "WriteError",
]
