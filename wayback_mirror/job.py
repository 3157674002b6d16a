"""The mutable state of one mirroring run and its progress subscribers."""

import logging
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

from .models import ErrorRecord, JobSnapshot, JobStatus

logger = logging.getLogger("wayback_mirror.job")

Listener = Callable[[JobSnapshot], None]

# status -> statuses it may move to
TRANSITIONS = {
    JobStatus.IDLE: {JobStatus.DOWNLOADING},
    JobStatus.DOWNLOADING: {JobStatus.REWRITING, JobStatus.CANCELLED},
    JobStatus.REWRITING: {JobStatus.DONE},
    JobStatus.DONE: set(),
    JobStatus.CANCELLED: set(),
}


class Job:
    """One mirroring run. Only the engine touches it; everyone else gets snapshots."""

    def __init__(self, domain: str = "", output_dir: Optional[Path] = None):
        self.domain = domain
        self.output_dir = output_dir
        self.status = JobStatus.IDLE
        self.total = 0
        self.done = 0
        self.current = ""
        self.errors: List[ErrorRecord] = []
        self.cancelled = False
        self.downloaded_pages: Set[str] = set()
        self.downloaded_assets: Set[str] = set()
        # local path -> (source url, "html" | "css" | "other")
        self.files: Dict[str, tuple] = {}

    def move_to(self, status: JobStatus) -> None:
        if status not in TRANSITIONS[self.status]:
            raise ValueError(f"illegal job transition {self.status.value} -> {status.value}")
        self.status = status

    def seen(self, url: str) -> bool:
        return url in self.downloaded_pages or url in self.downloaded_assets

    def snapshot(self) -> JobSnapshot:
        return JobSnapshot(
            status=self.status,
            total=self.total,
            done=self.done,
            current=self.current,
            errors=tuple(self.errors),
            domain=self.domain,
            output_dir=self.output_dir,
            cancelled=self.cancelled,
        )


class Listeners:
    """Registry of progress callbacks. Delivery order across listeners is unspecified."""

    def __init__(self):
        self._lock = threading.Lock()
        self._listeners: List[Listener] = []
        self._last_seq = 0

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def emit(self, snapshot: JobSnapshot, seq: Optional[int] = None) -> None:
        """Deliver `snapshot`; one older than an already delivered `seq` is dropped."""
        with self._lock:
            if seq is not None:
                if seq <= self._last_seq:
                    return
                self._last_seq = seq
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Progress listener %r failed", listener)
