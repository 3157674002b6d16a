"""Retrieval engine: runs a mirroring job from requested pages to a rewritten mirror."""

import logging
import posixpath
import threading
from collections import deque
from typing import Iterable, List, Optional, Sequence, Set, Union

from .archive import ArchiveClient, ArchiveResponse
from .cdx import CaptureIndex
from .config import MirrorConfig
from .discovery import discover_css, discover_html
from .errors import BusyError, MirrorError, SnapshotNotFoundError, WriteError
from .job import Job, Listener, Listeners
from .models import CaptureRef, ErrorRecord, JobSnapshot, JobStatus
from .rewriter import rewrite_tree
from .urls import canonical_url, domain_of, parse_wayback_url, resource_key, to_local_path

logger = logging.getLogger("wayback_mirror.engine")

PageRequest = Union[CaptureRef, str]


def _as_capture_ref(page: PageRequest) -> CaptureRef:
    if isinstance(page, CaptureRef):
        return page
    return parse_wayback_url(page) or CaptureRef(page)


def _short_name(url: str, limit: int = 60) -> str:
    name = posixpath.basename(url.split("?", 1)[0].rstrip("/")) or url
    return name[:limit]


class MirrorEngine:
    """Owns the single job that may run at a time.

    Observers subscribe for `JobSnapshot`s; they never see the live `Job`.
    """

    def __init__(self, config: Optional[MirrorConfig] = None, client: Optional[ArchiveClient] = None,
                 index: Optional[CaptureIndex] = None):
        self.config = config or MirrorConfig()
        self.client = client or ArchiveClient(self.config)
        self.index = index or CaptureIndex(self.client)
        self._lock = threading.RLock()
        self._listeners = Listeners()
        self._job = Job()
        self._thread: Optional[threading.Thread] = None
        self._written: Set[str] = set()
        self._seq = 0

    # ---------------- Control surface ----------------
    def subscribe(self, listener: Listener):
        return self._listeners.subscribe(listener)

    def snapshot(self) -> JobSnapshot:
        with self._lock:
            return self._job.snapshot()

    def submit(self, pages: Sequence[PageRequest], timestamp: Optional[str] = None) -> None:
        """Start a job on a background thread. Raises `BusyError` if one is running."""
        refs = self._start(pages)
        self._thread = threading.Thread(
            target=self._run_job, args=(refs, timestamp), name="wayback-mirror-job", daemon=True
        )
        self._thread.start()

    def run(self, pages: Sequence[PageRequest], timestamp: Optional[str] = None) -> JobSnapshot:
        refs = self._start(pages)
        self._run_job(refs, timestamp)
        return self.snapshot()

    def wait(self, timeout: Optional[float] = None) -> JobSnapshot:
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
        return self.snapshot()

    def cancel(self) -> None:
        with self._lock:
            job = self._job
            if job.status != JobStatus.DOWNLOADING or job.cancelled:
                return
            logger.info("Cancellation requested")
            job.cancelled = True
            job.current = "Cancelling..."
        self._emit()

    # ---------------- Job state ----------------
    def _emit(self) -> None:
        # Listeners run outside the lock; the sequence number lets Listeners drop stale copies.
        with self._lock:
            self._seq += 1
            seq = self._seq
            snap = self._job.snapshot()
        self._listeners.emit(snap, seq)

    def _update(self, **fields) -> None:
        with self._lock:
            for name, value in fields.items():
                setattr(self._job, name, value)
        self._emit()

    def _move_to(self, status: JobStatus, current: str) -> None:
        with self._lock:
            self._job.move_to(status)
            self._job.current = current
        self._emit()

    def _cancelled(self) -> bool:
        with self._lock:
            return self._job.cancelled

    def _record_failure(self, url: str, message: str) -> None:
        logger.warning("[FAIL] %s | %s", url, message)
        with self._lock:
            self._job.errors.append(ErrorRecord(url, message))
        self._emit()

    def _record_error(self, url: str, exc: MirrorError) -> None:
        self._record_failure(url, str(exc))

    def _grow_total(self, n: int) -> None:
        if n:
            with self._lock:
                self._job.total += n
            self._emit()

    def _complete_unit(self) -> None:
        with self._lock:
            self._job.done = min(self._job.done + 1, self._job.total)
        self._emit()

    def _claim(self, url: str, page: bool) -> bool:
        """Reserve `url` for this job; False when it was already fetched or queued."""
        key = resource_key(url)
        with self._lock:
            if self._job.seen(key):
                return False
            (self._job.downloaded_pages if page else self._job.downloaded_assets).add(key)
            return True

    def _start(self, pages: Sequence[PageRequest]) -> List[CaptureRef]:
        refs = [_as_capture_ref(p) for p in pages]
        if not refs:
            raise ValueError("at least one page is required")
        with self._lock:
            if self._job.status.active:
                raise BusyError()
            domain = domain_of(refs[0].original_url)
            self._job = Job(domain=domain, output_dir=self.config.output_root / domain)
            self._written = set()
            self._job.total = len(refs)
            self._job.move_to(JobStatus.DOWNLOADING)
        self._emit()
        logger.info("Mirroring %d page(s) of %s into %s", len(refs), domain, self.config.output_root / domain)
        return refs

    # ---------------- Retrieval ----------------
    def _run_job(self, pages: List[CaptureRef], timestamp: Optional[str]) -> None:
        with self._lock:
            domain = self._job.domain
            output_dir = self._job.output_dir

        for idx, page in enumerate(pages, 1):
            if self._cancelled():
                break
            logger.info("[PAGE %d/%d] %s", idx, len(pages), page.original_url)
            self._process_page(page, timestamp, domain)

        if self._cancelled():
            self._move_to(JobStatus.CANCELLED, "Cancelled")
            snap = self.snapshot()
            logger.info("Job cancelled after %d/%d units", snap.done, snap.total)
            return

        self._move_to(JobStatus.REWRITING, "Rewriting links...")
        with self._lock:
            files = dict(self._job.files)
        logger.info("Rewriting links in %s", output_dir)
        for url, message in rewrite_tree(output_dir, domain, files):
            self._record_failure(url, message)

        self._move_to(JobStatus.DONE, "Done")
        logger.info("[DONE] %s -> %s (%d errors)", domain, output_dir, len(self.snapshot().errors))

    def _resolve_capture(self, url: str, page: CaptureRef, preferred: Optional[str]) -> CaptureRef:
        ts = page.timestamp or preferred
        if ts:
            return CaptureRef(url, ts)
        capture = self.index.latest(url)
        if capture is None:
            raise SnapshotNotFoundError(url)
        return CaptureRef(url, capture.timestamp)

    def _process_page(self, page: CaptureRef, preferred: Optional[str], domain: str) -> None:
        url = canonical_url(page.original_url)
        self._update(current=f"Page: {url}")
        found: Set[str] = set()
        capture = None
        if domain_of(url) != domain:
            self._record_failure(url, f"{url} is outside {domain}")
        elif self._claim(url, page=True):
            try:
                capture = self._resolve_capture(url, page, preferred)
                found = self._retrieve(url, capture.timestamp, domain, page=True)
            except MirrorError as exc:
                self._record_error(url, exc)
        self._complete_unit()
        if capture is not None:
            self._process_assets(found, capture.timestamp, domain)

    def _process_assets(self, found: Iterable[str], timestamp: str, domain: str) -> None:
        queue = deque()

        def enqueue(urls: Iterable[str]) -> None:
            fresh = [u for u in sorted(urls) if self._claim(u, page=False)]
            self._grow_total(len(fresh))
            queue.extend(fresh)

        enqueue(found)
        while queue:
            if self._cancelled():
                return
            asset = queue.popleft()
            self._update(current=f"Asset: {_short_name(asset)}")
            nested: Set[str] = set()
            try:
                nested = self._retrieve(asset, timestamp, domain, page=False)
            except MirrorError as exc:
                self._record_error(asset, exc)
            self._complete_unit()
            enqueue(nested)

    def _retrieve(self, url: str, timestamp: str, domain: str, page: bool) -> Set[str]:
        """Fetch and persist one resource; return the same-domain URLs it references.

        Pages are scanned as HTML, stylesheets as CSS; anything else is stored as is.
        """
        response = self.client.fetch(timestamp, url, on_backoff=self._on_backoff)
        if response.is_html:
            kind = "html"
        elif response.is_css(url):
            kind = "css"
        else:
            kind = "other"
        self._persist(url, response, domain, kind)

        if kind == "html" and page:
            return discover_html(response.text, url, domain)
        if kind == "css":
            return discover_css(response.text, url, domain)
        return set()

    def _persist(self, url: str, response: ArchiveResponse, domain: str, kind: str) -> None:
        local = to_local_path(url, domain)
        with self._lock:
            if local in self._written:
                logger.debug("%s already written, skipping %s", local, url)
                return
            self._written.add(local)
            self._job.files[local] = (url, kind)
        path = self.config.output_root / local
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(response.content)
        except OSError as exc:
            raise WriteError(url, path, f"cannot write {path}: {exc}") from exc
        logger.debug("  [SAVED] %s -> %s", url, local)

    def _on_backoff(self, reason: str, seconds: float) -> None:
        self._update(current=f"{reason}, waiting {seconds:.0f}s...")
