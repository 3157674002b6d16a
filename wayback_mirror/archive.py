"""HTTP access to the archive: pacing, retry/backoff and capture retrieval."""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .config import MirrorConfig
from .errors import FetchError

logger = logging.getLogger("wayback_mirror.archive")

WAYBACK_RAW = "https://web.archive.org/web"
HTMLISH_PREFIXES = ("text/html", "application/xhtml+xml")

BackoffHook = Callable[[str, float], None]


# ---------------- Rate limiter ----------------
class RateLimiter:
    def __init__(self, rps=5.0, burst=1, sleep=time.sleep):
        self.capacity = float(max(burst, 1))
        self.tokens = self.capacity
        self.fill = float(max(rps, 0.05))
        self.t0 = time.monotonic()
        self.lock = threading.Lock()
        self.sleep = sleep

    def take(self, n=1.0):
        with self.lock:
            now = time.monotonic()
            elapsed = now - self.t0
            self.t0 = now
            self.tokens = min(self.capacity, self.tokens + elapsed * self.fill)
            if self.tokens < n:
                sleep_time = (n - self.tokens) / self.fill
                if sleep_time > 0:
                    self.sleep(sleep_time)
                self.tokens = 0.0
                self.t0 = time.monotonic()
            else:
                self.tokens -= n


def make_session(user_agent: str) -> requests.Session:
    s = requests.Session()
    s.headers.update({"User-Agent": user_agent})
    # Redirects only; every retry goes through ArchiveClient so it is paced and counted.
    retry = Retry(
        total=None,
        connect=0,
        read=False,
        status=0,
        redirect=5,
        raise_on_status=False,
        respect_retry_after_header=False,
    )
    adapter = HTTPAdapter(max_retries=retry, pool_connections=4, pool_maxsize=4)
    s.mount("https://", adapter)
    s.mount("http://", adapter)
    return s


def wayback_url(timestamp: str, original_url: str, raw: bool = True) -> str:
    flag = "id_" if raw else "if_"
    return f"{WAYBACK_RAW}/{timestamp}{flag}/{original_url}"


@dataclass(frozen=True)
class ArchiveResponse:
    url: str
    content: bytes
    content_type: str = ""
    status_code: int = 200

    @property
    def is_html(self) -> bool:
        ctype = self.content_type.lower()
        if any(ctype.startswith(h) for h in HTMLISH_PREFIXES) or "html" in ctype:
            return True
        head = self.content[:512].lstrip().lower()
        return head.startswith((b"<!doctype html", b"<html"))

    def is_css(self, original_url: str = "") -> bool:
        ctype = self.content_type.lower()
        if "text/css" in ctype:
            return True
        path = original_url.split("?", 1)[0].split("#", 1)[0]
        return path.lower().endswith(".css")

    @property
    def text(self) -> str:
        return decode_body(self.content)


def decode_body(body: bytes) -> str:
    try:
        return body.decode("utf-8")
    except UnicodeDecodeError:
        return body.decode("latin-1", errors="replace")


class ArchiveClient:
    """Fetches archived content under a fixed retry ceiling.

    With ``n`` the 1-based attempt number, 429 waits ``2**n * backoff_unit``
    and 5xx, timeouts or other transport errors wait ``n * backoff_unit``.
    Nothing waits after the last attempt.
    """

    def __init__(self, config: MirrorConfig, session: Optional[requests.Session] = None, sleep=time.sleep):
        self.config = config
        self.session = session or make_session(config.user_agent)
        self.sleep = sleep
        self.limiter: Optional[RateLimiter] = None
        if config.requests_per_second > 0:
            self.limiter = RateLimiter(rps=config.requests_per_second, burst=1, sleep=sleep)

    def _wait(self, reason: str, seconds: float, on_backoff: Optional[BackoffHook]) -> None:
        logger.warning("%s, waiting %.1fs", reason, seconds)
        if on_backoff is not None:
            on_backoff(reason, seconds)
        self.sleep(seconds)

    def get(self, url: str, params: Optional[dict] = None, on_backoff: Optional[BackoffHook] = None) -> requests.Response:
        attempts = self.config.max_retries
        unit = self.config.backoff_unit
        for attempt in range(attempts):
            last = attempt == attempts - 1
            if self.limiter is not None:
                self.limiter.take()
            try:
                logger.debug("GET %s (attempt %d/%d)", url, attempt + 1, attempts)
                resp = self.session.get(url, params=params, timeout=self.config.timeout)
            except requests.exceptions.Timeout as exc:
                if last:
                    logger.warning("Timed out %d times, treating %s as unavailable", attempts, url)
                    raise FetchError(url, f"timeout after {attempts} attempts") from exc
                self._wait(f"Timeout, retry {attempt + 1}", (attempt + 1) * unit, on_backoff)
                continue
            except requests.exceptions.RequestException as exc:
                if last:
                    raise FetchError(url, f"request failed: {exc}") from exc
                self._wait(f"Request error ({exc.__class__.__name__}), retry {attempt + 1}", (attempt + 1) * unit, on_backoff)
                continue

            if resp.status_code == 429:
                if last:
                    raise FetchError(url, f"HTTP 429 after {attempts} attempts", status_code=429)
                self._wait("Rate limited", 2 ** (attempt + 1) * unit, on_backoff)
                continue
            if resp.status_code >= 500:
                if last:
                    raise FetchError(url, f"HTTP {resp.status_code}", status_code=resp.status_code)
                self._wait(f"Server error {resp.status_code}, retry {attempt + 1}", (attempt + 1) * unit, on_backoff)
                continue
            if not 200 <= resp.status_code < 300:
                raise FetchError(url, f"HTTP {resp.status_code}", status_code=resp.status_code)
            return resp
        raise FetchError(url, f"failed after {attempts} attempts")

    def fetch(self, timestamp: str, original_url: str, on_backoff: Optional[BackoffHook] = None) -> ArchiveResponse:
        url = wayback_url(timestamp, original_url, raw=self.config.raw)
        resp = self.get(url, on_backoff=on_backoff)
        return ArchiveResponse(
            url=original_url,
            content=resp.content,
            content_type=resp.headers.get("Content-Type", ""),
            status_code=resp.status_code,
        )
