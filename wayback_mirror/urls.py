"""URL normalization, archive-wrapper stripping and URL -> local path mapping.

Everything here is pure: the retrieval engine uses `to_local_path` to decide
where a resource is written and the link rewriter uses the very same function
to compute where a link must point, so the two always agree.
"""

import posixpath
import re
from typing import Optional
from urllib.parse import unquote, urljoin, urlsplit, urlunsplit

from .models import CaptureRef

ARCHIVE_HOST = "web.archive.org"

# <archive base>/<1-14 digit timestamp><optional mode flag such as id_ or im_>/
ARCHIVE_WRAPPER_RE = re.compile(
    r"(?:https?:)?//web\.archive\.org/web/\d{1,14}(?:[a-z]{2}_)?/"
    r"|(?<![\w./-])/web/\d{1,14}(?:[a-z]{2}_)?/(?=https?://)",
    re.IGNORECASE,
)
WAYBACK_URL_RE = re.compile(
    r"^(?:https?:)?//web\.archive\.org/web/(\d{1,14})(?:[a-z]{2}_)?/(.+)$",
    re.IGNORECASE,
)
UNSAFE_CHARS_RE = re.compile(r'[<>:"|?*\\\x00-\x1f]')
SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)

# References that never name a fetchable resource.
NON_FETCHABLE_PREFIXES = ("data:", "javascript:", "mailto:", "tel:", "about:", "blob:", "#")


def normalize_url(url: str) -> str:
    url = url.strip()
    if url.startswith("//"):
        return "http:" + url
    if not SCHEME_RE.match(url):
        url = "http://" + url
    return url


def domain_of(url: str) -> str:
    try:
        host = urlsplit(normalize_url(url)).hostname
    except ValueError:
        host = None
    if host:
        return host
    return SCHEME_RE.sub("", url.strip()).split("/")[0]


def strip_archive_wrapper(url: str) -> str:
    """Remove every archive wrapper prefix, including nested ones."""
    previous = None
    while previous != url:
        previous = url
        url = ARCHIVE_WRAPPER_RE.sub("", url)
    return url


def resolve_url(base: str, ref: str) -> str:
    ref = ref.strip()
    if ref.startswith("//"):
        return "http:" + ref
    try:
        return urljoin(normalize_url(base), ref)
    except ValueError:
        return ref


def is_fetchable(ref: str) -> bool:
    ref = ref.strip().lower()
    return bool(ref) and not ref.startswith(NON_FETCHABLE_PREFIXES)


def canonical_url(url: str, base: Optional[str] = None) -> str:
    """Identity key of a resource: unwrapped, absolute, without fragment."""
    url = strip_archive_wrapper(url.strip())
    url = resolve_url(base, url) if base else normalize_url(url)
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), parts.path or "/", parts.query, ""))


def resource_key(url: str) -> str:
    """Dedup key of a canonical URL. The scheme is left out since the local path ignores it too."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    key = parts.netloc.lower() + (parts.path or "/")
    if parts.query:
        key += "?" + parts.query
    return key


def to_local_path(url: str, domain: str) -> str:
    """Map a URL to its path under the mirror root, e.g. ``example.com/a/index.html``.

    Never fails and never produces a path outside ``domain``.
    """
    try:
        path = urlsplit(normalize_url(url)).path
    except ValueError:
        return posixpath.join(domain, "index.html")

    path = unquote(path)
    if path in ("", "/"):
        path = "/index.html"
    elif not posixpath.splitext(path)[1]:
        path = path.rstrip("/") + "/index.html"
    path = UNSAFE_CHARS_RE.sub("_", path)

    segments = [s for s in path.split("/") if s not in ("", ".", "..")]
    if not segments:
        segments = ["index.html"]
    return posixpath.join(domain, *segments)


def url_for_local_path(local_path: str, domain: str) -> str:
    """Best-effort inverse of `to_local_path`, used for files with no recorded source URL."""
    rel = local_path.replace("\\", "/")
    if rel.startswith(domain + "/"):
        rel = rel[len(domain) + 1:]
    if rel == "index.html":
        rel = ""
    elif rel.endswith("/index.html"):
        rel = rel[: -len("index.html")]
    return f"http://{domain}/{rel}"


def parse_wayback_url(url: str) -> Optional[CaptureRef]:
    m = WAYBACK_URL_RE.match(url.strip())
    if not m:
        return None
    original = strip_archive_wrapper(m.group(2))
    return CaptureRef(normalize_url(original), m.group(1))
