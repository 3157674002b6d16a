"""Post-crawl pass that makes a mirror self-contained.

Archive chrome and URL wrappers are removed, same-domain links become paths
relative to the file that contains them, and cross-domain links are left
absolute.
"""

import logging
import os
import posixpath
import re
from pathlib import Path
from typing import List, Mapping, Optional, Tuple
from urllib.parse import quote, urlsplit

from bs4 import BeautifulSoup, Comment
from bs4.element import Stylesheet

from .discovery import CSS_IMPORT_RE, CSS_URL_RE
from .urls import (
    canonical_url,
    domain_of,
    resolve_url,
    strip_archive_wrapper,
    to_local_path,
    url_for_local_path,
)

logger = logging.getLogger("wayback_mirror.rewriter")

PASSTHROUGH_PREFIXES = ("data:", "#", "javascript:", "mailto:", "tel:")

TOOLBAR_RE = re.compile(
    r"<!--\s*BEGIN WAYBACK TOOLBAR INSERT\s*-->.*?<!--\s*END WAYBACK TOOLBAR INSERT\s*-->",
    re.IGNORECASE | re.DOTALL,
)
TOOLBAR_IDS = ("wm-ipp-base", "wm-ipp", "wm-ipp-print", "donato")
ARCHIVE_SCRIPT_MARKERS = ("wombat", "__wm.", "_wm.", "archive_analytics", "bundle-playback")
ARCHIVE_COMMENT_MARKERS = ("FILE ARCHIVED ON", "playback timings")

URL_ATTRS = {
    "href",
    "src",
    "action",
    "poster",
    "data",
    "xlink:href",
    "data-src",
    "data-bg",
    "data-image",
    "data-background",
    "data-background-image",
}
SRCSET_ATTRS = {"srcset", "data-srcset"}
HTML_SUFFIXES = (".html", ".htm")


def rewrite_url(url: str, context_url: str, domain: str) -> str:
    """Rewrite one reference found in the document saved for `context_url`."""
    value = url.strip()
    if not value or value.lower().startswith(PASSTHROUGH_PREFIXES):
        return url
    value = strip_archive_wrapper(value)

    absolute = resolve_url(context_url, value)
    try:
        fragment = urlsplit(absolute).fragment
    except ValueError:
        return url
    if not absolute.lower().startswith(("http://", "https://")):
        return url
    if domain_of(absolute) != domain:
        return absolute

    target = to_local_path(canonical_url(absolute), domain)
    context_dir = posixpath.dirname(to_local_path(canonical_url(context_url), domain))
    rel = posixpath.relpath(target, context_dir)
    if not rel.startswith("."):
        rel = "./" + rel
    # local file names are unquoted and may contain "#" or spaces
    rel = quote(rel)
    if fragment:
        rel += "#" + fragment
    return rel


def rewrite_srcset(value: str, context_url: str, domain: str) -> str:
    entries = []
    for entry in value.split(","):
        parts = entry.strip().split()
        if not parts:
            continue
        parts[0] = rewrite_url(parts[0], context_url, domain)
        entries.append(" ".join(parts))
    return ", ".join(entries)


def rewrite_css_text(css: str, context_url: str, domain: str) -> str:
    """Rewrite url(...) and @import "..." references, keeping the original quoting."""

    def repl_url(m: re.Match) -> str:
        q, raw = m.group(1), m.group(2).strip()
        return f"url({q}{rewrite_url(raw, context_url, domain)}{q})"

    def repl_import(m: re.Match) -> str:
        q, raw = m.group(1), m.group(2).strip()
        return f"@import {q}{rewrite_url(raw, context_url, domain)}{q}"

    css = strip_archive_wrapper(css)
    css = CSS_URL_RE.sub(repl_url, css)
    return CSS_IMPORT_RE.sub(repl_import, css)


def strip_archive_chrome(soup: BeautifulSoup) -> None:
    """Remove the toolbar, playback scripts and banner styles the archive injects."""
    for tag_id in TOOLBAR_IDS:
        for el in soup.find_all(id=tag_id):
            el.decompose()

    for script in soup.find_all("script"):
        src = script.get("src") or ""
        if src and domain_of(src).endswith("archive.org"):
            script.decompose()
            continue
        body = src + (script.string or "")
        if any(marker in body for marker in ARCHIVE_SCRIPT_MARKERS):
            script.decompose()

    for link in soup.find_all("link", href=True):
        href = link["href"]
        if domain_of(href).endswith("archive.org") or "wayback" in href.lower():
            link.decompose()

    for comment in soup.find_all(string=lambda s: isinstance(s, Comment)):
        if any(marker in comment for marker in ARCHIVE_COMMENT_MARKERS):
            comment.extract()


def rewrite_html(html: str, page_url: str, domain: str) -> str:
    html = TOOLBAR_RE.sub("", html)
    html = strip_archive_wrapper(html)

    soup = BeautifulSoup(html, "lxml")
    strip_archive_chrome(soup)
    # Links are made relative to the file itself, so a <base> would misdirect them.
    for base in soup.find_all("base"):
        base.decompose()

    for tag in soup.find_all(True):
        for name, value in list(tag.attrs.items()):
            if not isinstance(value, str):
                continue
            key = name.lower()
            if key in URL_ATTRS:
                tag[name] = rewrite_url(value, page_url, domain)
            elif key in SRCSET_ATTRS:
                tag[name] = rewrite_srcset(value, page_url, domain)
            elif key == "style":
                tag[name] = rewrite_css_text(value, page_url, domain)
            elif key == "content" and tag.name == "meta" and re.match(r"^https?://", value.strip(), re.I):
                tag[name] = rewrite_url(value, page_url, domain)

    for style in soup.find_all("style"):
        css = style.get_text()
        style.clear()
        style.append(Stylesheet(rewrite_css_text(css, page_url, domain)))

    return str(soup)


def rewrite_css(css: str, css_url: str, domain: str) -> str:
    return rewrite_css_text(css, css_url, domain)


def _read_text(path: Path) -> Tuple[str, str]:
    body = path.read_bytes()
    try:
        return body.decode("utf-8"), "utf-8"
    except UnicodeDecodeError:
        return body.decode("latin-1"), "latin-1"


def rewrite_file(path: Path, url: str, domain: str, kind: str) -> None:
    text, encoding = _read_text(path)
    if kind == "html":
        text = rewrite_html(text, url, domain)
    else:
        text = rewrite_css(text, url, domain)
    path.write_bytes(text.encode(encoding, errors="xmlcharrefreplace"))


def _kind_for(local: str, recorded: Optional[str]) -> Optional[str]:
    if recorded is not None:
        return recorded if recorded in ("html", "css") else None
    lower = local.lower()
    if lower.endswith(HTML_SUFFIXES):
        return "html"
    if lower.endswith(".css"):
        return "css"
    return None


def rewrite_tree(mirror_dir: Path, domain: str,
                 files: Optional[Mapping[str, tuple]] = None) -> List[Tuple[str, str]]:
    """Rewrite every HTML and CSS file under `mirror_dir`.

    `files` maps local paths (as produced by `to_local_path`) to
    ``(source url, kind)`` so each file resolves links against the URL it was
    fetched from. Returns ``(url, message)`` for files that could not be
    rewritten; those are left as they were.
    """
    files = files or {}
    failures = []
    mirror_dir = Path(mirror_dir)
    if not mirror_dir.is_dir():
        return failures

    for root, dirs, names in os.walk(mirror_dir):
        dirs.sort()
        for name in sorted(names):
            path = Path(root) / name
            local = posixpath.join(domain, path.relative_to(mirror_dir).as_posix())
            url, recorded = files.get(local, (None, None))
            kind = _kind_for(local, recorded)
            if kind is None:
                continue
            url = url or url_for_local_path(local, domain)
            try:
                rewrite_file(path, url, domain, kind)
                logger.debug("Rewrote %s", local)
            except Exception as e:
                logger.warning("Rewrite failed for %s: %s", local, e)
                failures.append((url, f"rewrite failed: {e}"))
    return failures
