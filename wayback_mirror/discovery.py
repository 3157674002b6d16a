"""Find the same-domain resources a page or stylesheet depends on."""

import re
from typing import Iterable, Iterator, List, Set, Union

from bs4 import BeautifulSoup

from .urls import canonical_url, domain_of, is_fetchable, strip_archive_wrapper

CSS_URL_RE = re.compile(r"""url\(\s*(['"]?)([^'")]+)\1\s*\)""", re.IGNORECASE)
CSS_IMPORT_RE = re.compile(r"""@import\s+(['"])([^'"]+)\1""", re.IGNORECASE)

# <link rel=...> values that point at other documents or hosts, not at resources
NON_RESOURCE_RELS = {"canonical", "alternate", "dns-prefetch", "preconnect", "next", "prev"}

PREVIEW_IMAGE_META = {
    "og:image",
    "og:image:url",
    "og:image:secure_url",
    "twitter:image",
    "twitter:image:src",
}

LAZY_ATTRS = ("data-src", "data-bg", "data-image", "data-background", "data-background-image")
SRCSET_ATTRS = ("srcset", "data-srcset")


def parse_srcset(value: str) -> List[str]:
    """Return the URL of each candidate in a srcset, dropping width/density descriptors."""
    urls = []
    for entry in value.split(","):
        parts = entry.strip().split()
        if parts:
            urls.append(parts[0])
    return urls


def css_references(css: str) -> List[str]:
    """Raw url(...) and @import "..." references in a stylesheet, in order."""
    refs = [m.group(2).strip() for m in CSS_URL_RE.finditer(css)]
    refs.extend(m.group(2).strip() for m in CSS_IMPORT_RE.finditer(css))
    return refs


def filter_same_domain(refs: Iterable[str], context_url: str, domain: str) -> Set[str]:
    """Unwrap, resolve and keep only fetchable references on `domain`."""
    found = set()
    for ref in refs:
        if not ref:
            continue
        ref = strip_archive_wrapper(ref.strip())
        if not is_fetchable(ref):
            continue
        absolute = canonical_url(ref, context_url)
        if not absolute.lower().startswith(("http://", "https://")):
            continue
        if domain_of(absolute) == domain:
            found.add(absolute)
    return found


def discover_css(css: str, context_url: str, domain: str) -> Set[str]:
    return filter_same_domain(css_references(css), context_url, domain)


def _attr(tag, name: str) -> str:
    value = tag.get(name)
    if isinstance(value, list):
        value = " ".join(value)
    return value or ""


def _rel_tokens(tag) -> Set[str]:
    rel = tag.get("rel") or []
    if isinstance(rel, str):
        rel = rel.split()
    return {r.lower() for r in rel}


def _html_references(soup: BeautifulSoup) -> Iterator[str]:
    for link in soup.find_all("link", href=True):
        rels = _rel_tokens(link)
        if rels and rels <= NON_RESOURCE_RELS:
            continue
        yield _attr(link, "href")

    for tag in soup.find_all(["script", "img", "embed", "audio", "video", "source"], src=True):
        yield _attr(tag, "src")
    for tag in soup.find_all("input", src=True):
        if _attr(tag, "type").lower() == "image":
            yield _attr(tag, "src")
    for tag in soup.find_all("video", poster=True):
        yield _attr(tag, "poster")
    for tag in soup.find_all("object", data=True):
        yield _attr(tag, "data")

    # SVG sprites: only the file is fetched, the #fragment selects a symbol
    for tag in soup.find_all("use"):
        href = _attr(tag, "xlink:href") or _attr(tag, "href")
        href = href.split("#", 1)[0]
        if href:
            yield href
    for svg in soup.find_all("svg"):
        for tag in svg.find_all("image"):
            yield _attr(tag, "xlink:href") or _attr(tag, "href")

    for tag in soup.find_all("meta", content=True):
        key = (_attr(tag, "property") or _attr(tag, "name")).lower()
        if key in PREVIEW_IMAGE_META:
            yield _attr(tag, "content")

    for name in LAZY_ATTRS:
        for tag in soup.find_all(attrs={name: True}):
            yield _attr(tag, name)
    for name in SRCSET_ATTRS:
        for tag in soup.find_all(attrs={name: True}):
            yield from parse_srcset(_attr(tag, name))

    for tag in soup.find_all(style=True):
        yield from css_references(_attr(tag, "style"))
    for style in soup.find_all("style"):
        yield from css_references(style.get_text())


def discover_html(markup: Union[str, bytes, BeautifulSoup], context_url: str, domain: str) -> Set[str]:
    """Every same-domain resource URL referenced by an HTML document."""
    soup = markup if isinstance(markup, BeautifulSoup) else BeautifulSoup(markup, "lxml")
    return filter_same_domain(_html_references(soup), context_url, domain)
