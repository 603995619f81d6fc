"""Resource discovery and reference rewriting for HTML documents and CSS."""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional, Set
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup, Tag


class ResourceCategory(str, Enum):
    STYLESHEET = "stylesheet"
    SCRIPT = "script"
    IMAGE = "image"
    FONT = "font"
    ICON = "icon"
    BACKGROUND = "background"


# (CSS selector, attribute holding the reference)
SELECTORS = {
    ResourceCategory.STYLESHEET: ('link[rel~="stylesheet"][href]', "href"),
    ResourceCategory.SCRIPT: ("script[src]", "src"),
    ResourceCategory.IMAGE: ("img[src]", "src"),
    ResourceCategory.FONT: (
        'link[rel*="font"][href], link[type*="font"][href], link[as="font"][href]',
        "href",
    ),
    ResourceCategory.ICON: (
        'link[rel~="icon"][href], link[rel~="apple-touch-icon"][href], '
        'link[rel~="apple-touch-icon-precomposed"][href]',
        "href",
    ),
    ResourceCategory.BACKGROUND: ('[style*="background"]', "style"),
}

INLINE_URL_RE = re.compile(r"""url\(\s*['"]?([^'")\s]+)['"]?\s*\)""", re.IGNORECASE)

# @import wins over url() so "@import url(x)" is reported once, as an import
CSS_TOKEN_RE = re.compile(
    r"""(?P<import>@import\s+(?:url\(\s*)?(?P<iq>['"]?)(?P<import_url>[^'"\s;)]+)(?P=iq)\s*\)?(?P<media>[^;]*);)"""
    r"""|(?P<url>url\(\s*(?P<uq>['"]?)(?P<url_value>[^'")\s]+)(?P=uq)\s*\))""",
    re.IGNORECASE,
)

SKIPPED_SCHEMES = ("#", "data:", "mailto:", "tel:", "javascript:", "blob:", "about:")


def can_fetch_url(u: Optional[str]) -> bool:
    if not u:
        return False
    return not u.strip().lower().startswith(SKIPPED_SCHEMES)


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "lxml")


def serialize_html(soup: BeautifulSoup) -> str:
    return str(soup)


def effective_base_url(soup: BeautifulSoup, fallback: str) -> str:
    tag = soup.find("base", href=True)
    if tag and tag.get("href"):
        try:
            return urljoin(fallback, tag["href"])
        except ValueError:
            pass
    return fallback


def iter_elements(soup: BeautifulSoup, category: ResourceCategory) -> Iterator[Tag]:
    selector, _ = SELECTORS[category]
    yield from soup.select(selector)


def background_urls(style: str) -> List[str]:
    return [u for u in INLINE_URL_RE.findall(style) if can_fetch_url(u)]


def extract(soup: BeautifulSoup, category: ResourceCategory) -> Set[str]:
    """Reference strings of one category, as written in the document."""
    _, attr = SELECTORS[category]
    refs: Set[str] = set()
    for el in iter_elements(soup, category):
        value = el.get(attr)
        if not value:
            continue
        if category == ResourceCategory.BACKGROUND:
            refs.update(background_urls(value))
        elif can_fetch_url(value):
            refs.add(value.strip())
    return refs


def rewrite_attribute(soup: BeautifulSoup, category: ResourceCategory,
                      ref: str, new_value: str) -> int:
    """Point every element of category referencing ref at new_value."""
    _, attr = SELECTORS[category]
    count = 0
    for el in iter_elements(soup, category):
        value = el.get(attr)
        if value and value.strip() == ref:
            el[attr] = new_value
            count += 1
    return count


def rewrite_inline_styles(soup: BeautifulSoup, resolve: Callable[[str], Optional[str]]) -> int:
    """Rewrite url() values inside background styles.

    resolve maps a reference to its replacement, or None to leave it alone.
    """
    count = 0

    def repl(m: re.Match) -> str:
        nonlocal count
        new = resolve(m.group(1)) if can_fetch_url(m.group(1)) else None
        if new is None:
            return m.group(0)
        count += 1
        return f"url('{new}')"

    for el in iter_elements(soup, ResourceCategory.BACKGROUND):
        style = el.get("style")
        if style:
            el["style"] = INLINE_URL_RE.sub(repl, style)
    return count


@dataclass
class CssReferences:
    imports: List[str] = field(default_factory=list)
    urls: List[str] = field(default_factory=list)


def parse_css(text: str) -> CssReferences:
    """Collect @import targets and url() targets from stylesheet text."""
    refs = CssReferences()
    for m in CSS_TOKEN_RE.finditer(text):
        if m.group("import"):
            target, bucket = m.group("import_url"), refs.imports
        else:
            target, bucket = m.group("url_value"), refs.urls
        if can_fetch_url(target) and target not in bucket:
            bucket.append(target)
    return refs


def rewrite_css(text: str, imports: Dict[str, str], urls: Dict[str, str]) -> str:
    """Replace @import and url() targets found in the given mappings."""

    def repl(m: re.Match) -> str:
        if m.group("import"):
            new = imports.get(m.group("import_url"))
            if new is None:
                return m.group(0)
            return f"@import url('{new}'){m.group('media')};"
        new = urls.get(m.group("url_value"))
        if new is None:
            return m.group(0)
        return f"url('{new}')"

    return CSS_TOKEN_RE.sub(repl, text)


def extract_links(html: str, base_url: str) -> List[str]:
    """Same-host page links, in document order, excluding the page itself."""
    soup = parse_html(html)
    base = urlparse(base_url)
    links: List[str] = []

    for a in soup.select("a[href]"):
        href = a.get("href", "").strip()
        if not can_fetch_url(href):
            continue
        try:
            absolute = urljoin(base_url, href).split("#", 1)[0]
            parsed = urlparse(absolute)
        except ValueError:
            continue
        if parsed.scheme not in ("http", "https"):
            continue
        if parsed.hostname != base.hostname or parsed.path == base.path:
            continue
        if absolute not in links:
            links.append(absolute)

    return links
