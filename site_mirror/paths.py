"""Canonical local paths for mirrored resources.

Every resource URL maps to one deterministic path relative to the job's
output root. The same inputs always produce the same path, which is what lets
a run fetch each URL once and point every reference at the same file.
"""

import logging
import posixpath
import re
from urllib.parse import unquote, urljoin, urlparse

logger = logging.getLogger("site_mirror")

INVALID_FILENAME_CHARS_RE = re.compile(r'[<>:"/\\|?*\x00-\x1f]')
DEFAULT_PATH = "index.html"


def sanitize_segment(segment: str) -> str:
    return INVALID_FILENAME_CHARS_RE.sub("_", unquote(segment))[:200]


def local_path(resource_url: str, base_url: str) -> str:
    """Relative file path for resource_url, resolved against base_url.

    Root maps to index.html, extensionless paths are treated as directories,
    and malformed URLs fall back to index.html.
    """
    try:
        absolute = urljoin(base_url, resource_url.strip())
        path = urlparse(absolute).path
    except ValueError as e:
        logger.warning(f"Malformed URL {resource_url!r}: {e}")
        return DEFAULT_PATH

    segments = [sanitize_segment(seg) for seg in path.split("/")]
    segments = [seg for seg in segments if seg and seg not in (".", "..")]
    if not segments:
        return DEFAULT_PATH

    relative = "/".join(segments)
    if not posixpath.splitext(segments[-1])[1] or path.endswith("/"):
        relative = posixpath.join(relative, DEFAULT_PATH)
    return relative


def css_relative(css_path: str, target_path: str) -> str:
    """Reference from a stylesheet stored under css/ to another stored file.

    Stylesheet targets climb one ../ per directory the referring stylesheet
    sits below css/; other targets climb one more level to leave css/.
    """
    depth = css_path.count("/") - 1
    if target_path.startswith("css/"):
        prefix = "../" * depth if depth > 0 else "./"
        return prefix + target_path[len("css/"):]
    return "../" * (depth + 1) + target_path


def page_filename(page_url: str) -> str:
    """Flat file name for a crawled sub-page: /about/team -> about_team.html."""
    try:
        path = urlparse(page_url).path
    except ValueError:
        return DEFAULT_PATH

    segments = [sanitize_segment(seg) for seg in path.split("/")]
    name = "_".join(seg for seg in segments if seg and seg not in (".", ".."))
    if not name:
        return DEFAULT_PATH
    if posixpath.splitext(name)[1].lower() in (".html", ".htm"):
        return name
    return f"{name}.html"
