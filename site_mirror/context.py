"""Per-run mirroring state.

A MirrorContext is created fresh for every run of a job and dropped when the
run ends; nothing in it survives a pause or is shared between jobs.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from .paths import local_path

logger = logging.getLogger("site_mirror")


@dataclass
class MirrorContext:
    job_id: str
    base_url: str
    # absolute URL -> path relative to the job's output root
    url_to_path: Dict[str, str] = field(default_factory=dict)
    # absolute URLs persisted (or claimed by a stylesheet) in this run
    persisted: Set[str] = field(default_factory=set)
    visited_css: Set[str] = field(default_factory=set)
    failed_urls: Set[str] = field(default_factory=set)
    # every distinct URL found in the document or in a stylesheet
    discovered: Set[str] = field(default_factory=set)
    errors: List[str] = field(default_factory=list)
    failed: int = 0
    fetched: int = 0
    bytes_written: int = 0
    _lock: threading.RLock = field(default_factory=threading.RLock, repr=False)

    def path_for(self, url: str, folder: str) -> str:
        """Canonical path for an absolute URL, created on first use."""
        with self._lock:
            existing = self.url_to_path.get(url)
            if existing is not None:
                return existing
            relative = local_path(url, self.base_url)
            path = f"{folder}/{relative}" if folder else relative
            self.url_to_path[url] = path
            return path

    def assign_path(self, url: str, path: str) -> str:
        with self._lock:
            return self.url_to_path.setdefault(url, path)

    def record_discovered(self, *urls: str) -> int:
        with self._lock:
            self.discovered.update(urls)
            return len(self.discovered)

    def has_failed(self, url: str) -> bool:
        with self._lock:
            return url in self.failed_urls

    def known_path(self, url: str) -> Optional[str]:
        with self._lock:
            if url in self.persisted:
                return self.url_to_path.get(url)
            return None

    def claim_css(self, url: str) -> bool:
        """Mark a stylesheet visited; False if it was already claimed."""
        with self._lock:
            if url in self.visited_css:
                return False
            self.visited_css.add(url)
            self.persisted.add(url)
            return True

    def is_visited(self, url: str) -> bool:
        with self._lock:
            return url in self.visited_css

    def record_persisted(self, url: Optional[str], size: int):
        with self._lock:
            if url:
                self.persisted.add(url)
                self.fetched += 1
            self.bytes_written += size

    def record_failure(self, label: str, ref: str, error: Exception, url: str = None):
        with self._lock:
            self.failed += 1
            self.errors.append(f"{label}: {ref} - {error}")
            if url:
                self.failed_urls.add(url)
        logger.error(f"[{self.job_id}] Failed {label.lower()}: {ref}: {error}")
