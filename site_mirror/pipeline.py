"""Fetch one resource, write it into the job's tree and record it."""

import logging
from typing import Optional

from .context import MirrorContext
from .db import Database
from .downloader import Downloader, FetchError, FetchedBody
from .files import FileStore
from .models import KIND_FOLDERS, ResourceKind, TEXT_KINDS
from .state import JobStateMachine

logger = logging.getLogger("site_mirror")


class ResourcePipeline:
    def __init__(self, context: MirrorContext, downloader: Downloader, files: FileStore,
                 db: Database, state: JobStateMachine):
        self.context = context
        self.downloader = downloader
        self.files = files
        self.db = db
        self.state = state

    def fetch(self, url: str) -> FetchedBody:
        """Download url, unless the job was asked to pause (raises MirrorPaused)."""
        self.state.checkpoint(self.context.job_id)
        return self.downloader.fetch_body(url)

    def persist(self, url: Optional[str], path: str, data: bytes, kind: ResourceKind,
                text: Optional[str] = None) -> int:
        """Write data at path and create its file record."""
        self.files.save(path, data)
        if text is None and kind in TEXT_KINDS:
            text = data.decode("utf-8", errors="replace")
        file_id = self.db.create_file(
            self.context.job_id, path, kind.value, len(data), content=text,
        )
        self.context.record_persisted(url, len(data))
        logger.debug(f"[{self.context.job_id}] Saved {path} ({len(data):,} bytes)")
        return file_id

    def fetch_and_persist(self, url: str, kind: ResourceKind, folder: Optional[str] = None) -> str:
        """Local path for url, fetching and writing it the first time it is seen.

        Raises FetchError (and MirrorPaused) to the caller, which decides how to
        count the failure.
        """
        existing = self.context.known_path(url)
        if existing is not None:
            return existing
        if self.context.has_failed(url):
            raise FetchError(url, "already failed earlier in this run")

        path = self.context.path_for(url, KIND_FOLDERS[kind] if folder is None else folder)
        body = self.fetch(url)
        self.persist(url, path, body.content, kind, body.text if kind in TEXT_KINDS else None)
        return path
