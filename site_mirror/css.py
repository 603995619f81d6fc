"""Recursive stylesheet resolution.

Walks a stylesheet's @import graph and its url() references, fetching each
distinct URL at most once per run and rewriting references to local paths.
The visited set in the run's MirrorContext breaks import cycles; its failed
set keeps a broken target from being fetched again by a later stylesheet.
"""

import logging
from typing import Dict, Optional
from urllib.parse import urljoin

from .context import MirrorContext
from .extractor import parse_css, rewrite_css
from .models import KIND_FOLDERS, ResourceKind, classify
from .paths import css_relative
from .pipeline import ResourcePipeline
from .state import MirrorPaused

logger = logging.getLogger("site_mirror")


class CssImportResolver:
    def __init__(self, context: MirrorContext, pipeline: ResourcePipeline):
        self.context = context
        self.pipeline = pipeline

    def resolve(self, css_text: str, css_url: str, css_path: str) -> str:
        """Rewritten text for the stylesheet at css_url, stored at css_path.

        Returns "" when css_url was already handled in this run; the caller
        must not write it again. References whose target already failed in
        this run are left as written and not counted again.
        """
        if not self.context.claim_css(css_url):
            return ""
        self.context.assign_path(css_url, css_path)

        refs = parse_css(css_text)
        import_paths: Dict[str, str] = {}
        url_paths: Dict[str, str] = {}

        for ref in refs.imports:
            absolute = None
            try:
                absolute = self._discover(css_url, ref)
                if absolute is not None:
                    import_paths[ref] = self._resolve_import(absolute, css_path)
            except MirrorPaused:
                raise
            except Exception as e:
                self.context.record_failure("CSS @import", ref, e, absolute)

        for ref in refs.urls:
            absolute = None
            try:
                absolute = self._discover(css_url, ref)
                if absolute is None:
                    continue
                kind = classify(absolute)
                if kind not in (ResourceKind.FONT, ResourceKind.IMAGE):
                    kind = ResourceKind.OTHER
                target = self.pipeline.fetch_and_persist(absolute, kind, KIND_FOLDERS[kind])
                url_paths[ref] = css_relative(css_path, target)
            except MirrorPaused:
                raise
            except Exception as e:
                self.context.record_failure("CSS resource", ref, e, absolute)

        return rewrite_css(css_text, import_paths, url_paths)

    def _discover(self, css_url: str, ref: str) -> Optional[str]:
        """Absolute URL for ref, or None when it already failed in this run."""
        absolute = urljoin(css_url, ref)
        self.context.record_discovered(absolute)
        if self.context.has_failed(absolute):
            logger.debug(f"[{self.context.job_id}] Skipping {absolute}: failed earlier in this run")
            return None
        return absolute

    def _resolve_import(self, absolute: str, css_path: str) -> str:
        import_path = self.context.path_for(absolute, KIND_FOLDERS[ResourceKind.STYLESHEET])

        if not self.context.is_visited(absolute):
            body = self.pipeline.fetch(absolute)
            text = self.resolve(body.text, absolute, import_path)
            if text:
                self.pipeline.persist(absolute, import_path, text.encode("utf-8"),
                                      ResourceKind.STYLESHEET, text)
                logger.info(f"[{self.context.job_id}] Resolved @import {absolute} -> {import_path}")

        return css_relative(css_path, import_path)
