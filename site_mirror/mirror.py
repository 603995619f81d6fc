"""Mirroring orchestrator: turns one job's URL into a browsable local copy.

A run goes through these phases in order, checking for a pause request before
each phase and before every fetch:

1. obtain the document (raw fetch or browser render); failure here is fatal
2. extract references per category
3. fonts, icons, stylesheets (with their @import/url() graph), scripts, images
4. inline style backgrounds, reusing paths from earlier phases
5. write index.html
6. optionally mirror same-host sub-pages as standalone pages
7. aggregate file counts and mark the job complete

Individual resource failures are counted and logged; the run carries on.
"""

import logging
import math
from typing import Callable, Dict, List, Optional, Set
from urllib.parse import urljoin

from .config import AppConfig
from .context import MirrorContext
from .css import CssImportResolver
from .db import Database
from .downloader import Downloader, FetchError
from .extractor import (
    ResourceCategory, effective_base_url, extract, extract_links, parse_html,
    rewrite_attribute, rewrite_inline_styles, serialize_html,
)
from .files import FileStore
from .models import Estimate, Job, JobStatus, ResourceKind, Strategy
from .paths import page_filename
from .pipeline import ResourcePipeline
from .progress import STEP_LABELS, Phase, ProgressAccountant, ProgressChannel, ProgressEvent
from .renderers import BaseRenderer, get_renderer
from .state import InvalidTransition, JobNotFound, JobStateMachine, MirrorPaused

logger = logging.getLogger("site_mirror")

# (phase, HTML category, kind, label used in failure reports)
ASSET_PHASES = [
    (Phase.FONTS, ResourceCategory.FONT, ResourceKind.FONT, "Font"),
    (Phase.ICONS, ResourceCategory.ICON, ResourceKind.ICON, "Icon"),
    (Phase.SCRIPTS, ResourceCategory.SCRIPT, ResourceKind.SCRIPT, "JavaScript"),
    (Phase.IMAGES, ResourceCategory.IMAGE, ResourceKind.IMAGE, "Image"),
]

MAX_REPORTED_ERRORS = 10

# Estimate heuristics
AVG_CSS_BYTES = 50 * 1024
AVG_JS_BYTES = 100 * 1024
AVG_IMAGE_BYTES = 200 * 1024
SECONDS_PER_RESOURCE = {Strategy.NO_SCRIPT_FETCH: 0.3, Strategy.BROWSER_RENDER: 0.8}
SECONDS_PER_SUBPAGE = {Strategy.NO_SCRIPT_FETCH: 2, Strategy.BROWSER_RENDER: 4}
BROWSER_OVERHEAD_SECONDS = 3

RendererFactory = Callable[[Strategy, AppConfig, Downloader], BaseRenderer]


class MirrorRun:
    """State for one execution of one job. Created per run, never reused."""

    def __init__(self, job: Job, config: AppConfig, db: Database, state: JobStateMachine,
                 channel: ProgressChannel, downloader: Downloader, renderer: BaseRenderer):
        self.job = job
        self.job_id = job.id
        self.url = job.url
        self.config = config
        self.db = db
        self.state = state
        self.channel = channel
        self.downloader = downloader
        self.renderer = renderer

        self.accountant = ProgressAccountant(job.strategy)
        self.context = MirrorContext(job.id, job.url)
        self.files = FileStore(job.output_dir)
        self.pipeline = ResourcePipeline(self.context, downloader, self.files, db, state)
        self.resolver = CssImportResolver(self.context, self.pipeline)

        self.base_url = job.url
        self.total = 0
        self.processed = 0
        self.pages = 0

    # -- reporting -----------------------------------------------------

    def report(self, percent: int, step: str, current_path: Optional[str] = None, **fields):
        self.state.update_progress(self.job_id, percent, step, **fields)
        self.channel.publish(ProgressEvent(self.job_id, percent, step, current_path))

    def counters(self) -> dict:
        return {
            "resources_discovered": len(self.context.discovered),
            "resources_fetched": self.context.fetched,
            "resources_failed": self.context.failed,
        }

    def checkpoint(self):
        self.state.checkpoint(self.job_id)

    # -- phases ----------------------------------------------------------

    def execute(self):
        self.checkpoint()
        self.state.transition(
            self.job_id, JobStatus.PROCESSING, progress=0, current_step="Starting",
            error_message=None, resources_discovered=0, resources_fetched=0,
            resources_failed=0, pages_processed=0,
        )

        html = self.obtain_document()
        soup = parse_html(html)
        self.base_url = effective_base_url(soup, self.url)

        groups = {category: self.group(extract(soup, category)) for category in ResourceCategory}
        images = dict(groups[ResourceCategory.IMAGE])
        for absolute, refs in groups[ResourceCategory.BACKGROUND].items():
            images.setdefault(absolute, []).extend(refs)
        groups[ResourceCategory.IMAGE] = images

        # Page-level references; stylesheets add what they reference as they are resolved
        page_refs = [groups[c] for c in (ResourceCategory.FONT, ResourceCategory.ICON,
                                         ResourceCategory.STYLESHEET, ResourceCategory.SCRIPT,
                                         ResourceCategory.IMAGE)]
        self.total = sum(len(g) for g in page_refs)
        self.context.record_discovered(*(absolute for g in page_refs for absolute in g))
        logger.info(f"[{self.job_id}] {self.total} resources discovered on {self.url}")
        self.report(self.accountant.percent, "Analyzing resources", **self.counters())

        for phase, category, kind, label in ASSET_PHASES[:2]:
            self.mirror_assets(soup, phase, category, kind, label, groups[category])
        self.mirror_stylesheets(soup, groups[ResourceCategory.STYLESHEET])
        for phase, category, kind, label in ASSET_PHASES[2:]:
            self.mirror_assets(soup, phase, category, kind, label, groups[category])

        self.rewrite_inline_styles(soup)
        self.write_document(soup)

        if self.job.crawl_depth > 0:
            self.crawl(html)

        self.finish()

    def obtain_document(self) -> str:
        if self.job.strategy == Strategy.BROWSER_RENDER:
            self.report(self.accountant.at(2), "Initializing browser")
            self.report(self.accountant.start(Phase.RENDER), "Loading page with JavaScript")

            def on_render(fraction: float):
                self.report(self.accountant.render(fraction), STEP_LABELS[Phase.RENDER])

            result = self.renderer.render(self.url, on_render)
            self.report(self.accountant.end(Phase.RENDER), "Page rendered successfully")
        else:
            self.report(self.accountant.at(10), STEP_LABELS[Phase.DOCUMENT])
            result = self.renderer.render(self.url)
            self.report(self.accountant.end(Phase.DOCUMENT), "Analyzing resources")
        return result.html

    def group(self, refs: Set[str]) -> Dict[str, List[str]]:
        """Collapse references that resolve to the same absolute URL."""
        grouped: Dict[str, List[str]] = {}
        for ref in sorted(refs):
            try:
                absolute = urljoin(self.base_url, ref)
            except ValueError as e:
                self.context.record_failure("URL", ref, e)
                continue
            grouped.setdefault(absolute, []).append(ref)
        return grouped

    def mirror_assets(self, soup, phase: Phase, category: ResourceCategory, kind: ResourceKind,
                      label: str, grouped: Dict[str, List[str]]):
        if not grouped:
            return
        self.checkpoint()
        step = STEP_LABELS[phase]
        logger.info(f"[{self.job_id}] {step}: {len(grouped)}")
        self.report(self.accountant.start(phase), step)

        for i, (absolute, refs) in enumerate(grouped.items(), 1):
            path = None
            try:
                path = self.pipeline.fetch_and_persist(absolute, kind)
                for ref in refs:
                    rewrite_attribute(soup, category, ref, f"./{path}")
                self.processed += 1
            except MirrorPaused:
                raise
            except Exception as e:
                self.context.record_failure(label, refs[0], e, absolute)
            self.report(self.accountant.advance(phase, i, len(grouped)), step, path,
                        **self.counters())

    def mirror_stylesheets(self, soup, grouped: Dict[str, List[str]]):
        if not grouped:
            return
        self.checkpoint()
        step = STEP_LABELS[Phase.STYLESHEETS]
        logger.info(f"[{self.job_id}] {step}: {len(grouped)}")
        self.report(self.accountant.start(Phase.STYLESHEETS), step)

        for i, (absolute, refs) in enumerate(grouped.items(), 1):
            path = None
            try:
                path = self.mirror_stylesheet(absolute)
                for ref in refs:
                    rewrite_attribute(soup, ResourceCategory.STYLESHEET, ref, f"./{path}")
                self.processed += 1
            except MirrorPaused:
                raise
            except Exception as e:
                self.context.record_failure("CSS", refs[0], e, absolute)
            self.report(self.accountant.advance(Phase.STYLESHEETS, i, len(grouped)), step, path,
                        **self.counters())

    def mirror_stylesheet(self, absolute: str) -> str:
        """Fetch a top-level stylesheet, resolve its graph and write its own text."""
        path = self.context.path_for(absolute, "css")
        if self.context.is_visited(absolute):
            # Already written while resolving an earlier stylesheet's imports
            return path
        if self.context.has_failed(absolute):
            raise FetchError(absolute, "already failed earlier in this run")

        body = self.pipeline.fetch(absolute)
        text = self.resolver.resolve(body.text, absolute, path)
        if text:
            self.pipeline.persist(absolute, path, text.encode("utf-8"),
                                  ResourceKind.STYLESHEET, text)
        return path

    def rewrite_inline_styles(self, soup):
        self.checkpoint()
        self.report(self.accountant.start(Phase.INLINE_STYLES), STEP_LABELS[Phase.INLINE_STYLES])

        def resolve(ref: str) -> Optional[str]:
            try:
                absolute = urljoin(self.base_url, ref)
            except ValueError:
                return None
            path = self.context.known_path(absolute)
            if path is None:
                if self.context.has_failed(absolute):
                    return None
                try:
                    path = self.pipeline.fetch_and_persist(absolute, ResourceKind.IMAGE)
                except MirrorPaused:
                    raise
                except Exception as e:
                    self.context.record_failure("Inline style", ref, e, absolute)
                    return None
            return f"./{path}"

        count = rewrite_inline_styles(soup, resolve)
        self.report(self.accountant.end(Phase.INLINE_STYLES), STEP_LABELS[Phase.INLINE_STYLES],
                    **self.counters())
        logger.debug(f"[{self.job_id}] Rewrote {count} inline style references")

    def write_document(self, soup):
        self.checkpoint()
        self.report(self.accountant.start(Phase.FINALIZE), STEP_LABELS[Phase.FINALIZE])
        html = serialize_html(soup)
        self.pipeline.persist(None, "index.html", html.encode("utf-8"), ResourceKind.DOCUMENT, html)
        self.report(self.accountant.end(Phase.FINALIZE), STEP_LABELS[Phase.FINALIZE], "index.html")

    def crawl(self, html: str):
        self.checkpoint()
        self.report(self.accountant.start(Phase.CRAWL), "Discovering sub-pages")

        links = extract_links(html, self.url)[:self.config.crawl.max_pages]
        self.report(self.accountant.percent,
                    f"Found {len(links)} sub-pages to mirror")

        for i, link in enumerate(links):
            self.checkpoint()
            step = f"Mirroring sub-page {i + 1}/{len(links)}"
            filename = None
            try:
                filename = self.mirror_subpage(link)
                if filename:
                    self.pages += 1
            except MirrorPaused:
                raise
            except Exception as e:
                logger.error(f"[{self.job_id}] Failed to mirror sub-page {link}: {e}")
            self.report(self.accountant.advance(Phase.CRAWL, i + 1, len(links)), step, filename,
                        pages_processed=self.pages)

    def mirror_subpage(self, link: str) -> Optional[str]:
        """Save one linked page as-is, with no resource graph of its own."""
        filename = page_filename(link)
        if filename == "index.html":
            logger.info(f"[{self.job_id}] Skipping sub-page {link}: would replace index.html")
            return None
        html = self.renderer.render(link).html
        self.pipeline.persist(None, filename, html.encode("utf-8"), ResourceKind.DOCUMENT, html)
        return filename

    def finish(self):
        self.checkpoint()
        all_files = self.db.get_files_by_project(self.job_id)
        total_size = sum(f["size"] or 0 for f in all_files)

        rate = round(self.processed / self.total * 100) if self.total else 100
        message = f"Mirror complete - {self.processed}/{self.total} resources downloaded ({rate}%)"
        if self.context.failed:
            message += f" - {self.context.failed} resources failed but mirror completed successfully"
            logger.warning(f"[{self.job_id}] Mirror completed with {self.context.failed} errors: "
                           f"{self.context.errors[:MAX_REPORTED_ERRORS]}")

        percent = self.accountant.complete()
        self.state.transition(
            self.job_id, JobStatus.COMPLETE, progress=percent, current_step=message,
            total_files=len(all_files), total_size=total_size,
            pages_processed=self.pages, **self.counters(),
        )
        self.channel.publish(ProgressEvent(self.job_id, percent, message, status="complete"))
        logger.info(f"[{self.job_id}] {message}")

    def close(self):
        try:
            self.renderer.close()
        finally:
            self.downloader.close()


class MirrorOrchestrator:
    def __init__(self, config: AppConfig, db: Database, state: JobStateMachine,
                 channel: Optional[ProgressChannel] = None, transport=None,
                 renderer_factory: Optional[RendererFactory] = None):
        self.config = config
        self.db = db
        self.state = state
        self.channel = channel or ProgressChannel()
        self.transport = transport
        self.renderer_factory = renderer_factory or get_renderer

    def run(self, job_id: str):
        """Mirror a job from the top. Raises if the job ends in error."""
        job = self.state.get(job_id)
        downloader = Downloader(self.config, self.transport)
        renderer = self.renderer_factory(job.strategy, self.config, downloader)
        mirror = MirrorRun(job, self.config, self.db, self.state, self.channel,
                           downloader, renderer)
        try:
            mirror.execute()
        except MirrorPaused:
            step = f"Paused at {mirror.accountant.percent}%"
            self.state.mark_paused(job_id, step)
            self.channel.publish(ProgressEvent(job_id, mirror.accountant.percent, step,
                                               status="paused"))
            logger.info(f"[{job_id}] {step}")
        except Exception as e:
            logger.error(f"[{job_id}] Mirror failed: {e}")
            self._fail(job_id, str(e) or e.__class__.__name__)
            self.channel.publish(ProgressEvent(job_id, mirror.accountant.percent, str(e),
                                               status="error"))
            raise
        finally:
            mirror.close()

    def _fail(self, job_id: str, message: str):
        try:
            self.state.transition(job_id, JobStatus.ERROR, error_message=message)
        except (InvalidTransition, JobNotFound) as e:
            logger.warning(f"[{job_id}] Could not record error state: {e}")

    def estimate(self, url: str, strategy=Strategy.NO_SCRIPT_FETCH, crawl_depth: int = 0) -> Estimate:
        """Rough cost of mirroring url, from one raw fetch of the document."""
        strategy = Strategy(strategy)
        downloader = Downloader(self.config, self.transport)
        try:
            html = downloader.fetch_text(url)
        except FetchError as e:
            logger.warning(f"Estimate fetch failed for {url}: {e}")
            return Estimate(
                estimated_seconds=30 if strategy == Strategy.BROWSER_RENDER else 15,
                estimated_bytes=2 * 1024 * 1024,
                resource_count=10,
            )
        finally:
            downloader.close()

        soup = parse_html(html)
        css = len(extract(soup, ResourceCategory.STYLESHEET))
        js = len(extract(soup, ResourceCategory.SCRIPT))
        images = len(extract(soup, ResourceCategory.IMAGE))
        total = css + js + images

        size = len(html.encode("utf-8")) + css * AVG_CSS_BYTES + js * AVG_JS_BYTES + images * AVG_IMAGE_BYTES
        seconds = total * SECONDS_PER_RESOURCE[strategy]
        if strategy == Strategy.BROWSER_RENDER:
            seconds += BROWSER_OVERHEAD_SECONDS

        if crawl_depth > 0:
            subpages = min(self.config.crawl.max_pages, total / 5)
            size *= 1 + subpages * 0.5
            seconds += subpages * SECONDS_PER_SUBPAGE[strategy]

        return Estimate(
            estimated_seconds=math.ceil(round(seconds, 3)),
            estimated_bytes=math.ceil(size),
            resource_count=total + 1,
        )
