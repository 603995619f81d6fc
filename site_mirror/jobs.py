"""Job manager: the operations exposed to the CLI and HTTP layer.

Each job runs as one task on a bounded thread pool. Tasks share nothing but
the database; every run builds its own downloader, renderer and dedup state.
"""

import logging
import os
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Dict, List, Optional
from urllib.parse import urlparse

from .config import AppConfig
from .db import Database
from .files import FileStore
from .mirror import MirrorOrchestrator
from .models import Estimate, Job, JobStatus, ResourceRecord, Strategy
from .progress import ProgressChannel
from .state import InvalidTransition, JobStateMachine

logger = logging.getLogger("site_mirror")


class JobManager:
    def __init__(self, config: AppConfig, db: Database,
                 channel: Optional[ProgressChannel] = None, **orchestrator_kwargs):
        self.config = config
        self.db = db
        self.channel = channel or ProgressChannel()
        self.state = JobStateMachine(db)
        self.orchestrator = MirrorOrchestrator(config, db, self.state, self.channel,
                                               **orchestrator_kwargs)
        self._executor = ThreadPoolExecutor(max_workers=max(1, config.max_workers),
                                            thread_name_prefix="mirror")
        self._futures: Dict[str, Future] = {}

    def start_mirror(self, url: str, strategy=Strategy.NO_SCRIPT_FETCH, crawl_depth: int = 0,
                     with_estimate: bool = False) -> str:
        """Create a job and queue it. with_estimate stores an up-front estimate
        (one extra fetch of the page) on the job before it is queued.
        """
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"Not an http(s) URL: {url}")
        strategy = Strategy(strategy)
        if crawl_depth < 0:
            raise ValueError("crawl_depth must be >= 0")

        est = self.orchestrator.estimate(url, strategy, crawl_depth) if with_estimate else None

        job_id = uuid.uuid4().hex
        output_dir = os.path.join(self.config.output_dir, job_id)
        os.makedirs(output_dir, exist_ok=True)
        self.db.create_project(
            url=url, name=parsed.netloc, strategy=strategy.value,
            crawl_depth=crawl_depth, output_dir=output_dir, project_id=job_id,
            estimated_seconds=est.estimated_seconds if est else 0,
            estimated_bytes=est.estimated_bytes if est else 0,
        )

        logger.info(f"[{job_id}] Mirror requested: {url} ({strategy.value}, depth {crawl_depth})")
        self._submit(job_id)
        return job_id

    def _submit(self, job_id: str):
        self._futures[job_id] = self._executor.submit(self._run, job_id)

    def _run(self, job_id: str):
        try:
            self.orchestrator.run(job_id)
        except Exception as e:
            # Already recorded on the job; keep the worker alive
            logger.error(f"[{job_id}] Job ended in error: {e}")

    def pause(self, job_id: str) -> Job:
        return self.state.request_pause(job_id)

    def resume(self, job_id: str) -> Job:
        """Restart a paused job's mirror from the top.

        A job still queued or processing with a pause pending just has the
        request withdrawn and carries on.
        """
        withdrawn = self.state.withdraw_pause(job_id)
        if withdrawn is not None:
            return withdrawn
        job = self.state.get(job_id)
        if job.status != JobStatus.PAUSED:
            raise InvalidTransition(job_id, job.status, JobStatus.PROCESSING)

        self.state.clear_pause(job_id)
        job = self.state.transition(job_id, JobStatus.PROCESSING, current_step="Resuming")
        logger.info(f"[{job_id}] Resuming with a full restart")
        self._submit(job_id)
        return job

    def rename(self, job_id: str, name: str) -> Job:
        name = name.strip()
        if not name:
            raise ValueError("Project name must not be empty")
        self.state.get(job_id)
        self.db.update_project_name(job_id, name)
        return self.state.get(job_id)

    def get_status(self, job_id: str) -> Job:
        return self.state.get(job_id)

    def list_jobs(self) -> List[Job]:
        return [Job.from_row(r) for r in self.db.get_all_projects()]

    def get_files(self, job_id: str) -> List[ResourceRecord]:
        self.state.get(job_id)
        return [ResourceRecord.from_row(r) for r in self.db.get_files_by_project(job_id)]

    def estimate(self, url: str, strategy=Strategy.NO_SCRIPT_FETCH, crawl_depth: int = 0) -> Estimate:
        return self.orchestrator.estimate(url, strategy, crawl_depth)

    def delete(self, job_id: str):
        job = self.state.get(job_id)
        if job.status == JobStatus.PROCESSING:
            raise InvalidTransition(job_id, job.status, JobStatus.COMPLETE)
        if job.output_dir:
            FileStore(job.output_dir).delete()
        self.db.delete_project(job_id)
        self.state.forget(job_id)
        self._futures.pop(job_id, None)

    def wait(self, job_id: str, timeout: Optional[float] = None) -> Job:
        future = self._futures.get(job_id)
        if future is not None:
            future.result(timeout=timeout)
        return self.state.get(job_id)

    def shutdown(self, wait: bool = True):
        self._executor.shutdown(wait=wait)
