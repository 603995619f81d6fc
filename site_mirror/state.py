"""Job lifecycle: status transitions, the pause flag and pause checkpoints.

pending -> processing -> complete | error | paused, and paused -> processing
on resume. The pause flag is separate from status: a job asked to pause keeps
reporting processing until the mirror reaches its next checkpoint.
"""

import logging
import threading
from typing import Dict, Optional

from .db import Database
from .models import Job, JobStatus

logger = logging.getLogger("site_mirror")

ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.PROCESSING, JobStatus.PAUSED, JobStatus.ERROR},
    JobStatus.PROCESSING: {JobStatus.PROCESSING, JobStatus.COMPLETE,
                           JobStatus.ERROR, JobStatus.PAUSED},
    JobStatus.PAUSED: {JobStatus.PROCESSING},
    JobStatus.COMPLETE: set(),
    JobStatus.ERROR: set(),
}


class JobNotFound(KeyError):
    pass


class InvalidTransition(Exception):
    def __init__(self, job_id: str, current: JobStatus, requested: JobStatus):
        super().__init__(f"Job {job_id}: cannot move from {current.value} to {requested.value}")
        self.job_id = job_id
        self.current = current
        self.requested = requested


class MirrorPaused(Exception):
    """Raised at a checkpoint to unwind a run whose job was asked to pause."""


class JobStateMachine:
    def __init__(self, db: Database):
        self.db = db
        self._locks: Dict[str, threading.RLock] = {}
        self._registry_lock = threading.Lock()

    def _lock_for(self, job_id: str) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(job_id)
            if lock is None:
                lock = self._locks[job_id] = threading.RLock()
            return lock

    def get(self, job_id: str) -> Job:
        row = self.db.get_project(job_id)
        if row is None:
            raise JobNotFound(job_id)
        return Job.from_row(row)

    def transition(self, job_id: str, status: JobStatus, **fields) -> Job:
        with self._lock_for(job_id):
            job = self.get(job_id)
            if status not in ALLOWED_TRANSITIONS[job.status]:
                raise InvalidTransition(job_id, job.status, status)
            self.db.update_project_status(job_id, status.value, **fields)
            if status != job.status:
                logger.info(f"[{job_id}] {job.status.value} -> {status.value}")
            return self.get(job_id)

    def update_progress(self, job_id: str, progress: int, step: str, **fields):
        """Record progress on a processing job; ignored once it has left processing."""
        with self._lock_for(job_id):
            job = self.get(job_id)
            if job.status != JobStatus.PROCESSING:
                return
            self.db.update_project_status(
                job_id, JobStatus.PROCESSING.value,
                progress=max(progress, job.progress), current_step=step, **fields,
            )

    def request_pause(self, job_id: str) -> Job:
        with self._lock_for(job_id):
            job = self.get(job_id)
            if job.status in (JobStatus.COMPLETE, JobStatus.ERROR):
                raise InvalidTransition(job_id, job.status, JobStatus.PAUSED)
            self.db.update_project_status(job_id, job.status.value, is_paused=1)
            logger.info(f"[{job_id}] Pause requested")
            return self.get(job_id)

    def clear_pause(self, job_id: str) -> Job:
        with self._lock_for(job_id):
            job = self.get(job_id)
            self.db.update_project_status(job_id, job.status.value, is_paused=0)
            return self.get(job_id)

    def withdraw_pause(self, job_id: str) -> Optional[Job]:
        """Clear a pause the run has not reached yet.

        Returns None when the job is not pending or processing with the flag set.
        """
        with self._lock_for(job_id):
            job = self.get(job_id)
            if job.status not in (JobStatus.PENDING, JobStatus.PROCESSING) or not job.is_paused:
                return None
            self.db.update_project_status(job_id, job.status.value, is_paused=0)
            logger.info(f"[{job_id}] Pause request withdrawn")
            return self.get(job_id)

    def is_pause_requested(self, job_id: str) -> bool:
        return self.get(job_id).is_paused

    def checkpoint(self, job_id: str):
        """Stop the run here if a pause was requested."""
        if self.is_pause_requested(job_id):
            raise MirrorPaused(job_id)

    def mark_paused(self, job_id: str, step: Optional[str] = None) -> Job:
        fields = {"current_step": step} if step else {}
        return self.transition(job_id, JobStatus.PAUSED, **fields)

    def forget(self, job_id: str):
        with self._registry_lock:
            self._locks.pop(job_id, None)
