"""
In-memory job registry.

Provides thread-safe job state that is updated by the job runner and read by
the SSE stream, the status endpoint and the file endpoint. This is the only
shared mutable structure in the process.
"""

import shutil
import threading
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any, List, Optional

from django.utils import timezone

from downloads.service.config import get_reap_seconds, get_work_dir
from downloads.service.constants import JOB_LOG_NAME, WORK_DIR_PREFIX
from downloads.service.formats import output_template_for
from downloads.service.progress import clamp_percent
from downloads.utils import generate_job_id, write_log

STATUS_PENDING = 'pending'
STATUS_RUNNING = 'running'
STATUS_DONE = 'done'
STATUS_FAILED = 'failed'
STATUS_CANCELLED = 'cancelled'

TERMINAL_STATUSES = (STATUS_DONE, STATUS_FAILED, STATUS_CANCELLED)

# Allowed status transitions. Terminal states have none.
TRANSITIONS = {
    STATUS_PENDING: (STATUS_RUNNING, STATUS_FAILED, STATUS_CANCELLED),
    STATUS_RUNNING: (STATUS_DONE, STATUS_FAILED, STATUS_CANCELLED),
}


@dataclass
class Job:
    """One tracked download: a URL + choice mapped to an eventual local file"""

    id: str
    url: str
    working_directory: Path
    output_template: str
    choice: Optional[str] = None
    format_id: Optional[str] = None
    percent: float = 0.0
    status: str = STATUS_PENDING
    file_path: Optional[Path] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    cmd: Optional[List[str]] = None
    process: Any = None
    claimed: bool = False
    created_at: Any = field(default_factory=timezone.now)
    updated_at: Any = field(default_factory=timezone.now)
    finished_at: Any = None

    @property
    def is_terminal(self):
        return self.status in TERMINAL_STATUSES

    @property
    def log_path(self):
        return self.working_directory / JOB_LOG_NAME

    @property
    def filename(self):
        return self.file_path.name if self.file_path else None

    def to_dict(self):
        """Snapshot exposed to clients."""
        return {
            'id': self.id,
            'percent': self.percent,
            'status': self.status,
            'error': self.error,
            'error_kind': self.error_kind,
            'filename': self.filename,
            'cmd': list(self.cmd) if self.cmd else None,
        }


def _is_expired(job, cutoff):
    if job.status == STATUS_PENDING:
        return job.created_at <= cutoff
    return job.is_terminal and job.finished_at is not None and job.finished_at <= cutoff


class JobRegistry:
    """
    Concurrent map from job id to Job.

    Every read and write happens under one lock, so a snapshot never shows a
    half-applied change. Mutations of a job in a terminal state are ignored.
    """

    def __init__(self, work_dir=None, reap_after=None):
        self._jobs = {}
        self._lock = threading.Lock()
        self._work_dir = Path(work_dir) if work_dir else None
        self._reap_after = reap_after

    @property
    def work_dir(self):
        if self._work_dir is not None:
            self._work_dir.mkdir(parents=True, exist_ok=True)
            return self._work_dir
        return get_work_dir()

    @property
    def reap_after(self):
        if self._reap_after is not None:
            return self._reap_after
        return get_reap_seconds()

    def __len__(self):
        with self._lock:
            return len(self._jobs)

    def __contains__(self, job_id):
        with self._lock:
            return job_id in self._jobs

    def ids(self):
        with self._lock:
            return list(self._jobs)

    def create(self, url, choice=None, format_id=None):
        """
        Register a new pending job with its own working directory.

        Expired jobs are reaped first.

        Returns:
            Job
        """
        self.reap_expired()
        base_dir = self.work_dir

        with self._lock:
            job_id = generate_job_id()
            while job_id in self._jobs:
                job_id = generate_job_id()

            working_directory = base_dir / f'{WORK_DIR_PREFIX}{job_id}'
            working_directory.mkdir(parents=True, exist_ok=False)

            job = Job(
                id=job_id,
                url=url,
                choice=choice,
                format_id=format_id,
                working_directory=working_directory,
                output_template=output_template_for(working_directory, job_id),
            )
            self._jobs[job_id] = job

        write_log(job.log_path, '=== JOB CREATED ===')
        write_log(job.log_path, f'ID: {job_id}')
        write_log(job.log_path, f'URL: {url}')
        write_log(job.log_path, f'Choice: {choice}')
        write_log(job.log_path, f'Format id: {format_id}')
        return job

    def get(self, job_id):
        with self._lock:
            return self._jobs.get(job_id)

    def snapshot(self, job_id):
        """
        Consistent copy of a job's client-visible state.

        Returns:
            dict or None if the id is unknown
        """
        with self._lock:
            job = self._jobs.get(job_id)
            return job.to_dict() if job else None

    def update(self, job_id, **changes):
        """
        Apply changes to a job atomically.

        A 'status' change must follow TRANSITIONS. Nothing is applied to a job
        that has already reached a terminal state.

        Returns:
            bool: True if the changes were applied
        """
        with self._lock:
            return self._apply(job_id, changes)

    def _apply(self, job_id, changes):
        job = self._jobs.get(job_id)
        if job is None or job.is_terminal:
            return False

        new_status = changes.get('status')
        if new_status is not None and new_status != job.status:
            if new_status not in TRANSITIONS.get(job.status, ()):
                return False

        for name, value in changes.items():
            setattr(job, name, value)
        job.updated_at = timezone.now()
        if job.is_terminal:
            job.finished_at = job.updated_at
        return True

    def set_progress(self, job_id, percent):
        """Record the latest percentage for a running job, clamped to [0, 100]."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != STATUS_RUNNING:
                return False
            return self._apply(job_id, {'percent': clamp_percent(percent)})

    def mark_running(self, job_id, process, cmd=None):
        """
        Attach the supervised process and move pending -> running.

        Raises:
            ValueError: If a process is already attached to the job
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return False
            if job.process is not None and job.process is not process:
                raise ValueError(f'Job {job_id} already has a process attached')
            return self._apply(
                job_id, {'status': STATUS_RUNNING, 'process': process, 'cmd': cmd}
            )

    def mark_done(self, job_id, file_path):
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.file_path is not None or job.error is not None:
                return False
            applied = self._apply(
                job_id, {'status': STATUS_DONE, 'file_path': Path(file_path), 'percent': 100.0}
            )
        if applied:
            write_log(job.log_path, f'=== DONE: {Path(file_path).name} ===')
        return applied

    def mark_failed(self, job_id, error, kind=None):
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.file_path is not None or job.error is not None:
                return False
            applied = self._apply(
                job_id, {'status': STATUS_FAILED, 'error': str(error), 'error_kind': kind}
            )
        if applied:
            write_log(job.log_path, f'=== FAILED ({kind}): {error} ===')
        return applied

    def claim_artifact(self, job_id):
        """
        Hand a done job's file to exactly one caller.

        The first caller gets the path; later callers get None, so a file is
        never streamed twice or read while another delivery deletes it.

        Returns:
            Path or None if the job is unknown, not done, already claimed or
            its file is gone
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status != STATUS_DONE or job.claimed:
                return None
            if job.file_path is None or not job.file_path.is_file():
                return None
            job.claimed = True
            return job.file_path

    def mark_cancelled(self, job_id):
        with self._lock:
            job = self._jobs.get(job_id)
            applied = self._apply(job_id, {'status': STATUS_CANCELLED})
        if applied:
            write_log(job.log_path, '=== CANCELLED ===')
        return applied

    def remove(self, job_id):
        """
        Forget a job and delete its working directory.

        A still-running child process is killed first.

        Returns:
            Job or None
        """
        with self._lock:
            job = self._jobs.pop(job_id, None)
        if job is None:
            return None

        if job.process is not None:
            job.process.kill()
        shutil.rmtree(job.working_directory, ignore_errors=True)
        return job

    def reap_expired(self, now=None):
        """
        Remove jobs nobody collected within the reap timeout.

        Covers finished jobs and jobs still pending that long, e.g. an SSE
        request whose client left before the stream started.

        Returns:
            list[str]: Ids of removed jobs
        """
        now = now or timezone.now()
        cutoff = now - timedelta(seconds=self.reap_after)
        with self._lock:
            expired = [
                job.id
                for job in self._jobs.values()
                if _is_expired(job, cutoff)
            ]

        for job_id in expired:
            self.remove(job_id)
        if expired:
            print(f'Reaped {len(expired)} expired job(s)')
        return expired
