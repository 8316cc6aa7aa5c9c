"""
Delivery adapters over the job registry.

PushAdapter streams one job's events to the client that started it, as
Server-Sent Events. PullAdapter runs jobs in the background and lets any
number of clients poll their state and fetch the finished file.
"""

import asyncio
import json

from asgiref.sync import sync_to_async

from downloads.jobs import STATUS_DONE
from downloads.runner import run_job, run_job_collect
from downloads.service.config import get_heartbeat_seconds, get_sse_retry_ms
from downloads.service.errors import InvalidRequest
from downloads.service.progress import ProgressEvent
from downloads.service.tool import resolve_tool

FILE_CHUNK_SIZE = 64 * 1024

# Comment padding sent first so buffering proxies flush the stream early
SSE_PADDING = ':' + ' ' * 2048 + '\n\n'
SSE_HEARTBEAT = ': keepalive\n\n'


def sse_event(event, data):
    """Format one SSE frame."""
    return f'event: {event}\ndata: {json.dumps(data)}\n\n'


def _require_url(url):
    if not url:
        raise InvalidRequest('Missing url')
    return url


class _JobAdapter:
    def __init__(self, registry):
        self.registry = registry

    async def create_job(self, url, choice=None, format_id=None):
        _require_url(url)
        return await sync_to_async(self.registry.create, thread_sensitive=False)(
            url, choice or None, format_id or None
        )

    async def discard(self, job_id):
        """Remove a job and delete its files."""
        await sync_to_async(self.registry.remove, thread_sensitive=False)(job_id)


class PushAdapter(_JobAdapter):
    """Run a job tied to one SSE connection and stream its progress."""

    def __init__(self, registry, heartbeat_interval=None, retry_ms=None):
        super().__init__(registry)
        self._heartbeat_interval = heartbeat_interval
        self._retry_ms = retry_ms

    @property
    def heartbeat_interval(self):
        if self._heartbeat_interval is not None:
            return self._heartbeat_interval
        return get_heartbeat_seconds()

    @property
    def retry_ms(self):
        if self._retry_ms is not None:
            return self._retry_ms
        return get_sse_retry_ms()

    async def events(self, job, tool=None):
        """
        Run `job` and yield SSE frames until it ends.

        Frames: retry hint and padding, an immediate 0% progress event, one
        progress event per parsed progress line, periodic keepalive comments,
        and finally either `done {id, filename}` or `fail {error}`.

        If the consumer goes away (the response coroutine is cancelled on
        client disconnect, or the generator is closed), the child is killed
        and the job with its files is removed.
        """
        queue = asyncio.Queue()
        task = asyncio.create_task(run_job(self.registry, job.id, tool=tool, events=queue))
        finished = False

        try:
            yield f'retry: {self.retry_ms}\n'
            yield SSE_PADDING
            yield sse_event('progress', {'id': job.id, 'percent': 0})

            loop = asyncio.get_running_loop()
            next_heartbeat = loop.time() + self.heartbeat_interval
            while True:
                # Keepalives go out on a fixed schedule, busy or not
                if loop.time() >= next_heartbeat:
                    yield SSE_HEARTBEAT
                    next_heartbeat = loop.time() + self.heartbeat_interval
                try:
                    event = await asyncio.wait_for(
                        queue.get(), timeout=max(0, next_heartbeat - loop.time())
                    )
                except asyncio.TimeoutError:
                    continue

                if event is None:
                    break
                if isinstance(event, ProgressEvent):
                    yield sse_event('progress', {'id': job.id, 'percent': event.percent})

            await task
            snapshot = self.registry.snapshot(job.id)
            finished = True

            if snapshot and snapshot['status'] == STATUS_DONE:
                yield sse_event('done', {'id': job.id, 'filename': snapshot['filename']})
            else:
                error = (snapshot or {}).get('error') or 'Download failed'
                yield sse_event('fail', {'error': error})
                await self.discard(job.id)
        finally:
            if not finished:
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
                await self.discard(job.id)


class PullAdapter(_JobAdapter):
    """Background jobs with snapshot polling and one-shot artifact retrieval."""

    def __init__(self, registry):
        super().__init__(registry)
        self._tasks = {}

    async def start(self, url, choice=None, format_id=None):
        """
        Start a job in the background.

        Returns:
            str: Job id

        Raises:
            InvalidRequest: If url is missing
            ToolNotFound: If yt-dlp cannot be resolved
        """
        _require_url(url)
        tool = await sync_to_async(resolve_tool, thread_sensitive=False)()
        job = await self.create_job(url, choice, format_id)

        task = asyncio.create_task(run_job(self.registry, job.id, tool=tool))
        self._tasks[job.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(job.id, None))
        return job.id

    async def wait(self, job_id):
        """Wait for a background job to finish and return its snapshot."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)
        return self.registry.snapshot(job_id)

    def status(self, job_id):
        """Snapshot of a job, or None if unknown."""
        if not job_id:
            return None
        return self.registry.snapshot(job_id)

    def open_artifact(self, job_id):
        """
        Claim the finished file of a job for delivery.

        Only the first caller gets the path; the job is removed once that
        delivery ends (see stream_artifact).

        Returns:
            Path or None if the job is unknown, not done or already claimed
        """
        if not job_id:
            return None
        return self.registry.claim_artifact(job_id)

    async def stream_artifact(self, job_id, file_path):
        """
        Yield the artifact's bytes, then remove the job and its files.

        Cleanup happens however the stream ends.
        """
        try:
            with open(file_path, 'rb') as f:
                read = sync_to_async(f.read, thread_sensitive=False)
                while True:
                    chunk = await read(FILE_CHUNK_SIZE)
                    if not chunk:
                        break
                    yield chunk
        finally:
            await self.discard(job_id)

    async def download(self, url, choice=None, format_id=None):
        """
        Run a job to completion in collect mode (whole-file download path).

        Returns:
            tuple: (job_id, snapshot)
        """
        job = await self.create_job(url, choice, format_id)
        try:
            await run_job_collect(self.registry, job.id)
        except asyncio.CancelledError:
            await self.discard(job.id)
            raise
        snapshot = self.registry.snapshot(job.id)
        if snapshot['status'] != STATUS_DONE:
            await self.discard(job.id)
        return job.id, snapshot
