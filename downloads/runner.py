"""
Job execution.

Drives one job from pending to a terminal state: resolves yt-dlp, spawns it
with the built arguments, feeds its output through the progress extractor into
the registry, and resolves the artifact on exit. Each job runs in its own
coroutine, so jobs never wait on each other.
"""

import asyncio

from asgiref.sync import sync_to_async

from downloads.service.artifact import find_artifact
from downloads.service.errors import (
    ArtifactNotFound,
    DownloadError,
    ProcessExitNonZero,
)
from downloads.service.formats import build_command_args
from downloads.service.process import run_collect, spawn
from downloads.service.progress import (
    ErrorEvent,
    ProgressEvent,
    ProgressExtractor,
    parse_lines,
)
from downloads.service.tool import resolve_tool
from downloads.utils import write_log

# Lines of output kept for error details when yt-dlp prints no ERROR: line
OUTPUT_TAIL_LINES = 20


def _job_logger(job):
    def log(message):
        write_log(job.log_path, message)

    return log


async def _resolve(registry, job, tool):
    """Return the tool to use, or fail the job and return None."""
    if tool is not None:
        return tool
    try:
        return await sync_to_async(resolve_tool, thread_sensitive=False)(logger=_job_logger(job))
    except DownloadError as e:
        registry.mark_failed(job.id, e, e.kind)
        return None


def _finish(registry, job, returncode, error_lines, output_tail):
    """Map an exit code and the job directory to done or failed."""
    log = _job_logger(job)
    log(f'yt-dlp exited with code {returncode}')

    if returncode == 0:
        file_path = find_artifact(job.working_directory, job.id)
        if file_path is None:
            error = ArtifactNotFound()
            registry.mark_failed(job.id, error, error.kind)
        else:
            registry.mark_done(job.id, file_path)
        return

    detail = '\n'.join(error_lines) or '\n'.join(output_tail)
    error = ProcessExitNonZero(returncode, detail)
    registry.mark_failed(job.id, error, error.kind)


async def run_job(registry, job_id, tool=None, events=None):
    """
    Run a job in streaming mode until it reaches a terminal state.

    Args:
        registry: JobRegistry holding the job
        job_id: Id of a pending job
        tool: ToolInvocation, resolved here when None
        events: Optional asyncio.Queue receiving ProgressEvent / ErrorEvent in
            output line order, followed by None once the job is terminal

    Cancelling the coroutine kills the child and marks the job cancelled.
    """

    def emit(event):
        if events is not None:
            events.put_nowait(event)

    job = registry.get(job_id)
    if job is None:
        emit(None)
        return

    log = _job_logger(job)
    handle = None
    try:
        tool = await _resolve(registry, job, tool)
        if tool is None:
            return

        args = build_command_args(job.url, job.choice, job.format_id, job.output_template)
        log(f'Running: {" ".join(tool.argv(args))}')
        try:
            handle = await spawn(tool, args, cwd=job.working_directory)
        except DownloadError as e:
            registry.mark_failed(job.id, e, e.kind)
            return

        if not registry.mark_running(job.id, handle, cmd=tool.cmd):
            # Cancelled or removed while spawning
            handle.kill()
            await handle.wait()
            return

        extractors = {'stdout': ProgressExtractor(), 'stderr': ProgressExtractor()}
        error_lines = []
        output_tail = []

        def handle_lines(lines):
            output_tail.extend(line for line in lines if line.strip())
            del output_tail[:-OUTPUT_TAIL_LINES]
            for event in parse_lines(lines):
                _record(registry, job, event, error_lines)
                emit(event)

        try:
            async for stream_name, chunk in handle.stream():
                handle_lines(extractors[stream_name].lines(chunk))
            for extractor in extractors.values():
                handle_lines(extractor.remainder())
        except Exception as e:
            handle.kill()
            await handle.wait()
            log(f'Output handling failed: {type(e).__name__}: {e}')
            registry.mark_failed(job.id, f'Output handling failed: {e}', type(e).__name__)
            return

        returncode = await handle.wait()
        if handle.killed:
            registry.mark_cancelled(job.id)
            return
        _finish(registry, job, returncode, error_lines, output_tail)

    except asyncio.CancelledError:
        if handle is not None:
            handle.kill()
            await handle.wait()
        registry.mark_cancelled(job.id)
        raise
    finally:
        emit(None)


def _record(registry, job, event, error_lines):
    if isinstance(event, ProgressEvent):
        registry.set_progress(job.id, event.percent)
    elif isinstance(event, ErrorEvent):
        error_lines.append(event.message)
        write_log(job.log_path, event.message)


async def run_job_collect(registry, job_id, tool=None):
    """
    Run a job in collect mode: no live progress, output buffered until exit.

    Used by the whole-file download endpoint and anywhere progress is not
    needed. Cancelling the coroutine kills the child.
    """
    job = registry.get(job_id)
    if job is None:
        return

    log = _job_logger(job)
    tool = await _resolve(registry, job, tool)
    if tool is None:
        return

    args = build_command_args(job.url, job.choice, job.format_id, job.output_template)
    log(f'Running: {" ".join(tool.argv(args))}')

    def attach(handle):
        if not registry.mark_running(job.id, handle, cmd=tool.cmd):
            # Cancelled or removed while spawning
            handle.kill()

    try:
        await run_collect(tool, args, cwd=job.working_directory, on_spawn=attach)
    except ProcessExitNonZero as e:
        log(e.stderr)
        registry.mark_failed(job.id, e, e.kind)
        return
    except DownloadError as e:
        registry.mark_failed(job.id, e, e.kind)
        return
    except asyncio.CancelledError:
        registry.mark_cancelled(job.id)
        raise

    _finish(registry, job, 0, [], [])
