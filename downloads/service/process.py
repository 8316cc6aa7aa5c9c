"""
yt-dlp process supervision.

Launches yt-dlp as a child process (never through a shell, so URL and format
id content cannot be interpreted as shell syntax) and exposes its output in
two modes:
- streaming: output chunks as they arrive, for live progress
- collect: everything buffered until exit, for one-shot calls
"""

import asyncio
import os
import signal
from dataclasses import dataclass

from downloads.service.errors import ProcessExitNonZero, SpawnFailed

CHUNK_SIZE = 4096

# Each child gets its own process group on POSIX so kill() reaches helpers it starts
USE_PROCESS_GROUP = os.name == 'posix'


@dataclass
class CollectedOutput:
    """Buffered output of a finished yt-dlp run"""

    stdout: str
    stderr: str
    returncode: int


class ProcessHandle:
    """A running yt-dlp child process"""

    def __init__(self, process, argv):
        self._process = process
        self.argv = argv
        self.killed = False

    @property
    def pid(self):
        return self._process.pid

    @property
    def returncode(self):
        return self._process.returncode

    async def stream(self, chunk_size=CHUNK_SIZE):
        """
        Yield (stream_name, chunk) pairs until both pipes close.

        stdout and stderr are drained concurrently so neither pipe can fill up
        and stall the child. Chunks of one stream keep their order.
        """
        queue = asyncio.Queue()

        async def pump(name, reader):
            try:
                while True:
                    chunk = await reader.read(chunk_size)
                    if not chunk:
                        break
                    queue.put_nowait((name, chunk))
            finally:
                queue.put_nowait((name, None))

        tasks = [
            asyncio.create_task(pump('stdout', self._process.stdout)),
            asyncio.create_task(pump('stderr', self._process.stderr)),
        ]
        open_streams = len(tasks)
        try:
            while open_streams:
                name, chunk = await queue.get()
                if chunk is None:
                    open_streams -= 1
                    continue
                yield name, chunk
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            results = await asyncio.gather(*tasks, return_exceptions=True)

        for result in results:
            if isinstance(result, Exception):
                raise result

    async def wait(self):
        """Wait for exit and return the exit code."""
        return await self._process.wait()

    def kill(self):
        """Forcefully terminate the child. Safe to call more than once or after exit."""
        if self._process.returncode is not None:
            return
        self.killed = True
        try:
            if USE_PROCESS_GROUP:
                # yt-dlp may have ffmpeg children; take the whole group down
                os.killpg(self._process.pid, signal.SIGKILL)
            else:
                self._process.kill()
        except ProcessLookupError:
            pass

    async def communicate(self):
        """Wait for exit, returning all of stdout and stderr as bytes."""
        return await self._process.communicate()


async def spawn(tool, args, cwd=None):
    """
    Start yt-dlp with piped output.

    Args:
        tool: ToolInvocation from resolve_tool()
        args: yt-dlp arguments (options and URL)
        cwd: Working directory for the child

    Returns:
        ProcessHandle

    Raises:
        SpawnFailed: If the process could not be started
    """
    argv = tool.argv(args)
    try:
        process = await asyncio.create_subprocess_exec(
            *argv,
            cwd=str(cwd) if cwd else None,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=USE_PROCESS_GROUP,
        )
    except OSError as e:
        raise SpawnFailed(f'Spawn failed (yt-dlp not found?): {e}') from e
    return ProcessHandle(process, argv)


async def run_collect(tool, args, cwd=None, on_spawn=None):
    """
    Run yt-dlp to completion and return its buffered output.

    The child is killed if the awaiting task is cancelled.

    Args:
        tool: ToolInvocation from resolve_tool()
        args: yt-dlp arguments (options and URL)
        cwd: Working directory for the child
        on_spawn: Optional callable(ProcessHandle), called once the child runs

    Raises:
        SpawnFailed: If the process could not be started
        ProcessExitNonZero: If yt-dlp exits with a non-zero code
    """
    handle = await spawn(tool, args, cwd=cwd)
    if on_spawn is not None:
        on_spawn(handle)
    try:
        stdout, stderr = await handle.communicate()
    except asyncio.CancelledError:
        handle.kill()
        raise

    result = CollectedOutput(
        stdout=stdout.decode('utf-8', errors='replace'),
        stderr=stderr.decode('utf-8', errors='replace'),
        returncode=handle.returncode,
    )
    if result.returncode != 0:
        raise ProcessExitNonZero(result.returncode, result.stderr)
    return result
