"""
yt-dlp discovery.

Finds a command form that runs yt-dlp on this machine and caches it for the
rest of the process lifetime.
"""

import subprocess
import sys
import threading
from dataclasses import dataclass, field
from typing import List, Optional

from downloads.service.config import get_tool_probe_timeout, get_ytdlp_path
from downloads.service.errors import ToolNotFound


@dataclass(frozen=True)
class ToolInvocation:
    """A working way to run yt-dlp: command plus any fixed leading arguments"""

    command: str
    prefix: List[str] = field(default_factory=list)
    version: Optional[str] = None

    def argv(self, args):
        """Full argument vector for running yt-dlp with `args`."""
        return [self.command, *self.prefix, *args]

    @property
    def cmd(self):
        """Command prefix without job arguments, kept for diagnostics."""
        return [self.command, *self.prefix]


_cached_tool = None
_cache_lock = threading.Lock()


def candidate_invocations(configured_path=None, platform=None):
    """
    List yt-dlp invocations to try, in order.

    Args:
        configured_path: Explicit executable path (YTDLP_PATH), tried first
        platform: Platform name, defaults to sys.platform

    Returns:
        list[ToolInvocation]
    """
    platform = platform or sys.platform
    is_windows = platform.startswith('win')

    candidates = []
    if configured_path:
        candidates.append(ToolInvocation(configured_path))
    candidates.append(ToolInvocation('yt-dlp'))
    if is_windows:
        candidates.append(ToolInvocation('yt-dlp.exe'))

    # Module form, for installs that only put the package on sys.path
    interpreters = [sys.executable] if sys.executable else []
    interpreters.append('python')
    if is_windows:
        interpreters.append('py')
    for interpreter in interpreters:
        candidates.append(ToolInvocation(interpreter, ['-m', 'yt_dlp']))

    return candidates


def probe(candidate, timeout=None):
    """
    Check whether a candidate invocation runs.

    Args:
        candidate: ToolInvocation to try
        timeout: Seconds to wait for `--version`

    Returns:
        str or None: Reported version, or None if the candidate does not work
    """
    if timeout is None:
        timeout = get_tool_probe_timeout()
    try:
        result = subprocess.run(
            candidate.argv(['--version']),
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (OSError, subprocess.SubprocessError):
        return None
    if result.returncode != 0:
        return None
    return result.stdout.strip() or 'unknown'


def resolve_tool(logger=None):
    """
    Resolve how to run yt-dlp, probing candidates on first use.

    The first working candidate is cached for the lifetime of the process.
    Failures are not cached, so installing yt-dlp later takes effect on the
    next call.

    Args:
        logger: Optional callable(str) for logging

    Returns:
        ToolInvocation

    Raises:
        ToolNotFound: If no candidate works
    """
    global _cached_tool

    def log(message):
        if logger:
            logger(message)

    if _cached_tool is not None:
        return _cached_tool

    with _cache_lock:
        if _cached_tool is not None:
            return _cached_tool

        for candidate in candidate_invocations(get_ytdlp_path()):
            version = probe(candidate)
            if version is None:
                log(f'yt-dlp candidate failed: {" ".join(candidate.cmd)}')
                continue
            _cached_tool = ToolInvocation(candidate.command, list(candidate.prefix), version)
            log(f'Using yt-dlp {version}: {" ".join(_cached_tool.cmd)}')
            return _cached_tool

    raise ToolNotFound()


def get_cached_tool():
    """Return the cached invocation without probing, or None."""
    return _cached_tool


def reset_tool_cache():
    """Forget the cached invocation (used by tests)."""
    global _cached_tool
    with _cache_lock:
        _cached_tool = None
