"""
Configuration adapter for download jobs.

Centralizes access to Django settings so the service layer, the web adapters
and the CLI all read the same values.
"""

from pathlib import Path

from django.conf import settings


def get_ytdlp_path():
    """
    Get the explicitly configured yt-dlp executable, if any.

    Returns:
        str: Path from YTDLP_PATH, or '' when unset
    """
    return settings.EZSAVE_YTDLP_PATH or ''


def get_tool_probe_timeout():
    """Seconds allowed for a `yt-dlp --version` probe."""
    return settings.EZSAVE_TOOL_PROBE_TIMEOUT


def get_work_dir():
    """
    Get the base directory holding per-job working directories.

    The directory is created if missing.

    Returns:
        Path: Base working directory
    """
    work_dir = Path(settings.EZSAVE_WORK_DIR)
    work_dir.mkdir(parents=True, exist_ok=True)
    return work_dir


def get_reap_seconds():
    """Age in seconds after which uncollected finished jobs are removed."""
    return settings.EZSAVE_JOB_REAP_SECONDS


def get_heartbeat_seconds():
    """Interval between SSE keepalive comments."""
    return settings.EZSAVE_SSE_HEARTBEAT_SECONDS


def get_sse_retry_ms():
    """Reconnect delay suggested to SSE clients, in milliseconds."""
    return settings.EZSAVE_SSE_RETRY_MS
