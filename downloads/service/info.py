"""
Metadata lookup for a URL via `yt-dlp -J`.

Normalizes the (very large) yt-dlp info dict down to the fields a client needs
to offer a quality choice.
"""

import json

from downloads.service.errors import DownloadError
from downloads.service.process import run_collect


def _pick_thumbnail(info):
    if info.get('thumbnail'):
        return info['thumbnail']
    thumbnails = info.get('thumbnails') or []
    if thumbnails:
        return thumbnails[-1].get('url')
    return None


def normalize_format(fmt):
    """Reduce a yt-dlp format dict to the fields exposed by the API."""
    return {
        'format_id': fmt.get('format_id'),
        'ext': fmt.get('ext'),
        'format_note': fmt.get('format_note'),
        'vcodec': fmt.get('vcodec'),
        'acodec': fmt.get('acodec'),
        'height': fmt.get('height'),
        'fps': fmt.get('fps'),
        'filesize': fmt.get('filesize') or fmt.get('filesize_approx') or None,
    }


def normalize_info(info):
    """
    Normalize a yt-dlp info dict.

    Args:
        info: Parsed `yt-dlp -J` output

    Returns:
        dict with id, title, uploader, thumbnail, duration and formats
    """
    return {
        'id': info.get('id'),
        'title': info.get('title'),
        'uploader': info.get('uploader') or info.get('channel') or None,
        'thumbnail': _pick_thumbnail(info),
        'duration': info.get('duration'),
        'formats': [normalize_format(fmt) for fmt in info.get('formats') or []],
    }


async def fetch_info(tool, url, logger=None):
    """
    Fetch and normalize metadata for a URL without downloading it.

    Args:
        tool: ToolInvocation from resolve_tool()
        url: Source URL
        logger: Optional callable(str) for logging

    Returns:
        dict: See normalize_info()

    Raises:
        DownloadError: If yt-dlp cannot produce metadata
    """

    def log(message):
        if logger:
            logger(message)

    log(f'Fetching info: {url}')
    result = await run_collect(tool, ['-J', '--no-warnings', url])

    try:
        info = json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise DownloadError(f'Invalid yt-dlp JSON output: {e}') from e

    return normalize_info(info)
