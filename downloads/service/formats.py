"""
yt-dlp argument building.

Maps a requested choice ('best', '720p', 'audio-mp3', ...) or an explicit
format id to yt-dlp command-line options. Pure functions, no I/O.
"""

import os

from downloads.service.constants import (
    ARTIFACT_PREFIX,
    AUDIO_CHOICES,
    DEFAULT_CHOICE,
    MP4_MAX_MERGE_HEIGHT,
    RESOLUTION_CHOICES,
)

BEST_SELECTOR = 'bestvideo[ext=mp4]+bestaudio[ext=m4a]/best[ext=mp4]/best'

CHOICES = [DEFAULT_CHOICE, *RESOLUTION_CHOICES, *AUDIO_CHOICES]


def selector_for_height(height):
    """Format selector capped at `height`, preferring mp4/m4a streams."""
    return (
        f'bestvideo[height<={height}][ext=mp4]+bestaudio[ext=m4a]'
        f'/best[height<={height}][ext=mp4]'
        f'/bestvideo[height<={height}]+bestaudio'
        f'/best[height<={height}]'
    )


def merge_container_for_height(height):
    """
    Pick the merge container for a resolution.

    Very high resolutions often come as VP9/AV1 + Opus, which mp4 merges can
    drop audio from, so those go to mkv.
    """
    return 'mkv' if height > MP4_MAX_MERGE_HEIGHT else 'mp4'


def output_template_for(directory, job_id):
    """
    Output template for a job: the id as filename stem, extension left to yt-dlp.

    Args:
        directory: Job working directory
        job_id: Job identifier

    Returns:
        str: e.g. '/tmp/ezsave/tmp-abc/ezsave-abc.%(ext)s'
    """
    return os.path.join(str(directory), f'{ARTIFACT_PREFIX}{job_id}.%(ext)s')


def build_args(choice, format_id, output_template):
    """
    Build yt-dlp options for a choice or explicit format id.

    Args:
        choice: One of CHOICES, or None. Unknown values behave like 'best'.
        format_id: yt-dlp format id; overrides choice when given
        output_template: Value for -o

    Returns:
        list[str]: Options, without the URL
    """
    args = ['-o', output_template, '--no-playlist']

    if format_id:
        args.extend(['-f', format_id])
        return args

    if choice in RESOLUTION_CHOICES:
        height = RESOLUTION_CHOICES[choice]
        args.extend(['-f', selector_for_height(height)])
        args.extend(['--merge-output-format', merge_container_for_height(height)])
    elif choice in AUDIO_CHOICES:
        args.extend(['-x', '--audio-format', AUDIO_CHOICES[choice]])
    else:
        args.extend(['-f', BEST_SELECTOR])
        args.extend(['--merge-output-format', merge_container_for_height(MP4_MAX_MERGE_HEIGHT)])

    return args


def build_command_args(url, choice, format_id, output_template):
    """Options from build_args followed by the source URL."""
    return build_args(choice, format_id, output_template) + [url]
