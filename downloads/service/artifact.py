"""
Artifact resolution.

yt-dlp picks the output extension at run time, so after a job exits we look
for files carrying the job's filename stem and pick the most likely final one.
"""

from pathlib import Path

from downloads.service.constants import ARTIFACT_PREFERENCE, ARTIFACT_PREFIX


def artifact_rank(path):
    """Sort key: preferred containers first, unknown extensions last."""
    ext = Path(path).suffix.lower().lstrip('.')
    if ext in ARTIFACT_PREFERENCE:
        return ARTIFACT_PREFERENCE.index(ext)
    return len(ARTIFACT_PREFERENCE)


def find_candidates(directory, job_id):
    """
    List files in `directory` whose name starts with the job's stem.

    Args:
        directory: Directory yt-dlp wrote into
        job_id: Job identifier

    Returns:
        list[Path]: Matching files, sorted by name
    """
    directory = Path(directory)
    if not directory.is_dir():
        return []

    prefix = f'{ARTIFACT_PREFIX}{job_id}.'
    return sorted(
        (entry for entry in directory.iterdir() if entry.name.startswith(prefix) and entry.is_file()),
        key=lambda entry: entry.name,
    )


def find_artifact(directory, job_id):
    """
    Find the output file yt-dlp produced for a job.

    When several candidates exist (partial .part files, separate video and
    audio streams before a merge, leftovers) the container preference ranking
    decides. Files with unranked extensions are only returned when nothing
    better exists.

    Args:
        directory: Directory yt-dlp wrote into
        job_id: Job identifier

    Returns:
        Path or None
    """
    candidates = find_candidates(directory, job_id)
    if not candidates:
        return None
    # sorted() is stable, so ties keep name order
    return sorted(candidates, key=artifact_rank)[0]
