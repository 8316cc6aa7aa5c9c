"""
Shared constants for yt-dlp jobs.

Centralized definitions of the choice vocabulary and output naming.
"""

# Every job's output file is named <prefix><job id>.<ext>
ARTIFACT_PREFIX = 'ezsave-'

# Container preference when yt-dlp leaves several files behind.
# Muxed video containers first, then audio.
ARTIFACT_PREFERENCE = ['mp4', 'mkv', 'webm', 'mp3', 'm4a', 'aac', 'opus']

# Resolution tiers offered as choices, by maximum height.
RESOLUTION_CHOICES = {
    '144p': 144,
    '240p': 240,
    '360p': 360,
    '480p': 480,
    '720p': 720,
    '1080p': 1080,
    '1440p': 1440,
    '2160p': 2160,
}

# Audio-only choices and the codec yt-dlp extracts to
AUDIO_CHOICES = {
    'audio-mp3': 'mp3',
    'audio-aac': 'aac',
    'audio-m4a': 'm4a',
}

DEFAULT_CHOICE = 'best'

# Above this height the merge container switches from mp4 to mkv
MP4_MAX_MERGE_HEIGHT = 1080

# Name of the per-job log file inside the working directory
JOB_LOG_NAME = 'download.log'

# Working directories are named <prefix><job id>
WORK_DIR_PREFIX = 'tmp-'
