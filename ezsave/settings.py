"""
Django settings for the ezsave project.

Everything that an operator may want to change is read from the environment,
so the same settings module serves development, tests and deployments.
"""

import os
import tempfile
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent


def _env_bool(name, default=False):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


SECRET_KEY = os.environ.get('DJANGO_SECRET_KEY', 'ezsave-insecure-development-key')

DEBUG = _env_bool('DJANGO_DEBUG', default=True)

ALLOWED_HOSTS = [
    host.strip()
    for host in os.environ.get('DJANGO_ALLOWED_HOSTS', 'localhost,127.0.0.1,testserver').split(',')
    if host.strip()
]

INSTALLED_APPS = [
    'django.contrib.staticfiles',
    'downloads',
]

MIDDLEWARE = [
    'django.middleware.security.SecurityMiddleware',
    'django.middleware.common.CommonMiddleware',
]

ROOT_URLCONF = 'ezsave.urls'

TEMPLATES = []

ASGI_APPLICATION = 'ezsave.asgi.application'

# The job registry lives in memory; there is no database.
DATABASES = {}

LANGUAGE_CODE = 'en-us'
TIME_ZONE = 'UTC'
USE_I18N = False
USE_TZ = True

STATIC_URL = 'static/'

DEFAULT_AUTO_FIELD = 'django.db.models.BigAutoField'

# EZSave configuration

# Explicit path to the yt-dlp executable. Tried before anything on PATH.
EZSAVE_YTDLP_PATH = os.environ.get('YTDLP_PATH', '')

# Seconds to wait for `yt-dlp --version` when probing a candidate.
EZSAVE_TOOL_PROBE_TIMEOUT = float(os.environ.get('EZSAVE_TOOL_PROBE_TIMEOUT', '10'))

# Base directory for per-job tmp-<id>/ working directories. Defaults to the
# system temp dir so the OS can clean up after a crash.
EZSAVE_WORK_DIR = os.environ.get('EZSAVE_WORK_DIR', os.path.join(tempfile.gettempdir(), 'ezsave'))

# Finished jobs nobody collected are removed after this many seconds.
EZSAVE_JOB_REAP_SECONDS = int(os.environ.get('EZSAVE_JOB_REAP_SECONDS', '3600'))

# Interval between SSE keepalive comments.
EZSAVE_SSE_HEARTBEAT_SECONDS = float(os.environ.get('EZSAVE_SSE_HEARTBEAT_SECONDS', '10'))

# Suggested client reconnect delay sent in the SSE retry field (milliseconds).
EZSAVE_SSE_RETRY_MS = int(os.environ.get('EZSAVE_SSE_RETRY_MS', '10000'))

# Host/port for `manage.py serve`.
EZSAVE_HOST = os.environ.get('EZSAVE_HOST', '127.0.0.1')
EZSAVE_PORT = int(os.environ.get('EZSAVE_PORT', os.environ.get('PORT', '3000')))

# Keep-alive for idle HTTP connections in uvicorn.
EZSAVE_KEEP_ALIVE_SECONDS = int(os.environ.get('EZSAVE_KEEP_ALIVE_SECONDS', '75'))
