"""
Service layer for yt-dlp download jobs.

These modules know nothing about HTTP requests or the job registry. They are
used by:
- The delivery adapters behind the web API (downloads/adapters.py)
- The CLI management command (management/commands/fetch.py)
"""
