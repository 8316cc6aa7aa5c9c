"""
Error taxonomy for download jobs.

Every failure a job can end with maps to one of these classes. The class name
is recorded on the job as its error kind so clients can tell a transcoding
failure apart from a missing artifact.
"""


class DownloadError(Exception):
    """Base class for all job-level failures."""

    @property
    def kind(self):
        return type(self).__name__


class ToolNotFound(DownloadError):
    """No working yt-dlp invocation could be discovered."""

    def __init__(self, message=None):
        super().__init__(
            message or 'yt-dlp not found. Install yt-dlp or set YTDLP_PATH to the executable.'
        )


class SpawnFailed(DownloadError):
    """yt-dlp was resolved earlier but could not be launched this time."""

    pass


class ProcessExitNonZero(DownloadError):
    """yt-dlp ran but exited with a failure code."""

    def __init__(self, returncode, stderr=''):
        self.returncode = returncode
        self.stderr = stderr or ''
        detail = self.stderr.strip()
        super().__init__(detail or f'yt-dlp exited with code {returncode}')


class ArtifactNotFound(DownloadError):
    """yt-dlp exited cleanly but no output file matched the job."""

    def __init__(self, message='Download finished but file not found'):
        super().__init__(message)


class InvalidRequest(DownloadError):
    """A required request parameter is missing or malformed."""

    pass
