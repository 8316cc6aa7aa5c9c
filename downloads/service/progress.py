"""
Progress extraction from yt-dlp output.

yt-dlp reports progress as free text such as

    [download]  12.3% of 45.67MiB at 2.10MiB/s ETA 00:13

and rewrites that line in place with carriage returns. This module turns raw
output chunks into events. Input: bytes or str chunks in arrival order.
Output: ProgressEvent / ErrorEvent in line order. Chunk boundaries need not
align with line boundaries.
"""

import codecs
import re
from dataclasses import dataclass

PROGRESS_RE = re.compile(r'\[download\]\s+(\d{1,3}\.\d|\d{1,3})%')
ERROR_RE = re.compile(r'ERROR:', re.IGNORECASE)
LINE_BREAK_RE = re.compile(r'\r\n|\r|\n')


@dataclass(frozen=True)
class ProgressEvent:
    percent: float


@dataclass(frozen=True)
class ErrorEvent:
    message: str


def clamp_percent(value):
    """Clamp a parsed percentage into [0, 100]."""
    return max(0.0, min(100.0, float(value)))


def parse_line(line):
    """
    Parse a single output line.

    Args:
        line: One line of yt-dlp output, without line terminator

    Returns:
        list: Zero or more events (a line can carry both progress and error text)
    """
    events = []
    match = PROGRESS_RE.search(line)
    if match:
        events.append(ProgressEvent(clamp_percent(match.group(1))))
    if ERROR_RE.search(line):
        events.append(ErrorEvent(line.strip()))
    return events


def parse_lines(lines):
    """Parse several lines, keeping line order."""
    events = []
    for line in lines:
        events.extend(parse_line(line))
    return events


class ProgressExtractor:
    """Incremental line splitter and parser for one output stream"""

    def __init__(self, encoding='utf-8'):
        # Multi-byte characters may straddle chunk boundaries
        self._decoder = codecs.getincrementaldecoder(encoding)(errors='replace')
        self._pending = ''

    def lines(self, chunk):
        """
        Consume a chunk of output and return the lines it completed.

        A trailing partial line is kept until the next chunk or remainder().

        Args:
            chunk: bytes or str

        Returns:
            list[str]: Completed lines, without terminators
        """
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        if not chunk:
            return []

        text = self._pending + chunk
        # A lone '\r' at the end may be the first half of '\r\n'
        hold_cr = text.endswith('\r')
        if hold_cr:
            text = text[:-1]

        parts = LINE_BREAK_RE.split(text)
        self._pending = parts.pop() + ('\r' if hold_cr else '')
        return parts

    def remainder(self):
        """Return whatever partial line is left over at end of stream."""
        text = self._pending + self._decoder.decode(b'', final=True)
        self._pending = ''
        line = text.rstrip('\r')
        return [line] if line else []

    def feed(self, chunk):
        """
        Consume a chunk of output.

        Args:
            chunk: bytes or str

        Returns:
            list: Events for every line completed by this chunk
        """
        return parse_lines(self.lines(chunk))

    def flush(self):
        """Parse the partial line left over at end of stream."""
        return parse_lines(self.remainder())
