"""
Output parsing strategies for external tools.

Each parser turns one line of a tool's output into an event:
- ProgressEvent: completion percentage (0-100)
- DurationEvent: media duration discovered in the stream
- None: line carries nothing of interest

The runner feeds every stdout/stderr line (split on both \\r and \\n)
to the parser and forwards progress to its callback.
"""

import re
from dataclasses import dataclass

from reelcutter.utils.media_utils import parse_time_to_seconds


@dataclass(frozen=True)
class ProgressEvent:
    percent: float


@dataclass(frozen=True)
class DurationEvent:
    seconds: float


ParseEvent = ProgressEvent | DurationEvent


class OutputParser:
    """Base parsing strategy: ignores all output."""

    def on_start(self) -> ProgressEvent | None:
        """Event emitted right after the process is spawned."""
        return None

    def parse_line(self, raw: str) -> ParseEvent | None:
        return None


class DurationProbeParser(OutputParser):
    """ffprobe: reports a fixed midpoint while running."""

    MIDPOINT = 50.0

    def on_start(self) -> ProgressEvent | None:
        return ProgressEvent(self.MIDPOINT)


class FfmpegProgressParser(OutputParser):
    """
    ffmpeg: divides the elapsed "time=" token by the target duration.

    Without a known target, the first "Duration:" header of the input
    is used instead.

    Example:
        parser = FfmpegProgressParser(target_duration=83.0)
        parser.parse_line("frame=  100 ... time=00:00:41.50 bitrate=...")
        # ProgressEvent(percent=50.0)
    """

    TIME_PATTERN = re.compile(r"time=\s*(-?\d+:\d+:\d+(?:\.\d+)?)")
    DURATION_PATTERN = re.compile(r"Duration:\s*(\d+:\d+:\d+(?:\.\d+)?)")

    def __init__(self, target_duration: float | None = None):
        self.target_duration = target_duration

    def parse_line(self, raw: str) -> ParseEvent | None:
        if self.target_duration is None:
            match = self.DURATION_PATTERN.search(raw)
            if match:
                seconds = parse_time_to_seconds(match.group(1))
                if seconds > 0:
                    self.target_duration = seconds
                    return DurationEvent(seconds)
                return None

        match = self.TIME_PATTERN.search(raw)
        if not match or not self.target_duration:
            return None

        elapsed = match.group(1)
        if elapsed.startswith("-"):
            return ProgressEvent(0.0)
        percent = parse_time_to_seconds(elapsed) / self.target_duration * 100
        return ProgressEvent(min(percent, 100.0))


class WhisperProgressParser(OutputParser):
    """whisper CLI: literal "NN%" token from the tqdm progress bar."""

    PATTERN = re.compile(r"(\d{1,3})%")

    def parse_line(self, raw: str) -> ParseEvent | None:
        match = self.PATTERN.search(raw)
        if not match:
            return None
        return ProgressEvent(min(float(match.group(1)), 100.0))


class YtDlpProgressParser(OutputParser):
    """
    yt-dlp: "[download]  42.3% of ..." lines.

    Section downloads are framed differently ("[download] 42.3%" from the
    native downloader, or ffmpeg-style output for --download-sections),
    so the pattern only requires a bracketed "download" tag.
    """

    PATTERN = re.compile(r"\[download[^\]]*\]\s+(\d+(?:\.\d+)?)%")

    def parse_line(self, raw: str) -> ParseEvent | None:
        match = self.PATTERN.search(raw)
        if not match:
            return None
        return ProgressEvent(min(float(match.group(1)), 100.0))
