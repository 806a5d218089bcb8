"""
External process adapter.

Example:
    from reelcutter.services.process import ProcessRunner, FfmpegProgressParser

    runner = ProcessRunner(locator, progress_interval=1.0)
    await runner.run("ffmpeg", args, parser=FfmpegProgressParser(60), on_progress=cb)
"""

from .errors import (
    OutputMissingError,
    ProcessError,
    ProcessFailedError,
    ProcessTimeoutError,
    ToolNotFoundError,
)
from .parsers import (
    DurationEvent,
    DurationProbeParser,
    FfmpegProgressParser,
    OutputParser,
    ProgressEvent,
    WhisperProgressParser,
    YtDlpProgressParser,
)
from .runner import ProcessResult, ProcessRunner, ProgressCallback, ProgressThrottle

__all__ = [
    # Errors
    "ProcessError",
    "ToolNotFoundError",
    "ProcessFailedError",
    "OutputMissingError",
    "ProcessTimeoutError",
    # Parsers
    "OutputParser",
    "ProgressEvent",
    "DurationEvent",
    "DurationProbeParser",
    "FfmpegProgressParser",
    "WhisperProgressParser",
    "YtDlpProgressParser",
    # Runner
    "ProcessRunner",
    "ProcessResult",
    "ProgressCallback",
    "ProgressThrottle",
]
