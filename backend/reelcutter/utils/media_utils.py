"""
Media utilities for trim ranges and segment planning.

Provides common functions for media timing:
- Time string parsing ("HH:MM:SS.ms" -> seconds)
- Effective trim window for the visual track
- Segment plan for the split stage
"""

import logging
import math
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# Tolerance for float durations reported by ffprobe (e.g. 120.0000001)
DURATION_EPSILON = 1e-3


@dataclass(frozen=True)
class SegmentSlice:
    """Start offset and clipped duration of one segment."""

    index: int  # 1-based
    start: float
    duration: float


def parse_time_to_seconds(value: str) -> float:
    """Parse a time string to seconds.

    Accepts "SS", "SS.ms", "MM:SS" and "HH:MM:SS(.ms)".

    Args:
        value: Time string

    Returns:
        Seconds as float

    Raises:
        ValueError: If the string is not a valid time
    """
    text = value.strip()
    if not text:
        return 0.0

    parts = text.split(":")
    if len(parts) > 3:
        raise ValueError(f"Invalid time value: {value!r}")

    seconds = 0.0
    for part in parts:
        if not part:
            raise ValueError(f"Invalid time value: {value!r}")
        seconds = seconds * 60 + float(part)

    if seconds < 0:
        raise ValueError(f"Negative time value: {value!r}")
    return seconds


def effective_video_end(
    start_time: float,
    end_time: float,
    audio_start_time: float,
    audio_end_time: float,
) -> float | None:
    """Compute where the visual track download should stop.

    An explicit end wins. Without one, an audio trim window fixes the
    visual window to the same length, starting at the visual start.

    Args:
        start_time: Visual start offset (seconds, 0 = unset)
        end_time: Visual end offset (seconds, 0 = unset)
        audio_start_time: Audio start offset
        audio_end_time: Audio end offset

    Returns:
        End offset in seconds, or None for "until the end"
    """
    if end_time > 0:
        return end_time
    if audio_end_time > 0:
        return audio_end_time - audio_start_time + start_time
    return None


def plan_segments(total_duration: float, segment_length: float) -> list[SegmentSlice]:
    """Slice a duration into fixed-length segments.

    The last segment takes the remainder and may be shorter.

    Example:
        >>> [s.duration for s in plan_segments(125, 60)]
        [60, 60, 5]

    Args:
        total_duration: Total media duration in seconds
        segment_length: Target segment length in seconds

    Returns:
        Ordered list of slices with dense 1-based indexes

    Raises:
        ValueError: If segment_length is not positive
    """
    if segment_length <= 0:
        raise ValueError(f"segment_length must be positive, got {segment_length}")
    if total_duration <= DURATION_EPSILON:
        return []

    count = math.ceil((total_duration - DURATION_EPSILON) / segment_length)
    slices: list[SegmentSlice] = []
    for i in range(count):
        start = i * segment_length
        duration = min(segment_length, total_duration - start)
        slices.append(SegmentSlice(index=i + 1, start=start, duration=duration))

    logger.debug(
        f"Planned {count} segments of {segment_length}s for {total_duration:.2f}s"
    )
    return slices


def format_timestamp(seconds: float) -> str:
    """Format seconds as HH:MM:SS.mmm for ffmpeg arguments."""
    millis = int(round(max(seconds, 0.0) * 1000))
    hours, millis = divmod(millis, 3_600_000)
    minutes, millis = divmod(millis, 60_000)
    secs, millis = divmod(millis, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}.{millis:03d}"
