"""
Shared utilities for the media pipeline.

Modules:
    media_utils: Time parsing, trim windows and segment planning
    color_utils: Overlay color helpers
"""

from reelcutter.utils.color_utils import ffmpeg_color, hsl_to_hex, random_title_color
from reelcutter.utils.media_utils import (
    SegmentSlice,
    effective_video_end,
    format_timestamp,
    parse_time_to_seconds,
    plan_segments,
)

__all__ = [
    # media_utils
    "SegmentSlice",
    "effective_video_end",
    "format_timestamp",
    "parse_time_to_seconds",
    "plan_segments",
    # color_utils
    "ffmpeg_color",
    "hsl_to_hex",
    "random_title_color",
]
