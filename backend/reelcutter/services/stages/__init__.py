"""
Pipeline stages for media processing.

Each stage is a self-contained unit run by the PipelineController:

    download -> merge -> split -> caption (per segment)

Usage:
    from reelcutter.services.stages import SplitStage, StageContext

    stage = SplitStage(media, segment_length=60)
    stage.check_preconditions(context)   # raises PreconditionError
    fields = await stage.execute(context)
"""

from .base import (
    BaseStage,
    PreconditionError,
    StageContext,
    StageError,
    run_all_or_cancel,
)
from .caption_stage import CaptionStage
from .download_stage import DownloadStage
from .merge_stage import MergeStage
from .split_stage import SplitStage

__all__ = [
    # Base classes
    "BaseStage",
    "StageContext",
    "StageError",
    "PreconditionError",
    "run_all_or_cancel",
    # Stages
    "DownloadStage",
    "MergeStage",
    "SplitStage",
    "CaptionStage",
]
