"""
Pipeline module for media processing.

This package contains:
- controller: Project state machine and stage launching
- progress_aggregator: Phase weights and the progress view
- errors: Errors returned synchronously to callers

Example:
    from reelcutter.services.pipeline.controller import PipelineController

    controller = PipelineController.from_settings(settings)
    process_id = await controller.start_split(project_id)
"""

from .errors import ProjectBusyError, ProjectNotFoundError, SegmentNotFoundError
from .progress_aggregator import (
    CAPTION_PHASES,
    MERGE_PHASES,
    Phase,
    ProgressAggregator,
    child_key,
)

__all__ = [
    "ProjectBusyError",
    "ProjectNotFoundError",
    "SegmentNotFoundError",
    "CAPTION_PHASES",
    "MERGE_PHASES",
    "Phase",
    "ProgressAggregator",
    "child_key",
]
