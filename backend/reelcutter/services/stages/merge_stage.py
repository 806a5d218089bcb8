"""
Merge stage: combine the visual track with the audio track.
"""

import logging
from pathlib import Path
from typing import Any

from reelcutter.models.schemas import PipelineStage
from reelcutter.services.media import MediaToolkit
from reelcutter.services.pipeline.progress_aggregator import (
    MERGE_PHASES,
    ProgressAggregator,
    child_key,
)
from reelcutter.services.process import ProcessError
from reelcutter.services.stages.base import BaseStage, StageContext, StageError

logger = logging.getLogger(__name__)

# Allowed drift between audio duration and merged output
DURATION_TOLERANCE = 1.0


class MergeStage(BaseStage):
    """Probe the audio duration, then encode video+audio truncated to it.

    The merged output is probed again before the stage completes so a
    file ffprobe cannot read never counts as a merge result.
    """

    name = PipelineStage.MERGE
    depends_on = [PipelineStage.DOWNLOAD]

    def __init__(self, media: MediaToolkit, aggregator: ProgressAggregator | None = None):
        self.media = media
        self.aggregator = aggregator or ProgressAggregator()

    def required_artifacts(self, context: StageContext) -> list[Path]:
        return [context.paths.video_path, context.paths.audio_path]

    async def execute(self, context: StageContext) -> dict[str, Any]:
        paths = context.paths
        duration_key = child_key(context.process_id, "duration")

        async def on_duration(percent: float) -> None:
            await context.report(percent, duration_key)
            await context.report(
                self.aggregator.phase_progress(MERGE_PHASES, "duration", percent)
            )

        async def on_encode(percent: float) -> None:
            await context.report(
                self.aggregator.phase_progress(MERGE_PHASES, "encode", percent)
            )

        await context.report(0, duration_key)

        try:
            audio_duration = await self.media.probe_duration(paths.audio_path, on_progress=on_duration)
        except ProcessError as e:
            raise StageError(self.name.value, f"Cannot read audio duration: {e.message}", e) from e

        await context.report(MERGE_PHASES["encode"].start)
        paths.merge_dir.mkdir(parents=True, exist_ok=True)

        logger.info(f"Merging project {context.project_id} to {audio_duration:.2f}s")

        try:
            await self.media.merge(
                paths.video_path,
                paths.audio_path,
                paths.merged_path,
                audio_duration,
                on_progress=on_encode,
            )
            merged_duration = await self.media.probe_duration(paths.merged_path)
        except ProcessError as e:
            raise StageError(self.name.value, e.message, e) from e

        if abs(merged_duration - audio_duration) > DURATION_TOLERANCE:
            logger.warning(
                f"Merged duration {merged_duration:.2f}s differs from audio "
                f"{audio_duration:.2f}s for project {context.project_id}"
            )

        return {
            "audio_duration": audio_duration,
            "total_duration": merged_duration,
        }
