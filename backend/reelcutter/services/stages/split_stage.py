"""
Split stage: cut the merged media into fixed-length segments.
"""

import logging
import os
import shutil
from pathlib import Path
from typing import Any

from reelcutter.models.schemas import PipelineStage, Segment
from reelcutter.services.media import MediaToolkit
from reelcutter.services.pipeline.progress_aggregator import ProgressAggregator
from reelcutter.services.process import ProcessError
from reelcutter.services.stages.base import BaseStage, StageContext, StageError
from reelcutter.services.store import segment_filename
from reelcutter.utils.media_utils import plan_segments

logger = logging.getLogger(__name__)


class SplitStage(BaseStage):
    """Probe the merged duration and cut it into segments.

    Segments are written into a fresh staging directory that replaces
    segments/ only when every cut succeeded. The segment list is
    regenerated on every run and stale captioned outputs are removed.
    Progress is the fraction of segments fully written.
    """

    name = PipelineStage.SPLIT
    depends_on = [PipelineStage.MERGE]

    def __init__(
        self,
        media: MediaToolkit,
        segment_length: float = 60.0,
        aggregator: ProgressAggregator | None = None,
    ):
        self.media = media
        self.segment_length = segment_length
        self.aggregator = aggregator or ProgressAggregator()

    def required_artifacts(self, context: StageContext) -> list[Path]:
        return [context.paths.merged_path]

    async def execute(self, context: StageContext) -> dict[str, Any]:
        paths = context.paths

        try:
            total_duration = await self.media.probe_duration(paths.merged_path)
        except ProcessError as e:
            raise StageError(self.name.value, f"Cannot read merged duration: {e.message}", e) from e

        plan = plan_segments(total_duration, self.segment_length)
        if not plan:
            raise StageError(self.name.value, f"Merged media is empty ({total_duration:.2f}s)")

        count = len(plan)
        context.update_if_current(self.name, current_segment=0, total_segments=count)
        logger.info(f"Splitting project {context.project_id}: {total_duration:.2f}s into {count} segments")

        staging_dir = paths.root / f"segments.{context.process_id[:8]}.partial"
        if staging_dir.exists():
            shutil.rmtree(staging_dir)
        staging_dir.mkdir(parents=True)

        segments: list[Segment] = []
        try:
            for piece in plan:
                await self.media.cut_segment(
                    paths.merged_path,
                    staging_dir / segment_filename(piece.index),
                    piece.start,
                    piece.duration,
                )
                segments.append(
                    Segment(
                        id=piece.index,
                        filename=segment_filename(piece.index),
                        start_time=piece.start,
                        duration=piece.duration,
                    )
                )
                context.update_if_current(self.name, current_segment=piece.index)
                await context.report(self.aggregator.split_progress(piece.index, count))
                logger.debug(f"Segment {piece.index}/{count} written")
        except ProcessError as e:
            shutil.rmtree(staging_dir, ignore_errors=True)
            raise StageError(self.name.value, f"Segment {len(segments) + 1}: {e.message}", e) from e
        except BaseException:
            shutil.rmtree(staging_dir, ignore_errors=True)
            raise

        # Swap the new segment set in
        if paths.segments_dir.exists():
            shutil.rmtree(paths.segments_dir)
        os.replace(staging_dir, paths.segments_dir)
        if paths.captions_dir.exists():
            shutil.rmtree(paths.captions_dir)
        context.store.save_segments(context.project_id, segments)

        return {
            "total_duration": total_duration,
            "segment_count": count,
            "current_segment": count,
            "total_segments": count,
        }
