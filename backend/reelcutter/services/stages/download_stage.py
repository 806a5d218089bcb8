"""
Download stage: fetch the visual and audio tracks concurrently.
"""

import logging
from typing import Any

from reelcutter.models.schemas import PipelineStage
from reelcutter.services.downloader import TrackKind, YtDlpDownloader
from reelcutter.services.media import MediaToolkit
from reelcutter.services.pipeline.progress_aggregator import ProgressAggregator, child_key
from reelcutter.services.process import ProcessError
from reelcutter.services.stages.base import BaseStage, StageContext, StageError, run_all_or_cancel
from reelcutter.utils.media_utils import effective_video_end

logger = logging.getLogger(__name__)


class DownloadStage(BaseStage):
    """Download both source tracks, then probe their durations.

    Both downloads must succeed; the first failure cancels the sibling
    and fails the stage. Files already completed stay on disk.

    The audio track is the timing reference: without an explicit visual
    end, an audio trim window limits the visual track to the same length.
    """

    name = PipelineStage.DOWNLOAD
    depends_on: list[PipelineStage] = []

    def __init__(
        self,
        downloader: YtDlpDownloader,
        media: MediaToolkit,
        aggregator: ProgressAggregator | None = None,
    ):
        self.downloader = downloader
        self.media = media
        self.aggregator = aggregator or ProgressAggregator()

    async def execute(self, context: StageContext) -> dict[str, Any]:
        project = context.project
        paths = context.paths
        pid = context.process_id

        video_end = effective_video_end(
            project.start_time,
            project.end_time,
            project.audio_start_time,
            project.audio_end_time,
        )
        audio_end = project.audio_end_time if project.audio_end_time > 0 else None

        children: dict[str, float] = {"video": 0.0, "audio": 0.0}

        def track_progress(tag: str):
            async def on_progress(percent: float) -> None:
                children[tag] = percent
                await context.report(percent, child_key(pid, tag))
                await context.report(self.aggregator.weighted(children, self.name))
            return on_progress

        for tag in children:
            await context.report(0, child_key(pid, tag))

        logger.info(
            f"Downloading project {project.id}: video [{project.start_time}-{video_end or 'end'}], "
            f"audio [{project.audio_start_time}-{audio_end or 'end'}]"
        )

        try:
            await run_all_or_cancel([
                self.downloader.download(
                    project.video_url,
                    paths.video_path,
                    TrackKind.VIDEO,
                    start=project.start_time,
                    end=video_end,
                    on_progress=track_progress("video"),
                ),
                self.downloader.download(
                    project.audio_url,
                    paths.audio_path,
                    TrackKind.AUDIO,
                    start=project.audio_start_time,
                    end=audio_end,
                    on_progress=track_progress("audio"),
                ),
            ])
        except ProcessError as e:
            raise StageError(self.name.value, e.message, e) from e

        try:
            video_duration = await self.media.probe_duration(paths.video_path)
            audio_duration = await self.media.probe_duration(paths.audio_path)
        except ProcessError as e:
            raise StageError(self.name.value, f"Cannot read downloaded media: {e.message}", e) from e

        logger.info(
            f"Downloaded project {project.id}: video {video_duration:.2f}s, "
            f"audio {audio_duration:.2f}s"
        )

        return {
            "video_duration": video_duration,
            "audio_duration": audio_duration,
            "total_duration": audio_duration,
        }
