"""
Caption stage: six-phase sub-pipeline for one segment.

Phases and their slot in the segment's 0-100 progress:
    extract_audio  0-5    ffmpeg -> 16 kHz mono WAV
    transcribe     5-45   whisper -> word tokens
    assemble      45-50   line packing -> SRT + ASS
    burn          50-80   ffmpeg ass filter
    overlay       80-95   optional generated title + drawtext boxes
    cleanup       95-100  remove intermediates (best-effort)
"""

import logging
import shutil
from pathlib import Path
from typing import Any

from reelcutter.models.schemas import PipelineStage
from reelcutter.services.media import MediaToolkit
from reelcutter.services.pipeline.progress_aggregator import (
    CAPTION_PHASES,
    ProgressAggregator,
)
from reelcutter.services.process import ProcessError
from reelcutter.services.stages.base import BaseStage, StageContext, StageError
from reelcutter.services.store import captioned_filename
from reelcutter.services.subtitles import (
    build_ass,
    build_overlay_filter,
    build_srt,
    pack_caption_lines,
)
from reelcutter.services.title_generator import TitleGenerator
from reelcutter.services.transcriber import WhisperCliTranscriber, transcript_text

logger = logging.getLogger(__name__)


class CaptionStage(BaseStage):
    """Caption one segment and burn in the title overlay.

    Works on context.segment_id only. Failures raise StageError and are
    recorded on that segment alone by the controller.
    """

    name = PipelineStage.CAPTION
    depends_on = [PipelineStage.SPLIT]

    def __init__(
        self,
        media: MediaToolkit,
        transcriber: WhisperCliTranscriber,
        title_generator: TitleGenerator | None = None,
        caption_style: dict | None = None,
        overlay_style: dict | None = None,
        aggregator: ProgressAggregator | None = None,
    ):
        self.media = media
        self.transcriber = transcriber
        self.title_generator = title_generator
        self.caption_style = caption_style or {}
        self.overlay_style = overlay_style or {}
        self.aggregator = aggregator or ProgressAggregator()

    def required_artifacts(self, context: StageContext) -> list[Path]:
        return [context.paths.segments_file, context.paths.segment_path(context.segment_id)]

    def _phase_callback(self, context: StageContext, phase: str):
        async def on_progress(percent: float) -> None:
            await self._report(context, self.aggregator.phase_progress(CAPTION_PHASES, phase, percent))
        return on_progress

    async def _report(self, context: StageContext, percent: float) -> None:
        context.store.set_segment_progress(
            context.project_id, context.segment_id, context.process_id, percent
        )
        await context.report(percent)

    async def execute(self, context: StageContext) -> dict[str, Any]:
        paths = context.paths
        segment_id = context.segment_id
        if segment_id is None:
            raise StageError(self.name.value, "No segment selected")

        segment = context.store.get_segment(context.project_id, segment_id)
        if segment is None:
            raise StageError(self.name.value, f"Segment {segment_id} not found")

        source_path = paths.segment_path(segment_id)
        work_dir = paths.temp_dir / f"caption_{segment_id}_{context.process_id[:8]}"
        work_dir.mkdir(parents=True, exist_ok=True)
        paths.captions_dir.mkdir(parents=True, exist_ok=True)

        audio_path = work_dir / f"audio_{segment_id}.wav"
        ass_path = work_dir / f"segment_{segment_id}.ass"
        burned_path = work_dir / f"burned_{segment_id}.mp4"
        srt_path = paths.srt_path(segment_id)
        output_path = paths.captioned_path(segment_id)

        label = f"project {context.project_id} segment {segment_id}"

        try:
            # ─── extract audio ───
            await self.media.extract_audio(
                source_path, audio_path,
                on_progress=self._phase_callback(context, "extract_audio"),
            )
            await self._report(context, CAPTION_PHASES["extract_audio"].end)

            # ─── speech-to-text ───
            tokens = await self.transcriber.transcribe(
                audio_path, work_dir,
                on_progress=self._phase_callback(context, "transcribe"),
            )
            await self._report(context, CAPTION_PHASES["transcribe"].end)

            # ─── subtitle assembly ───
            lines = pack_caption_lines(
                tokens,
                max_words=self.caption_style.get("max_line_words", 5),
                max_chars=self.caption_style.get("max_line_chars", 20),
            )
            srt_path.write_text(build_srt(lines), encoding="utf-8")
            ass_path.write_text(build_ass(lines, self.caption_style), encoding="utf-8")
            logger.debug(f"{label}: {len(tokens)} tokens -> {len(lines)} lines")
            await self._report(context, CAPTION_PHASES["assemble"].end)

            # ─── caption burn-in ───
            await self.media.burn_subtitles(
                source_path, ass_path, burned_path,
                duration=segment.duration,
                on_progress=self._phase_callback(context, "burn"),
            )
            await self._report(context, CAPTION_PHASES["burn"].end)

            # ─── title / subtitle overlay ───
            subtitle = await self._generate_title(transcript_text(tokens), label)

            video_filter = build_overlay_filter(
                segment_id, subtitle, context.project.title_color, self.overlay_style
            )
            await self.media.draw_overlay(
                burned_path, output_path, video_filter,
                duration=segment.duration,
                on_progress=self._phase_callback(context, "overlay"),
            )
            await self._report(context, CAPTION_PHASES["overlay"].end)

        except ProcessError as e:
            raise StageError(self.name.value, e.message, e) from e
        except OSError as e:
            raise StageError(self.name.value, f"File error: {e}", e) from e

        # ─── cleanup ───
        self._cleanup(work_dir, srt_path, label)
        await self._report(context, CAPTION_PHASES["cleanup"].end)

        logger.info(f"Captioned {label} -> {output_path.name}")
        return {
            "captioned_filename": captioned_filename(segment_id),
            "subtitle": subtitle,
        }

    async def _generate_title(self, transcript: str, label: str) -> str | None:
        """Overlay title, or None when generation fails for any reason."""
        if self.title_generator is None:
            return None
        try:
            return await self.title_generator.generate(transcript)
        except Exception as e:
            logger.warning(f"Title generation failed for {label}: {e!r}")
            return None

    def _cleanup(self, work_dir: Path, srt_path: Path, label: str) -> None:
        """Remove intermediates; errors are logged only."""
        try:
            shutil.rmtree(work_dir)
            srt_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Cleanup failed for {label}: {e}")
