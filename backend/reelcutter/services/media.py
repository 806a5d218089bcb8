"""
Media toolchain wrapper (ffmpeg / ffprobe).

Every transform writes to a "*.partial.<ext>" sibling and renames it
into place only after the tool succeeds, so a failed or cancelled run
never leaves a truncated artifact at the final path.
"""

import logging
import os
from pathlib import Path

from reelcutter.services.process import (
    DurationProbeParser,
    FfmpegProgressParser,
    ProcessError,
    ProcessRunner,
    ProgressCallback,
)
from reelcutter.utils.media_utils import format_timestamp

logger = logging.getLogger(__name__)


def partial_path(path: Path) -> Path:
    """processed.mp4 -> processed.partial.mp4"""
    return path.with_name(f"{path.stem}.partial{path.suffix}")


def escape_filter_path(path: Path) -> str:
    """Escape a file path for use inside an ffmpeg filter argument."""
    text = str(path)
    for char in ("\\", ":", "'", ",", ";", "[", "]"):
        text = text.replace(char, "\\" + char)
    return text


class MediaToolkit:
    """
    ffmpeg/ffprobe operations used by the pipeline stages.

    Example:
        media = MediaToolkit(runner, load_encoding_config(settings))
        duration = await media.probe_duration(Path("audio.m4a"))
        await media.merge(video, audio, output, duration, on_progress=cb)
    """

    def __init__(
        self,
        runner: ProcessRunner,
        encoding: dict | None = None,
        probe_timeout: float | None = 60.0,
    ):
        """
        Initialize toolkit.

        Args:
            runner: Process runner
            encoding: Parsed encoding.yaml (missing keys use defaults)
            probe_timeout: Timeout for ffprobe calls
        """
        self.runner = runner
        self.encoding = encoding or {}
        self.probe_timeout = probe_timeout

    def _section(self, name: str) -> dict:
        return self.encoding.get(name) or {}

    async def probe_duration(
        self,
        media_path: Path,
        on_progress: ProgressCallback | None = None,
    ) -> float:
        """
        Get media duration using ffprobe.

        Args:
            media_path: Path to media file
            on_progress: Reports 50 while running, 100 on success

        Returns:
            Duration in seconds

        Raises:
            ProcessError: If ffprobe fails or prints no usable duration
        """
        result = await self.runner.run(
            "ffprobe",
            [
                "-v", "error",
                "-show_entries", "format=duration",
                "-of", "default=noprint_wrappers=1:nokey=1",
                str(media_path),
            ],
            parser=DurationProbeParser(),
            on_progress=on_progress,
            timeout=self.probe_timeout,
            capture_stdout=True,
        )

        for line in result.stdout.splitlines():
            try:
                duration = float(line.strip())
            except ValueError:
                continue
            if duration > 0:
                logger.debug(f"Duration of {media_path.name}: {duration:.2f}s")
                return duration

        raise ProcessError("ffprobe", f"No duration reported for {media_path.name}")

    async def merge(
        self,
        video_path: Path,
        audio_path: Path,
        output_path: Path,
        duration: float,
        on_progress: ProgressCallback | None = None,
    ) -> Path:
        """
        Combine the visual track with the audio track.

        Output is truncated to the audio duration and scaled/cropped to
        a vertical frame.
        """
        cfg = self._section("merge")
        width = cfg.get("width", 720)
        height = cfg.get("height", 1280)
        tmp_path = partial_path(output_path)

        await self.runner.run(
            "ffmpeg",
            [
                "-i", str(video_path),
                "-i", str(audio_path),
                "-map", "0:v:0",
                "-map", "1:a:0",
                "-shortest",
                "-t", f"{duration:.3f}",
                "-c:v", cfg.get("video_codec", "libx264"),
                "-c:a", cfg.get("audio_codec", "aac"),
                "-strict", "experimental",
                "-vf",
                f"scale={width}:{height}:force_original_aspect_ratio=increase,"
                f"crop={width}:{height}",
                "-movflags", "+faststart",
                "-y", str(tmp_path),
            ],
            parser=FfmpegProgressParser(target_duration=duration),
            on_progress=on_progress,
            outputs=[tmp_path],
        )
        os.replace(tmp_path, output_path)
        return output_path

    async def cut_segment(
        self,
        source_path: Path,
        output_path: Path,
        start: float,
        duration: float,
        on_progress: ProgressCallback | None = None,
    ) -> Path:
        """Re-encode one slice of the merged media."""
        cfg = self._section("split")
        tmp_path = partial_path(output_path)

        await self.runner.run(
            "ffmpeg",
            [
                "-ss", format_timestamp(start),
                "-i", str(source_path),
                "-t", f"{duration:.3f}",
                "-c:v", cfg.get("video_codec", "libx264"),
                "-preset", cfg.get("preset", "fast"),
                "-crf", str(cfg.get("crf", 22)),
                "-c:a", cfg.get("audio_codec", "aac"),
                "-b:a", cfg.get("audio_bitrate", "192k"),
                "-avoid_negative_ts", "1",
                "-reset_timestamps", "1",
                "-y", str(tmp_path),
            ],
            parser=FfmpegProgressParser(target_duration=duration),
            on_progress=on_progress,
            outputs=[tmp_path],
        )
        os.replace(tmp_path, output_path)
        return output_path

    async def extract_audio(
        self,
        video_path: Path,
        output_path: Path,
        on_progress: ProgressCallback | None = None,
    ) -> Path:
        """Extract 16 kHz mono PCM audio for speech-to-text."""
        tmp_path = partial_path(output_path)

        await self.runner.run(
            "ffmpeg",
            [
                "-i", str(video_path),
                "-vn",
                "-acodec", "pcm_s16le",
                "-ar", "16000",
                "-ac", "1",
                "-y", str(tmp_path),
            ],
            parser=FfmpegProgressParser(),
            on_progress=on_progress,
            outputs=[tmp_path],
        )
        os.replace(tmp_path, output_path)
        return output_path

    async def burn_subtitles(
        self,
        video_path: Path,
        subtitle_path: Path,
        output_path: Path,
        duration: float | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> Path:
        """Render an ASS subtitle track into the video frames."""
        cfg = self._section("captions")
        tmp_path = partial_path(output_path)

        await self.runner.run(
            "ffmpeg",
            [
                "-i", str(video_path),
                "-vf", f"ass={escape_filter_path(subtitle_path)}",
                "-c:v", "libx264",
                "-preset", cfg.get("preset", "fast"),
                "-crf", str(cfg.get("crf", 22)),
                "-c:a", "copy",
                "-y", str(tmp_path),
            ],
            parser=FfmpegProgressParser(target_duration=duration),
            on_progress=on_progress,
            outputs=[tmp_path],
        )
        os.replace(tmp_path, output_path)
        return output_path

    async def draw_overlay(
        self,
        video_path: Path,
        output_path: Path,
        video_filter: str,
        duration: float | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> Path:
        """Apply a drawtext filter chain (title / subtitle boxes)."""
        cfg = self._section("captions")
        tmp_path = partial_path(output_path)

        await self.runner.run(
            "ffmpeg",
            [
                "-i", str(video_path),
                "-vf", video_filter,
                "-c:v", "libx264",
                "-preset", cfg.get("preset", "fast"),
                "-crf", str(cfg.get("crf", 22)),
                "-c:a", "copy",
                "-y", str(tmp_path),
            ],
            parser=FfmpegProgressParser(target_duration=duration),
            on_progress=on_progress,
            outputs=[tmp_path],
        )
        os.replace(tmp_path, output_path)
        return output_path
