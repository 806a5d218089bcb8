"""
Source clip downloads via yt-dlp.
"""

import logging
import os
from enum import Enum
from pathlib import Path

from reelcutter.services.media import partial_path
from reelcutter.services.process import ProcessRunner, ProgressCallback, YtDlpProgressParser

logger = logging.getLogger(__name__)


class TrackKind(str, Enum):
    """Which stream of the source to fetch."""
    VIDEO = "video"
    AUDIO = "audio"


FORMAT_SELECTORS = {
    TrackKind.VIDEO: "bestvideo[ext=mp4]/bestvideo",
    TrackKind.AUDIO: "bestaudio[ext=m4a]/bestaudio",
}


def download_section(start: float, end: float | None) -> str | None:
    """
    Build a --download-sections value for a trim window.

    Returns:
        "*start-end", "*start-inf", or None when no trimming is needed
    """
    if start <= 0 and end is None:
        return None
    end_text = "inf" if end is None else f"{end:g}"
    return f"*{max(start, 0.0):g}-{end_text}"


class YtDlpDownloader:
    """
    Downloads one track of a remote clip with optional trimming.

    Example:
        downloader = YtDlpDownloader(runner)
        await downloader.download(url, Path("source/video.mp4"), TrackKind.VIDEO,
                                  start=0, end=83, on_progress=cb)
    """

    def __init__(self, runner: ProcessRunner, timeout: float | None = None):
        self.runner = runner
        self.timeout = timeout

    async def download(
        self,
        url: str,
        output_path: Path,
        kind: TrackKind,
        start: float = 0.0,
        end: float | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> Path:
        """
        Download one track to output_path.

        Args:
            url: Source location
            output_path: Final file path
            kind: Video-only or audio-only stream
            start: Trim start in seconds
            end: Trim end in seconds (None = until the end)
            on_progress: Progress callback (0-100)

        Returns:
            output_path

        Raises:
            ProcessError: If yt-dlp fails or writes nothing
        """
        output_path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = partial_path(output_path)

        args = [
            url,
            "-f", FORMAT_SELECTORS[kind],
            "-o", str(tmp_path),
            "--no-warnings",
            "--no-playlist",
            "--newline",
        ]

        section = download_section(start, end)
        if section:
            args.extend(["--download-sections", section, "--force-keyframes-at-cuts"])

        logger.info(f"Downloading {kind.value} track -> {output_path.name} (section: {section or 'full'})")

        await self.runner.run(
            "yt-dlp",
            args,
            parser=YtDlpProgressParser(),
            on_progress=on_progress,
            outputs=[tmp_path],
            timeout=self.timeout,
        )
        os.replace(tmp_path, output_path)

        size_mb = output_path.stat().st_size / 1024 / 1024
        logger.info(f"Downloaded {output_path.name} ({size_mb:.1f} MB)")
        return output_path
