"""Shared fixtures: temp project store and fake media collaborators."""

from pathlib import Path

import pytest

from reelcutter.models.schemas import CaptionToken, PipelineStage
from reelcutter.services.job_manager import JobManager
from reelcutter.services.pipeline.controller import PipelineController
from reelcutter.services.process import ProcessFailedError
from reelcutter.services.stages import CaptionStage, DownloadStage, MergeStage, SplitStage
from reelcutter.services.store import ProjectStore


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def store(tmp_path: Path) -> ProjectStore:
    return ProjectStore(tmp_path / "projects")


class FakeDownloader:
    """Writes a placeholder file per track and records the requested windows."""

    def __init__(self, fail_kind: str | None = None):
        self.calls: list[dict] = []
        self.fail_kind = fail_kind

    async def download(self, url, output_path, kind, start=0.0, end=None, on_progress=None):
        self.calls.append({"url": url, "kind": kind.value, "start": start, "end": end})
        if kind.value == self.fail_kind:
            raise ProcessFailedError("yt-dlp", 1, "ERROR: Unsupported URL")
        if on_progress:
            await on_progress(50)
            await on_progress(100)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_bytes(b"media")
        return output_path


class FakeMedia:
    """Media toolkit stand-in: durations are looked up by file name."""

    def __init__(self, durations: dict[str, float] | None = None, fail_burn: set[int] | None = None):
        self.durations = durations or {}
        self.fail_burn = fail_burn or set()
        self.cuts: list[tuple[float, float]] = []
        self.merges: list[float] = []
        self.overlays: list[str] = []

    async def probe_duration(self, media_path: Path, on_progress=None) -> float:
        if on_progress:
            await on_progress(50)
            await on_progress(100)
        return self.durations.get(media_path.name, 60.0)

    async def merge(self, video_path, audio_path, output_path, duration, on_progress=None):
        self.merges.append(duration)
        if on_progress:
            await on_progress(100)
        output_path.write_bytes(b"merged")
        self.durations[output_path.name] = duration
        return output_path

    async def cut_segment(self, source_path, output_path, start, duration, on_progress=None):
        self.cuts.append((start, duration))
        output_path.write_bytes(b"segment")
        return output_path

    async def extract_audio(self, video_path, output_path, on_progress=None):
        output_path.write_bytes(b"wav")
        return output_path

    async def burn_subtitles(self, video_path, subtitle_path, output_path, duration=None, on_progress=None):
        segment_id = int(video_path.stem.rsplit("_", 1)[1])
        if segment_id in self.fail_burn:
            raise ProcessFailedError("ffmpeg", 1, "Invalid data found when processing input")
        if on_progress:
            await on_progress(100)
        output_path.write_bytes(b"burned")
        return output_path

    async def draw_overlay(self, video_path, output_path, video_filter, duration=None, on_progress=None):
        self.overlays.append(video_filter)
        output_path.write_bytes(b"captioned")
        return output_path


class FakeTranscriber:
    """Returns fixed tokens; fails for the configured segment ids."""

    def __init__(self, fail_segments: set[int] | None = None):
        self.fail_segments = fail_segments or set()

    async def transcribe(self, audio_path, output_dir, on_progress=None):
        segment_id = int(audio_path.stem.rsplit("_", 1)[1])
        if segment_id in self.fail_segments:
            raise ProcessFailedError("whisper", 1, "RuntimeError: failed to load audio")
        if on_progress:
            await on_progress(100)
        return [
            CaptionToken(start=0.0, end=0.4, text="hello"),
            CaptionToken(start=0.5, end=0.9, text="world"),
        ]


class FakeTitles:
    async def generate(self, transcript: str) -> str | None:
        return "Hello World"


@pytest.fixture
def fake_media() -> FakeMedia:
    return FakeMedia({"video.mp4": 90.0, "audio.m4a": 83.0})


@pytest.fixture
def fake_downloader() -> FakeDownloader:
    return FakeDownloader()


@pytest.fixture
def fake_transcriber() -> FakeTranscriber:
    return FakeTranscriber()


@pytest.fixture
def controller(
    store: ProjectStore,
    fake_media: FakeMedia,
    fake_downloader: FakeDownloader,
    fake_transcriber: FakeTranscriber,
) -> PipelineController:
    stages = {
        PipelineStage.DOWNLOAD: DownloadStage(fake_downloader, fake_media),
        PipelineStage.MERGE: MergeStage(fake_media),
        PipelineStage.SPLIT: SplitStage(fake_media, segment_length=60.0),
        PipelineStage.CAPTION: CaptionStage(fake_media, fake_transcriber, FakeTitles()),
    }
    return PipelineController(store, stages, JobManager(caption_concurrency=2), progress_interval=0.01)
