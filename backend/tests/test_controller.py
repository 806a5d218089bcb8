"""
Tests for the pipeline controller state machine.

Stages run for real against fake media/download/transcription
collaborators that write placeholder files under tmp_path.
"""

import asyncio
import logging

import pytest

from reelcutter.models.schemas import (
    CaptioningStatus,
    CreateProjectRequest,
    PipelineStage,
    ProjectStatus,
)
from reelcutter.services.pipeline import ProjectNotFoundError, SegmentNotFoundError
from reelcutter.services.pipeline.controller import PipelineController
from reelcutter.services.pipeline.progress_aggregator import child_key
from reelcutter.services.stages import PreconditionError

pytestmark = pytest.mark.anyio


def new_project(controller: PipelineController, **offsets) -> str:
    request = CreateProjectRequest(
        video_url="https://example.com/video",
        audio_url="https://example.com/audio",
        **offsets,
    )
    return controller.create_project(request).id


async def run_until_segmented(controller: PipelineController, project_id: str) -> None:
    for start in (controller.start_download, controller.start_merge, controller.start_split):
        await start(project_id)
        await controller.jobs.join(f"{project_id}:")


class TestProjectLifecycle:
    def test_create_initializes_layout(self, controller: PipelineController) -> None:
        project_id = new_project(controller)

        project = controller.get_project(project_id)
        paths = controller.store.paths(project_id)
        assert project.status == ProjectStatus.INITIALIZED
        assert paths.source_dir.is_dir()
        assert paths.temp_dir.is_dir()
        assert project.title_color.startswith("#")

    def test_unknown_project(self, controller: PipelineController) -> None:
        with pytest.raises(ProjectNotFoundError):
            controller.get_status("missing")

    async def test_full_pipeline_trims_to_audio(self, controller: PipelineController, fake_media) -> None:
        """video=90s, audio=83s: the merged clip follows the audio duration."""
        project_id = new_project(controller)

        await run_until_segmented(controller, project_id)

        project = controller.get_project(project_id)
        assert project.status == ProjectStatus.SEGMENTED
        assert project.video_duration == 90.0
        assert project.audio_duration == 83.0
        assert fake_media.merges == [83.0]
        assert project.total_duration == 83.0
        assert project.segment_count == 2
        assert [s.duration for s in controller.get_segments(project_id)] == [60.0, 23.0]
        for stage in (PipelineStage.DOWNLOAD, PipelineStage.MERGE, PipelineStage.SPLIT):
            assert project.progress[getattr(project, stage.process_field)] == 100
            assert getattr(project, stage.completed_field) is not None

    async def test_audio_window_limits_video_download(self, controller: PipelineController, fake_downloader) -> None:
        project_id = new_project(controller, audio_start_time=7, audio_end_time=90)

        await controller.start_download(project_id)
        await controller.jobs.join(f"{project_id}:")

        by_kind = {call["kind"]: call for call in fake_downloader.calls}
        assert by_kind["video"]["end"] == 83
        assert by_kind["audio"]["start"] == 7
        assert by_kind["audio"]["end"] == 90

    async def test_download_children_reach_100(self, controller: PipelineController) -> None:
        project_id = new_project(controller)
        process_id = await controller.start_download(project_id)
        await controller.jobs.join(f"{project_id}:")

        progress = controller.get_project(project_id).progress
        assert progress[child_key(process_id, "video")] == 100
        assert progress[child_key(process_id, "audio")] == 100
        assert progress[process_id] == 100

    async def test_download_failure_recorded(self, controller: PipelineController, fake_downloader) -> None:
        fake_downloader.fail_kind = "audio"
        project_id = new_project(controller)

        await controller.start_download(project_id)
        await controller.jobs.join(f"{project_id}:")

        project = controller.get_project(project_id)
        assert project.status == ProjectStatus.DOWNLOAD_ERROR
        assert project.error.startswith("[download] yt-dlp exited with code 1")


class TestPreconditions:
    async def test_merge_requires_downloads(self, controller: PipelineController) -> None:
        project_id = new_project(controller)

        with pytest.raises(PreconditionError) as exc_info:
            await controller.start_merge(project_id)

        assert "source/video.mp4" in exc_info.value.missing
        project = controller.get_project(project_id)
        assert project.status == ProjectStatus.INITIALIZED
        assert project.merge_process_id is None

    async def test_split_checks_artifact_not_status(self, controller: PipelineController) -> None:
        project_id = new_project(controller)
        controller.store.set_status(project_id, ProjectStatus.MERGED)

        with pytest.raises(PreconditionError):
            await controller.start_split(project_id)
        assert controller.get_project(project_id).status == ProjectStatus.MERGED

    async def test_caption_requires_segment_list(self, controller: PipelineController) -> None:
        project_id = new_project(controller)
        with pytest.raises(PreconditionError):
            await controller.start_caption(project_id, 1)


class TestSplit:
    async def test_remainder_segment(self, controller: PipelineController, fake_media) -> None:
        fake_media.durations["audio.m4a"] = 125.0
        project_id = new_project(controller)

        await run_until_segmented(controller, project_id)

        segments = controller.get_segments(project_id)
        assert [s.id for s in segments] == [1, 2, 3]
        assert [s.duration for s in segments] == [60.0, 60.0, 5.0]
        assert sum(s.duration for s in segments) == pytest.approx(125.0)
        paths = controller.store.paths(project_id)
        assert all(paths.segment_path(s.id).exists() for s in segments)

    async def test_rerun_regenerates_segments(self, controller: PipelineController, fake_media) -> None:
        project_id = new_project(controller)
        await run_until_segmented(controller, project_id)
        await controller.start_caption(project_id, 1)
        await controller.jobs.join(f"{project_id}:")
        assert controller.get_segments(project_id)[0].captioning_status == CaptioningStatus.COMPLETED

        fake_media.durations["processed.mp4"] = 150.0
        await controller.start_split(project_id)
        await controller.jobs.join(f"{project_id}:")

        project = controller.get_project(project_id)
        segments = controller.get_segments(project_id)
        assert project.status == ProjectStatus.SEGMENTED
        assert project.segment_count == 3
        assert all(s.captioning_status == CaptioningStatus.PENDING for s in segments)
        assert not controller.store.paths(project_id).captioned_path(1).exists()
        assert not list(controller.store.paths(project_id).root.glob("segments.*.partial"))

    async def test_superseded_run_does_not_finalize(self, controller: PipelineController) -> None:
        project_id = new_project(controller)
        await run_until_segmented(controller, project_id)

        first = await controller.start_split(project_id)
        second = await controller.start_split(project_id)
        await controller.jobs.join(f"{project_id}:")

        project = controller.get_project(project_id)
        assert first != second
        assert project.split_process_id == second
        assert project.status == ProjectStatus.SEGMENTED

    async def test_resplit_stops_caption_workers(self, controller: PipelineController, fake_transcriber) -> None:
        project_id = new_project(controller)
        await run_until_segmented(controller, project_id)

        started = asyncio.Event()
        release = asyncio.Event()
        original = fake_transcriber.transcribe

        async def slow_transcribe(*args, **kwargs):
            started.set()
            await release.wait()
            return await original(*args, **kwargs)

        fake_transcriber.transcribe = slow_transcribe
        await controller.start_caption(project_id, 1)
        await asyncio.wait_for(started.wait(), timeout=5)

        await controller.start_split(project_id)

        assert controller.jobs.running_keys(f"{project_id}:{PipelineStage.CAPTION.value}") == []
        await controller.jobs.join(f"{project_id}:")
        release.set()

        project = controller.get_project(project_id)
        segment = controller.store.get_segment(project_id, 1)
        assert project.status == ProjectStatus.SEGMENTED
        assert segment.captioning_status == CaptioningStatus.PENDING
        assert segment.captioning_process_id is None
        assert not controller.store.paths(project_id).captioned_path(1).exists()


class FailingTitles:
    async def generate(self, transcript: str) -> str | None:
        raise TypeError("object of type 'NoneType' has no len()")


class EmptyTitles:
    async def generate(self, transcript: str) -> str | None:
        return None


class TestCaptioning:
    @pytest.mark.parametrize("titles", [FailingTitles(), EmptyTitles()], ids=["error", "empty"])
    async def test_title_problems_fall_back_to_part_title(
        self, controller: PipelineController, fake_media, titles
    ) -> None:
        controller.stages[PipelineStage.CAPTION].title_generator = titles
        project_id = new_project(controller)
        await run_until_segmented(controller, project_id)

        await controller.start_caption(project_id, 1)
        await controller.jobs.join(f"{project_id}:")

        segment = controller.store.get_segment(project_id, 1)
        assert segment.captioning_status == CaptioningStatus.COMPLETED
        assert segment.subtitle is None
        assert fake_media.overlays[-1].count("drawtext=") == 1
        assert "Part 1" in fake_media.overlays[-1]

    async def test_cleanup_error_only_logged(self, controller: PipelineController, monkeypatch, caplog) -> None:
        project_id = new_project(controller)
        await run_until_segmented(controller, project_id)

        def broken_rmtree(path, *args, **kwargs):
            raise OSError(f"Device or resource busy: {path}")

        monkeypatch.setattr("reelcutter.services.stages.caption_stage.shutil.rmtree", broken_rmtree)
        with caplog.at_level(logging.WARNING):
            await controller.start_caption(project_id, 1)
            await controller.jobs.join(f"{project_id}:")

        segment = controller.store.get_segment(project_id, 1)
        assert segment.captioning_status == CaptioningStatus.COMPLETED
        assert segment.captioning_error is None
        assert "Cleanup failed" in caplog.text

    async def test_single_segment(self, controller: PipelineController) -> None:
        project_id = new_project(controller)
        await run_until_segmented(controller, project_id)

        process_id = await controller.start_caption(project_id, 2)
        await controller.jobs.join(f"{project_id}:")

        segment = controller.store.get_segment(project_id, 2)
        project = controller.get_project(project_id)
        assert segment.captioning_status == CaptioningStatus.COMPLETED
        assert segment.captioning_progress == 100
        assert segment.subtitle == "Hello World"
        assert segment.captioned_filename == "captioned_segment_2.mp4"
        assert project.progress[process_id] == 100
        # segment 1 still pending
        assert project.status == ProjectStatus.SEGMENTED
        paths = controller.store.paths(project_id)
        assert paths.captioned_path(2).exists()
        assert not list(paths.temp_dir.glob("caption_2_*"))

    async def test_unknown_segment(self, controller: PipelineController) -> None:
        project_id = new_project(controller)
        await run_until_segmented(controller, project_id)

        with pytest.raises(SegmentNotFoundError):
            await controller.start_caption(project_id, 9)

    async def test_caption_all_completes_project(self, controller: PipelineController, fake_media) -> None:
        fake_media.durations["audio.m4a"] = 125.0
        project_id = new_project(controller)
        await run_until_segmented(controller, project_id)

        started = await controller.start_caption_all(project_id)
        await controller.jobs.join(f"{project_id}:")

        project = controller.get_project(project_id)
        summary = controller.captioning_summary(project_id)
        assert sorted(started) == [1, 2, 3]
        assert project.status == ProjectStatus.CAPTIONED
        assert project.caption_completed_at is not None
        assert summary.all_captioned is True
        assert summary.progress == 100
        assert project.progress[project.caption_process_id] == 100

    async def test_transcription_failure_isolated(self, controller: PipelineController, fake_media, fake_transcriber) -> None:
        fake_media.durations["audio.m4a"] = 125.0
        fake_transcriber.fail_segments = {2}
        project_id = new_project(controller)
        await run_until_segmented(controller, project_id)

        await controller.start_caption_all(project_id)
        await controller.jobs.join(f"{project_id}:")

        segments = {s.id: s for s in controller.get_segments(project_id)}
        project = controller.get_project(project_id)
        assert segments[2].captioning_status == CaptioningStatus.FAILED
        assert "whisper exited with code 1" in segments[2].captioning_error
        assert segments[1].captioning_status == CaptioningStatus.COMPLETED
        assert segments[3].captioning_status == CaptioningStatus.COMPLETED
        assert project.status == ProjectStatus.SEGMENTED
        assert project.error is None

        summary = controller.captioning_summary(project_id)
        assert summary.failed == [2]
        assert summary.all_captioned is False

    async def test_failed_segment_retry(self, controller: PipelineController, fake_media) -> None:
        fake_media.fail_burn = {1}
        project_id = new_project(controller)
        await run_until_segmented(controller, project_id)

        await controller.start_caption(project_id, 1)
        await controller.jobs.join(f"{project_id}:")
        assert controller.store.get_segment(project_id, 1).captioning_status == CaptioningStatus.FAILED

        fake_media.fail_burn = set()
        await controller.start_caption(project_id, 1)
        await controller.jobs.join(f"{project_id}:")

        segment = controller.store.get_segment(project_id, 1)
        assert segment.captioning_status == CaptioningStatus.COMPLETED
        assert segment.captioning_error is None

    async def test_caption_all_skips_completed(self, controller: PipelineController) -> None:
        project_id = new_project(controller)
        await run_until_segmented(controller, project_id)
        await controller.start_caption(project_id, 1)
        await controller.jobs.join(f"{project_id}:")

        started = await controller.start_caption_all(project_id)
        await controller.jobs.join(f"{project_id}:")

        assert list(started) == [2]
        assert controller.get_project(project_id).status == ProjectStatus.CAPTIONED


class TestProgressKeys:
    async def test_rerun_replaces_previous_entries(self, controller: PipelineController) -> None:
        project_id = new_project(controller)
        for _ in range(5):
            last = await controller.start_download(project_id)
            await controller.jobs.join(f"{project_id}:")

        progress = controller.get_project(project_id).progress
        assert set(progress) == {last, child_key(last, "video"), child_key(last, "audio")}

    async def test_caption_retry_replaces_segment_entry(self, controller: PipelineController) -> None:
        project_id = new_project(controller)
        await run_until_segmented(controller, project_id)

        first = await controller.start_caption(project_id, 1)
        await controller.jobs.join(f"{project_id}:")
        second = await controller.start_caption(project_id, 1)
        await controller.jobs.join(f"{project_id}:")

        progress = controller.get_project(project_id).progress
        assert first not in progress
        assert progress[second] == 100

    async def test_batches_and_resplit_drop_caption_entries(self, controller: PipelineController) -> None:
        project_id = new_project(controller)
        await run_until_segmented(controller, project_id)

        for _ in range(3):
            await controller.start_caption_all(project_id, include_completed=True)
            await controller.jobs.join(f"{project_id}:")

        project = controller.get_project(project_id)
        caption_keys = {s.captioning_process_id for s in controller.get_segments(project_id)}
        batch_keys = [key for key in project.progress if key.startswith("batch-")]
        assert batch_keys == [project.caption_process_id]
        assert len(project.progress) == 6 + len(caption_keys) + 1

        await controller.start_split(project_id)
        await controller.jobs.join(f"{project_id}:")

        resplit = controller.get_project(project_id)
        assert set(resplit.progress) == {
            resplit.download_process_id,
            child_key(resplit.download_process_id, "video"),
            child_key(resplit.download_process_id, "audio"),
            resplit.merge_process_id,
            child_key(resplit.merge_process_id, "duration"),
            resplit.split_process_id,
        }


class TestMaintenance:
    async def test_delete_segments(self, controller: PipelineController) -> None:
        project_id = new_project(controller)
        await run_until_segmented(controller, project_id)

        removed = await controller.delete_segments(project_id)

        project = controller.get_project(project_id)
        assert "segments.json" in removed
        assert project.status == ProjectStatus.SEGMENTS_DELETED
        assert project.segment_count == 0
        assert controller.get_segments(project_id) == []

    async def test_delete_project(self, controller: PipelineController) -> None:
        project_id = new_project(controller)
        await controller.delete_project(project_id)

        with pytest.raises(ProjectNotFoundError):
            controller.get_project(project_id)

    def test_cleanup_temp(self, controller: PipelineController) -> None:
        project_id = new_project(controller)
        temp_dir = controller.store.paths(project_id).temp_dir
        (temp_dir / "leftover.wav").write_bytes(b"x")
        (temp_dir / "nested").mkdir()
        (temp_dir / "nested" / "a.json").write_text("{}")

        assert controller.cleanup_temp(project_id) == 2
        assert temp_dir.is_dir()
        assert list(temp_dir.iterdir()) == []

    async def test_cancel_running_stage(self, controller: PipelineController, fake_downloader) -> None:
        release = asyncio.Event()
        original = fake_downloader.download

        async def slow_download(*args, **kwargs):
            await release.wait()
            return await original(*args, **kwargs)

        fake_downloader.download = slow_download
        project_id = new_project(controller)
        await controller.start_download(project_id)
        await asyncio.sleep(0)

        cancelled = await controller.cancel_stage(project_id, PipelineStage.DOWNLOAD)

        project = controller.get_project(project_id)
        assert cancelled == [f"{project_id}:download"]
        assert project.status == ProjectStatus.DOWNLOAD_ERROR
        assert project.error == "[download] Cancelled"

    def test_recover_interrupted(self, controller: PipelineController) -> None:
        project_id = new_project(controller)
        controller.store.set_status(project_id, ProjectStatus.MERGING)

        assert controller.recover_interrupted() == 1

        project = controller.get_project(project_id)
        assert project.status == ProjectStatus.MERGING_ERROR
        assert "Interrupted" in project.error

    async def test_status_view_during_caption(self, controller: PipelineController) -> None:
        project_id = new_project(controller)
        await run_until_segmented(controller, project_id)
        await controller.start_caption_all(project_id)
        await controller.jobs.join(f"{project_id}:")

        view = controller.get_status(project_id)
        assert view.progress.stage == PipelineStage.CAPTION
        assert view.progress.main == 100
        assert view.progress.children == {"segment_1": 100, "segment_2": 100}
