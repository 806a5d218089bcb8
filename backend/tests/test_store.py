"""Tests for the durable project store."""

import threading
from datetime import datetime

import pytest

from reelcutter.models.schemas import CaptioningStatus, Project, ProjectStatus, Segment
from reelcutter.services.store import ProjectStore


def make_project(project_id: str = "p1", created_at: datetime | None = None) -> Project:
    return Project(
        id=project_id,
        created_at=created_at or datetime(2024, 1, 1, 12, 0, 0),
        video_url="https://example.com/v",
        audio_url="https://example.com/a",
    )


def make_segments(count: int) -> list[Segment]:
    return [
        Segment(id=i, filename=f"segment_{i}.mp4", start_time=(i - 1) * 60, duration=60)
        for i in range(1, count + 1)
    ]


class TestProjectRecords:
    def test_create_and_get(self, store: ProjectStore) -> None:
        store.create(make_project())

        loaded = store.get("p1")
        assert loaded is not None
        assert loaded.status == ProjectStatus.INITIALIZING
        assert (store.project_dir("p1") / "metadata.json").exists()

    def test_get_missing_returns_none(self, store: ProjectStore) -> None:
        assert store.get("missing") is None
        assert store.update("missing", status=ProjectStatus.MERGED) is None

    def test_list_newest_first(self, store: ProjectStore) -> None:
        store.create(make_project("old", datetime(2024, 1, 1)))
        store.create(make_project("new", datetime(2024, 6, 1)))

        assert [p.id for p in store.list_projects()] == ["new", "old"]

    def test_set_status_replaces_error(self, store: ProjectStore) -> None:
        store.create(make_project())
        store.set_status("p1", ProjectStatus.MERGING_ERROR, error="[merge] boom")
        project = store.set_status("p1", ProjectStatus.MERGED)

        assert project.status == ProjectStatus.MERGED
        assert project.error is None

    def test_update_keeps_progress_written_meanwhile(self, store: ProjectStore) -> None:
        """Field updates re-read the record, so progress keys survive."""
        store.create(make_project())
        store.set_progress("p1", "proc-a", 40)
        store.update("p1", status=ProjectStatus.DOWNLOADING)

        project = store.get("p1")
        assert project.progress == {"proc-a": 40}
        assert project.status == ProjectStatus.DOWNLOADING

    def test_delete(self, store: ProjectStore) -> None:
        store.create(make_project())
        assert store.delete("p1") is True
        assert store.get("p1") is None
        assert store.delete("p1") is False


class TestProgressMap:
    def test_values_clamped_and_rounded(self, store: ProjectStore) -> None:
        store.create(make_project())
        store.set_progress("p1", "a", 150)
        store.set_progress("p1", "b", -5)
        store.set_progress("p1", "c", 33.6)

        assert store.get("p1").progress == {"a": 100, "b": 0, "c": 34}

    def test_missing_project_does_not_raise(self, store: ProjectStore) -> None:
        assert store.set_progress("missing", "a", 10) is False

    def test_concurrent_writers_do_not_lose_keys(self, store: ProjectStore) -> None:
        store.create(make_project())

        def writer(key: str) -> None:
            for value in range(0, 101, 10):
                store.set_progress("p1", key, value)

        threads = [threading.Thread(target=writer, args=(f"k{i}",)) for i in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        progress = store.get("p1").progress
        assert progress == {f"k{i}": 100 for i in range(8)}

    def test_clear_progress_by_prefix(self, store: ProjectStore) -> None:
        store.create(make_project())
        store.set_progress("p1", "proc", 10)
        store.set_progress("p1", "proc_video", 20)
        store.set_progress("p1", "other", 30)

        store.clear_progress("p1", "proc")

        assert store.get("p1").progress == {"other": 30}
        assert store.get_progress("p1", "other") == 30
        assert store.get_progress("p1", "proc") is None


class TestSegments:
    def test_absent_list_is_none(self, store: ProjectStore) -> None:
        store.create(make_project())
        assert store.get_segments("p1") is None

    def test_save_sorts_by_id(self, store: ProjectStore) -> None:
        store.create(make_project())
        store.save_segments("p1", list(reversed(make_segments(3))))

        assert [s.id for s in store.get_segments("p1")] == [1, 2, 3]

    def test_save_requires_project(self, store: ProjectStore) -> None:
        with pytest.raises(FileNotFoundError):
            store.save_segments("missing", make_segments(1))

    def test_update_segment_leaves_others(self, store: ProjectStore) -> None:
        store.create(make_project())
        store.save_segments("p1", make_segments(3))

        store.update_segment("p1", 2, captioning_status=CaptioningStatus.FAILED, captioning_error="x")

        segments = {s.id: s for s in store.get_segments("p1")}
        assert segments[2].captioning_status == CaptioningStatus.FAILED
        assert segments[1].captioning_status == CaptioningStatus.PENDING
        assert segments[3].captioning_status == CaptioningStatus.PENDING

    def test_update_unknown_segment(self, store: ProjectStore) -> None:
        store.create(make_project())
        store.save_segments("p1", make_segments(1))
        assert store.update_segment("p1", 9, captioning_progress=5) is None

    def test_segment_progress_requires_matching_process(self, store: ProjectStore) -> None:
        store.create(make_project())
        store.save_segments("p1", make_segments(1))
        store.update_segment(
            "p1", 1,
            captioning_status=CaptioningStatus.IN_PROGRESS,
            captioning_process_id="current",
        )

        assert store.set_segment_progress("p1", 1, "stale", 80) is False
        assert store.set_segment_progress("p1", 1, "current", 42.4) is True
        assert store.get_segment("p1", 1).captioning_progress == 42

    def test_delete_segments(self, store: ProjectStore) -> None:
        store.create(make_project())
        store.save_segments("p1", make_segments(2))
        paths = store.paths("p1")
        paths.segments_dir.mkdir()
        paths.segment_path(1).write_bytes(b"x")
        paths.captions_dir.mkdir()

        removed = store.delete_segments("p1")

        assert removed == ["segments/", "captions/", "segments.json"]
        assert store.get_segments("p1") is None
        assert not paths.segments_dir.exists()
