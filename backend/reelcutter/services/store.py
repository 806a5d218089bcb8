"""
Durable project store.

Each project lives in its own directory under the projects root:

    <projects_root>/<project_id>/
        metadata.json   # Project record (status, stage fields, progress map)
        segments.json   # Segment list
        source/ merge/ segments/ captions/ temp/

Every mutation re-reads the current file under a per-project lock,
applies the change to that fresh value and writes it back atomically
(temp file + os.replace). Concurrent background tasks touching different
keys of the same record therefore never lose each other's updates.
"""

import json
import logging
import os
import shutil
import threading
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Iterable

from pydantic import TypeAdapter

from reelcutter.models.schemas import (
    CaptioningStatus,
    Project,
    ProjectStatus,
    Segment,
)

logger = logging.getLogger(__name__)

METADATA_FILE = "metadata.json"
SEGMENTS_FILE = "segments.json"

_segments_adapter = TypeAdapter(list[Segment])


@dataclass(frozen=True)
class ProjectPaths:
    """On-disk layout of one project."""

    root: Path

    @property
    def source_dir(self) -> Path:
        return self.root / "source"

    @property
    def video_path(self) -> Path:
        return self.source_dir / "video.mp4"

    @property
    def audio_path(self) -> Path:
        return self.source_dir / "audio.m4a"

    @property
    def merge_dir(self) -> Path:
        return self.root / "merge"

    @property
    def merged_path(self) -> Path:
        return self.merge_dir / "processed.mp4"

    @property
    def segments_dir(self) -> Path:
        return self.root / "segments"

    @property
    def captions_dir(self) -> Path:
        return self.root / "captions"

    @property
    def temp_dir(self) -> Path:
        return self.root / "temp"

    @property
    def segments_file(self) -> Path:
        return self.root / SEGMENTS_FILE

    def segment_path(self, segment_id: int) -> Path:
        return self.segments_dir / segment_filename(segment_id)

    def captioned_path(self, segment_id: int) -> Path:
        return self.captions_dir / captioned_filename(segment_id)

    def srt_path(self, segment_id: int) -> Path:
        return self.captions_dir / f"segment_{segment_id}.srt"


def segment_filename(segment_id: int) -> str:
    return f"segment_{segment_id}.mp4"


def captioned_filename(segment_id: int) -> str:
    return f"captioned_segment_{segment_id}.mp4"


def drop_progress_keys(project: Project, prefixes: Iterable[str | None]) -> None:
    """Remove progress entries of earlier runs (a process id and its children)."""
    stale = tuple(prefix for prefix in prefixes if prefix)
    if not stale:
        return
    project.progress = {
        key: value for key, value in project.progress.items() if not key.startswith(stale)
    }


class ProjectStore:
    """
    File-backed store for projects, progress maps and segment lists.

    Example:
        store = ProjectStore(settings.projects_root)
        project = store.create(project)
        store.set_progress(project.id, process_id, 42)
        store.update_segment(project.id, 2, captioning_progress=10)
    """

    def __init__(self, root: Path):
        """
        Initialize store.

        Args:
            root: Directory holding one subdirectory per project
        """
        self.root = Path(root)
        self._locks: dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    # ═══════════════════════════════════════════════════════════════════════
    # Paths and locking
    # ═══════════════════════════════════════════════════════════════════════

    def project_dir(self, project_id: str) -> Path:
        return self.root / project_id

    def paths(self, project_id: str) -> ProjectPaths:
        return ProjectPaths(self.project_dir(project_id))

    def _metadata_path(self, project_id: str) -> Path:
        return self.project_dir(project_id) / METADATA_FILE

    def _segments_path(self, project_id: str) -> Path:
        return self.project_dir(project_id) / SEGMENTS_FILE

    def _lock(self, project_id: str) -> threading.RLock:
        with self._locks_guard:
            lock = self._locks.get(project_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[project_id] = lock
            return lock

    @staticmethod
    def _write_atomic(path: Path, payload: str) -> None:
        """Write file contents via temp file + rename."""
        tmp_path = path.with_name(f".{path.name}.{uuid.uuid4().hex}.tmp")
        try:
            tmp_path.write_text(payload, encoding="utf-8")
            os.replace(tmp_path, path)
        finally:
            if tmp_path.exists():
                tmp_path.unlink()

    def _read_project(self, project_id: str) -> Project | None:
        path = self._metadata_path(project_id)
        if not path.exists():
            return None
        return Project.model_validate_json(path.read_text(encoding="utf-8"))

    def _write_project(self, project: Project) -> None:
        self._write_atomic(
            self._metadata_path(project.id),
            project.model_dump_json(indent=2),
        )

    # ═══════════════════════════════════════════════════════════════════════
    # Project records
    # ═══════════════════════════════════════════════════════════════════════

    def create(self, project: Project) -> Project:
        """Persist a new project and create its directory."""
        with self._lock(project.id):
            self.project_dir(project.id).mkdir(parents=True, exist_ok=True)
            self._write_project(project)
        logger.info(f"Created project {project.id}")
        return project

    def exists(self, project_id: str) -> bool:
        return self._metadata_path(project_id).exists()

    def get(self, project_id: str) -> Project | None:
        """
        Load a project record.

        Args:
            project_id: Project identifier

        Returns:
            Project or None if not found
        """
        with self._lock(project_id):
            return self._read_project(project_id)

    def list_projects(self) -> list[Project]:
        """List all projects, newest first."""
        if not self.root.exists():
            return []

        projects = []
        for entry in self.root.iterdir():
            if not entry.is_dir():
                continue
            try:
                project = self.get(entry.name)
            except ValueError as e:
                logger.warning(f"Skipping unreadable project {entry.name}: {e}")
                continue
            if project is not None:
                projects.append(project)

        projects.sort(key=lambda p: p.created_at, reverse=True)
        return projects

    def modify(
        self,
        project_id: str,
        mutate: Callable[[Project], Project | None],
    ) -> Project | None:
        """
        Apply a mutation to the current on-disk record.

        The callback receives a fresh copy read under the project lock. It may
        change it in place (return None) or return a replacement. Returning
        the record unchanged still rewrites it.

        Args:
            project_id: Project identifier
            mutate: Callback applied to the fresh record

        Returns:
            Updated project, or None if the project does not exist
        """
        with self._lock(project_id):
            project = self._read_project(project_id)
            if project is None:
                return None
            result = mutate(project)
            if result is not None:
                project = result
            self._write_project(project)
            return project

    def update(self, project_id: str, **fields: Any) -> Project | None:
        """
        Set top-level fields on the current record.

        Args:
            project_id: Project identifier
            **fields: Field values to set

        Returns:
            Updated project, or None if the project does not exist
        """
        def apply(project: Project) -> Project:
            return project.model_copy(update=fields)

        return self.modify(project_id, apply)

    def set_status(
        self,
        project_id: str,
        status: ProjectStatus,
        error: str | None = None,
        **fields: Any,
    ) -> Project | None:
        """Set status, replacing any previous error message."""
        return self.update(project_id, status=status, error=error, **fields)

    def delete(self, project_id: str) -> bool:
        """Remove the project directory with all artifacts."""
        with self._lock(project_id):
            project_dir = self.project_dir(project_id)
            if not project_dir.exists():
                return False
            shutil.rmtree(project_dir)
        with self._locks_guard:
            self._locks.pop(project_id, None)
        logger.info(f"Deleted project {project_id}")
        return True

    # ═══════════════════════════════════════════════════════════════════════
    # Progress map
    # ═══════════════════════════════════════════════════════════════════════

    def set_progress(self, project_id: str, process_id: str, percent: float) -> bool:
        """
        Write one entry of the project's progress map.

        Other entries and fields are left untouched. Values are clamped
        to [0, 100] and rounded to int. Never raises.

        Args:
            project_id: Project identifier
            process_id: Progress key
            percent: Completion percentage

        Returns:
            True if written, False if the project is missing or the write failed
        """
        value = int(round(min(max(float(percent), 0.0), 100.0)))

        def apply(project: Project) -> None:
            project.progress[process_id] = value

        try:
            return self.modify(project_id, apply) is not None
        except Exception as e:
            logger.warning(f"Progress write failed for {project_id}/{process_id}: {e}")
            return False

    def get_progress(self, project_id: str, process_id: str) -> int | None:
        """Read one progress entry, or None if absent."""
        project = self.get(project_id)
        if project is None:
            return None
        return project.progress.get(process_id)

    def clear_progress(self, project_id: str, prefix: str) -> bool:
        """Drop all progress keys starting with prefix (a process id and its children)."""
        return self.modify(project_id, lambda project: drop_progress_keys(project, [prefix])) is not None

    # ═══════════════════════════════════════════════════════════════════════
    # Segment list
    # ═══════════════════════════════════════════════════════════════════════

    def _read_segments(self, project_id: str) -> list[Segment] | None:
        path = self._segments_path(project_id)
        if not path.exists():
            return None
        return _segments_adapter.validate_json(path.read_text(encoding="utf-8"))

    def _write_segments(self, project_id: str, segments: list[Segment]) -> None:
        payload = json.dumps(
            [segment.model_dump(mode="json") for segment in segments],
            indent=2,
        )
        self._write_atomic(self._segments_path(project_id), payload)

    def get_segments(self, project_id: str) -> list[Segment] | None:
        """
        Load the segment list.

        Returns:
            Segments ordered by id, or None if the list was never written
        """
        with self._lock(project_id):
            return self._read_segments(project_id)

    def get_segment(self, project_id: str, segment_id: int) -> Segment | None:
        segments = self.get_segments(project_id) or []
        for segment in segments:
            if segment.id == segment_id:
                return segment
        return None

    def save_segments(self, project_id: str, segments: list[Segment]) -> None:
        """Replace the whole segment list (split stage output)."""
        with self._lock(project_id):
            if not self.project_dir(project_id).exists():
                raise FileNotFoundError(f"Project not found: {project_id}")
            self._write_segments(project_id, sorted(segments, key=lambda s: s.id))

    def modify_segment(
        self,
        project_id: str,
        segment_id: int,
        mutate: Callable[[Segment], bool | None],
    ) -> Segment | None:
        """
        Apply a mutation to one segment of the current on-disk list.

        The callback may return False to skip the write.

        Returns:
            The segment after mutation, or None if the list or segment is missing
        """
        with self._lock(project_id):
            segments = self._read_segments(project_id)
            if segments is None:
                return None

            for index, segment in enumerate(segments):
                if segment.id != segment_id:
                    continue
                if mutate(segment) is False:
                    return segment
                segments[index] = Segment.model_validate(segment.model_dump())
                self._write_segments(project_id, segments)
                return segments[index]

            return None

    def update_segment(
        self,
        project_id: str,
        segment_id: int,
        **fields: Any,
    ) -> Segment | None:
        """Set fields on one segment without touching the others."""
        def apply(segment: Segment) -> None:
            for name, value in fields.items():
                setattr(segment, name, value)

        return self.modify_segment(project_id, segment_id, apply)

    def set_segment_progress(
        self,
        project_id: str,
        segment_id: int,
        process_id: str,
        percent: float,
    ) -> bool:
        """
        Write a segment's captioning progress.

        Ignored unless the segment is still in progress under the same
        process id, so a superseded worker cannot overwrite a retry.
        Never raises.

        Returns:
            True if written
        """
        value = int(round(min(max(float(percent), 0.0), 100.0)))
        written = False

        def apply(segment: Segment) -> bool:
            nonlocal written
            if (
                segment.captioning_process_id != process_id
                or segment.captioning_status != CaptioningStatus.IN_PROGRESS
            ):
                return False
            segment.captioning_progress = value
            written = True
            return True

        try:
            self.modify_segment(project_id, segment_id, apply)
        except Exception as e:
            logger.warning(
                f"Segment progress write failed for {project_id}/{segment_id}: {e}"
            )
            return False
        return written

    def delete_segments(self, project_id: str) -> list[str]:
        """
        Remove segment media, captioned outputs and the segment list.

        Returns:
            Names of removed items
        """
        removed: list[str] = []
        with self._lock(project_id):
            project_dir = self.project_dir(project_id)
            for name in ("segments", "captions"):
                path = project_dir / name
                if path.exists():
                    shutil.rmtree(path)
                    removed.append(f"{name}/")
            segments_path = self._segments_path(project_id)
            if segments_path.exists():
                segments_path.unlink()
                removed.append(SEGMENTS_FILE)
        return removed
