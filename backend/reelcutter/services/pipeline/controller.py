"""
Pipeline controller: project state machine.

Stage starts are accepted synchronously (preconditions checked, process
id allocated, status moved to in-progress) and the work runs as a
detached job. Workers finalize status only while the project still
points at their own process id, so a superseded or cancelled run can
never overwrite the result of a newer one.

Example:
    controller = PipelineController.from_settings(settings)
    project = controller.create_project(request)
    process_id = await controller.start_download(project.id)
    ...
    status = controller.get_status(project.id)
"""

import asyncio
import logging
import shutil
import uuid
from datetime import datetime
from typing import Any

from reelcutter.config import Settings, load_encoding_config
from reelcutter.models.schemas import (
    CaptioningStatus,
    CaptioningSummary,
    CreateProjectRequest,
    PipelineStage,
    Project,
    ProjectStatus,
    ProjectStatusResponse,
    Segment,
)
from reelcutter.services.downloader import YtDlpDownloader
from reelcutter.services.job_manager import JobManager
from reelcutter.services.media import MediaToolkit
from reelcutter.services.pipeline.errors import (
    ProjectBusyError,
    ProjectNotFoundError,
    SegmentNotFoundError,
)
from reelcutter.services.pipeline.progress_aggregator import ProgressAggregator
from reelcutter.services.process import ProcessError, ProcessRunner
from reelcutter.services.stages import (
    BaseStage,
    CaptionStage,
    DownloadStage,
    MergeStage,
    PreconditionError,
    SplitStage,
    StageContext,
    StageError,
)
from reelcutter.services.store import ProjectStore, drop_progress_keys
from reelcutter.services.title_generator import TitleGenerator
from reelcutter.services.tools import ToolLocator
from reelcutter.services.transcriber import WhisperCliTranscriber
from reelcutter.utils.color_utils import random_title_color

logger = logging.getLogger(__name__)

RUNNING_STATUSES = {stage.running_status: stage for stage in PipelineStage}

# Progress keys of caption-all runs
BATCH_KEY_PREFIX = "batch-"


class PipelineController:
    """
    Validates and launches stages, finalizes project and segment status.

    Collaborators are injected so tests can pass fakes:
        controller = PipelineController(store, stages, JobManager())
    """

    def __init__(
        self,
        store: ProjectStore,
        stages: dict[PipelineStage, BaseStage],
        jobs: JobManager,
        aggregator: ProgressAggregator | None = None,
        progress_interval: float = 1.0,
    ):
        """
        Initialize controller.

        Args:
            store: Durable project store
            stages: Stage implementation per PipelineStage
            jobs: Background job manager
            aggregator: Progress aggregator
            progress_interval: Batch caption progress refresh (seconds)
        """
        self.store = store
        self.stages = stages
        self.jobs = jobs
        self.aggregator = aggregator or ProgressAggregator()
        self.progress_interval = progress_interval

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        jobs: JobManager | None = None,
    ) -> "PipelineController":
        """
        Build a controller with the real tool-backed stages.

        Args:
            settings: Application settings
            jobs: Job manager (default: new one sized from settings)

        Returns:
            Configured PipelineController
        """
        encoding = load_encoding_config(settings)
        runner = ProcessRunner(
            ToolLocator.from_settings(settings),
            progress_interval=settings.progress_interval,
            default_timeout=settings.process_timeout,
        )
        media = MediaToolkit(runner, encoding, probe_timeout=settings.probe_timeout)
        aggregator = ProgressAggregator()

        stages: dict[PipelineStage, BaseStage] = {
            PipelineStage.DOWNLOAD: DownloadStage(
                YtDlpDownloader(runner, timeout=settings.process_timeout), media, aggregator
            ),
            PipelineStage.MERGE: MergeStage(media, aggregator),
            PipelineStage.SPLIT: SplitStage(media, settings.segment_length, aggregator),
            PipelineStage.CAPTION: CaptionStage(
                media,
                WhisperCliTranscriber(runner, settings.whisper_model, settings.process_timeout),
                TitleGenerator(settings),
                caption_style=encoding.get("captions"),
                overlay_style=encoding.get("overlay"),
                aggregator=aggregator,
            ),
        }
        return cls(
            store=ProjectStore(settings.projects_root),
            stages=stages,
            jobs=jobs or JobManager(settings.caption_concurrency),
            aggregator=aggregator,
            progress_interval=settings.progress_interval,
        )

    # ═══════════════════════════════════════════════════════════════════════
    # Projects
    # ═══════════════════════════════════════════════════════════════════════

    def create_project(self, request: CreateProjectRequest) -> Project:
        """
        Create a project record and its directory layout.

        Directory creation failure leaves the project in initializing_error.
        """
        project = Project(
            id=str(uuid.uuid4()),
            created_at=datetime.now(),
            status=ProjectStatus.INITIALIZING,
            video_url=request.video_url,
            audio_url=request.audio_url,
            start_time=request.start_time,
            end_time=request.end_time,
            audio_start_time=request.audio_start_time,
            audio_end_time=request.audio_end_time,
            title_color=random_title_color(),
        )
        self.store.create(project)

        paths = self.store.paths(project.id)
        try:
            for directory in (paths.source_dir, paths.merge_dir, paths.temp_dir):
                directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Cannot initialize project {project.id}: {e}")
            return self.store.set_status(project.id, ProjectStatus.INITIALIZING_ERROR, error=str(e))

        return self.store.set_status(project.id, ProjectStatus.INITIALIZED)

    def get_project(self, project_id: str) -> Project:
        """
        Raises:
            ProjectNotFoundError: If the project does not exist
        """
        project = self.store.get(project_id)
        if project is None:
            raise ProjectNotFoundError(project_id)
        return project

    def list_projects(self) -> list[Project]:
        return self.store.list_projects()

    def get_segments(self, project_id: str) -> list[Segment]:
        """Segment list (empty before the first split)."""
        self.get_project(project_id)
        return self.store.get_segments(project_id) or []

    def get_status(self, project_id: str) -> ProjectStatusResponse:
        """Project record with the aggregated progress of its current stage."""
        project = self.get_project(project_id)
        segments = None
        if project.current_stage == PipelineStage.CAPTION:
            segments = self.store.get_segments(project_id)
        return ProjectStatusResponse(
            project=project,
            progress=self.aggregator.stage_progress(project, segments),
        )

    def captioning_summary(self, project_id: str) -> CaptioningSummary:
        """
        Segment ids grouped by captioning status.

        Raises:
            PreconditionError: If the project has no segment list
        """
        self.get_project(project_id)
        segments = self.store.get_segments(project_id)
        if segments is None:
            raise PreconditionError(PipelineStage.CAPTION, ["segments.json"])

        by_status: dict[CaptioningStatus, list[int]] = {status: [] for status in CaptioningStatus}
        for segment in segments:
            by_status[segment.captioning_status].append(segment.id)

        return CaptioningSummary(
            total=len(segments),
            captioned=by_status[CaptioningStatus.COMPLETED],
            failed=by_status[CaptioningStatus.FAILED],
            in_progress=by_status[CaptioningStatus.IN_PROGRESS],
            pending=by_status[CaptioningStatus.PENDING],
            progress=int(round(self.aggregator.caption_progress(segments))),
        )

    async def delete_project(self, project_id: str) -> list[str]:
        """Cancel the project's jobs and remove all of its files."""
        self.get_project(project_id)
        await self.jobs.cancel_prefix(f"{project_id}:")
        self.store.delete(project_id)
        return [project_id]

    async def delete_segments(self, project_id: str) -> list[str]:
        """
        Remove segments, captioned outputs and the segment list.

        Running split/caption jobs are cancelled first.
        """
        self.get_project(project_id)
        await self.jobs.cancel_prefix(f"{project_id}:{PipelineStage.SPLIT.value}")
        await self.jobs.cancel_prefix(f"{project_id}:{PipelineStage.CAPTION.value}")

        stale = self._caption_progress_keys(project_id)
        removed = self.store.delete_segments(project_id)
        self.store.modify(project_id, lambda record: drop_progress_keys(record, stale))
        self.store.set_status(
            project_id,
            ProjectStatus.SEGMENTS_DELETED,
            segment_count=0,
            current_segment=0,
            total_segments=0,
        )
        logger.info(f"Deleted segments of project {project_id}: {removed}")
        return removed

    def _caption_progress_keys(self, project_id: str) -> list[str | None]:
        """Progress key prefixes owned by caption runs of the current segment list."""
        segments = self.store.get_segments(project_id) or []
        return [BATCH_KEY_PREFIX, *(segment.captioning_process_id for segment in segments)]

    def cleanup_temp(self, project_id: str) -> int:
        """
        Remove the project's temp directory.

        Raises:
            ProjectBusyError: While captioning workers use the temp directory
        """
        self.get_project(project_id)
        running = self.jobs.running_keys(f"{project_id}:{PipelineStage.CAPTION.value}")
        if running:
            raise ProjectBusyError(project_id, running)

        temp_dir = self.store.paths(project_id).temp_dir
        if not temp_dir.exists():
            return 0

        removed = sum(1 for path in temp_dir.rglob("*") if path.is_file())
        shutil.rmtree(temp_dir)
        temp_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"Removed {removed} temp files of project {project_id}")
        return removed

    async def cancel_stage(self, project_id: str, stage: PipelineStage) -> list[str]:
        """Cancel running jobs of one stage; workers record the cancellation."""
        self.get_project(project_id)
        return await self.jobs.cancel_prefix(f"{project_id}:{stage.value}")

    def recover_interrupted(self) -> int:
        """
        Fail records left in-progress by a previous server process.

        Returns:
            Number of projects touched
        """
        recovered = 0
        for project in self.store.list_projects():
            touched = False

            stage = RUNNING_STATUSES.get(project.status)
            if stage is not None and stage != PipelineStage.CAPTION:
                self.store.set_status(
                    project.id, stage.error_status,
                    error=f"[{stage.value}] Interrupted by server restart",
                )
                touched = True

            for segment in self.store.get_segments(project.id) or []:
                if segment.captioning_status == CaptioningStatus.IN_PROGRESS:
                    self.store.update_segment(
                        project.id, segment.id,
                        captioning_status=CaptioningStatus.FAILED,
                        captioning_failed_at=datetime.now(),
                        captioning_error="Interrupted by server restart",
                    )
                    touched = True

            if project.status == ProjectStatus.CAPTIONING:
                self._settle_caption(project.id)
                touched = True

            if touched:
                recovered += 1
                logger.warning(f"Recovered interrupted project {project.id}")
        return recovered

    # ═══════════════════════════════════════════════════════════════════════
    # Stage starts
    # ═══════════════════════════════════════════════════════════════════════

    async def start_download(self, project_id: str) -> str:
        context = self._stage_context(PipelineStage.DOWNLOAD, project_id)
        return self._launch_stage(PipelineStage.DOWNLOAD, context)

    async def start_merge(self, project_id: str) -> str:
        context = self._stage_context(PipelineStage.MERGE, project_id)
        return self._launch_stage(PipelineStage.MERGE, context)

    async def start_split(self, project_id: str) -> str:
        """Running caption jobs of the project are cancelled before the split is accepted."""
        context = self._stage_context(PipelineStage.SPLIT, project_id)
        await self.jobs.cancel_prefix(f"{project_id}:{PipelineStage.CAPTION.value}")
        stale = self._caption_progress_keys(project_id)
        return self._launch_stage(PipelineStage.SPLIT, context, stale)

    def _stage_context(self, stage_name: PipelineStage, project_id: str) -> StageContext:
        """
        Build the context of a new stage run and check its preconditions.

        Raises:
            ProjectNotFoundError: Unknown project
            PreconditionError: Previous stage artifact missing (no state change)
        """
        context = StageContext(
            project=self.get_project(project_id),
            process_id=str(uuid.uuid4()),
            paths=self.store.paths(project_id),
            store=self.store,
        )
        self.stages[stage_name].check_preconditions(context)
        return context

    def _launch_stage(
        self,
        stage_name: PipelineStage,
        context: StageContext,
        stale: list[str | None] | None = None,
    ) -> str:
        """
        Accept a stage start and launch its worker.

        Progress entries of the stage's previous run (plus any extra stale
        process ids) are dropped in the same write.

        Returns:
            Allocated process id
        """
        project_id = context.project_id
        process_id = context.process_id
        stage = self.stages[stage_name]

        def accept(record: Project) -> None:
            previous = getattr(record, stage_name.process_field)
            drop_progress_keys(record, [previous, *(stale or [])])
            setattr(record, stage_name.process_field, process_id)
            record.status = stage_name.running_status
            record.current_stage = stage_name
            record.error = None
            record.progress[process_id] = 0
            if stage_name == PipelineStage.SPLIT:
                record.segment_count = 0
                record.current_segment = 0
                record.total_segments = 0

        context.project = self.store.modify(project_id, accept) or context.project

        self.jobs.spawn(f"{project_id}:{stage_name.value}", self._run_stage(stage, context))
        logger.info(f"Started {stage_name.value} for project {project_id} ({process_id})")
        return process_id

    async def _run_stage(self, stage: BaseStage, context: StageContext) -> None:
        """Background worker: execute and finalize one stage run."""
        label = f"{stage.name.value} of project {context.project_id}"
        try:
            fields = await stage.execute(context)
        except asyncio.CancelledError:
            self._finish_stage_failed(stage.name, context, f"[{stage.name.value}] Cancelled")
            raise
        except StageError as e:
            logger.error(f"{label} failed: {e}")
            self._finish_stage_failed(stage.name, context, str(e))
        except ProcessError as e:
            logger.error(f"{label} failed: {e.message}")
            self._finish_stage_failed(stage.name, context, f"[{stage.name.value}] {e.message}")
        except Exception as e:
            logger.exception(f"Unexpected error in {label}")
            self._finish_stage_failed(stage.name, context, f"[{stage.name.value}] {e}")
        else:
            self._finish_stage_succeeded(stage.name, context, fields)

    def _finish_stage_succeeded(
        self,
        stage_name: PipelineStage,
        context: StageContext,
        fields: dict[str, Any],
    ) -> None:
        finished = False

        def apply(record: Project) -> None:
            nonlocal finished
            if getattr(record, stage_name.process_field) != context.process_id:
                return
            for name, value in fields.items():
                setattr(record, name, value)
            record.status = stage_name.done_status
            record.error = None
            record.progress[context.process_id] = 100
            setattr(record, stage_name.completed_field, datetime.now())
            finished = True

        self.store.modify(context.project_id, apply)
        if finished:
            logger.info(f"Completed {stage_name.value} for project {context.project_id}")
        else:
            logger.info(
                f"Ignoring superseded {stage_name.value} result for project "
                f"{context.project_id} ({context.process_id})"
            )

    def _finish_stage_failed(
        self,
        stage_name: PipelineStage,
        context: StageContext,
        message: str,
    ) -> None:
        def apply(record: Project) -> None:
            if getattr(record, stage_name.process_field) != context.process_id:
                return
            record.status = stage_name.error_status
            record.error = message

        self.store.modify(context.project_id, apply)

    # ═══════════════════════════════════════════════════════════════════════
    # Captioning
    # ═══════════════════════════════════════════════════════════════════════

    def _caption_context(self, project: Project, segment_id: int) -> StageContext:
        """Validate a caption start for one segment (no state change)."""
        segments = self.store.get_segments(project.id)
        if segments is None:
            raise PreconditionError(PipelineStage.CAPTION, ["segments.json"])
        if all(segment.id != segment_id for segment in segments):
            raise SegmentNotFoundError(project.id, segment_id)

        context = StageContext(
            project=project,
            process_id=str(uuid.uuid4()),
            paths=self.store.paths(project.id),
            store=self.store,
            segment_id=segment_id,
        )
        self.stages[PipelineStage.CAPTION].check_preconditions(context)
        return context

    def _accept_caption(self, context: StageContext, batch_id: str | None = None) -> None:
        """Move the segment to in-progress under the context's process id."""
        previous: list[str | None] = []

        def start(segment: Segment) -> None:
            previous.append(segment.captioning_process_id)
            segment.captioning_status = CaptioningStatus.IN_PROGRESS
            segment.captioning_process_id = context.process_id
            segment.captioning_progress = 0
            segment.captioning_started_at = datetime.now()
            segment.captioning_completed_at = None
            segment.captioning_failed_at = None
            segment.captioning_error = None

        self.store.modify_segment(context.project_id, context.segment_id, start)

        def accept(record: Project) -> None:
            drop_progress_keys(record, previous)
            record.caption_process_id = batch_id or context.process_id
            record.current_stage = PipelineStage.CAPTION
            record.status = ProjectStatus.CAPTIONING
            record.error = None
            record.progress[context.process_id] = 0
            if batch_id:
                record.progress.setdefault(batch_id, 0)

        context.project = self.store.modify(context.project_id, accept) or context.project

    async def start_caption(self, project_id: str, segment_id: int) -> str:
        """
        Start (or retry) the caption sub-pipeline for one segment.

        Returns:
            Process id of the segment run

        Raises:
            ProjectNotFoundError: Unknown project
            PreconditionError: No segment list or segment media
            SegmentNotFoundError: Segment id not in the list
        """
        project = self.get_project(project_id)
        context = self._caption_context(project, segment_id)
        self._accept_caption(context)
        self._spawn_caption(context)
        logger.info(
            f"Started captioning segment {segment_id} of project {project_id} "
            f"({context.process_id})"
        )
        return context.process_id

    async def start_caption_all(self, project_id: str, include_completed: bool = False) -> dict[int, str]:
        """
        Start captioning every segment not yet completed.

        Segments run through the bounded caption worker pool.

        Returns:
            Segment id -> process id for the started runs
        """
        project = self.get_project(project_id)
        segments = self.store.get_segments(project_id)
        if segments is None:
            raise PreconditionError(PipelineStage.CAPTION, ["segments.json"])

        targets = [
            segment.id for segment in segments
            if include_completed or segment.captioning_status != CaptioningStatus.COMPLETED
        ]
        contexts = [self._caption_context(project, segment_id) for segment_id in targets]
        if not contexts:
            return {}

        batch_id = f"{BATCH_KEY_PREFIX}{uuid.uuid4()}"
        self.store.clear_progress(project_id, BATCH_KEY_PREFIX)
        for context in contexts:
            self._accept_caption(context, batch_id)
            self._spawn_caption(context)

        self.jobs.spawn(
            f"{project_id}:{PipelineStage.CAPTION.value}-batch",
            self._track_caption_batch(project_id, batch_id, [c.segment_id for c in contexts]),
        )
        logger.info(f"Started captioning {len(contexts)} segments of project {project_id} ({batch_id})")
        return {context.segment_id: context.process_id for context in contexts}

    def _spawn_caption(self, context: StageContext) -> None:
        key = f"{context.project_id}:{PipelineStage.CAPTION.value}:{context.segment_id}"
        self.jobs.spawn(key, self._run_caption(context))

    async def _run_caption(self, context: StageContext) -> None:
        """Background worker for one segment; failures stay on that segment."""
        stage = self.stages[PipelineStage.CAPTION]
        label = f"segment {context.segment_id} of project {context.project_id}"
        try:
            async with self.jobs.caption_slot():
                fields = await stage.execute(context)
        except asyncio.CancelledError:
            self._finish_segment_failed(context, "Cancelled")
            self._settle_caption(context.project_id)
            raise
        except StageError as e:
            logger.error(f"Captioning {label} failed: {e}")
            self._finish_segment_failed(context, e.message)
        except ProcessError as e:
            logger.error(f"Captioning {label} failed: {e.message}")
            self._finish_segment_failed(context, e.message)
        except Exception as e:
            logger.exception(f"Unexpected error captioning {label}")
            self._finish_segment_failed(context, str(e))
        else:
            self._finish_segment_succeeded(context, fields)

        self._settle_caption(context.project_id)

    def _finish_segment_succeeded(self, context: StageContext, fields: dict[str, Any]) -> None:
        def apply(segment: Segment) -> bool:
            if segment.captioning_process_id != context.process_id:
                return False
            segment.captioning_status = CaptioningStatus.COMPLETED
            segment.captioning_progress = 100
            segment.captioning_completed_at = datetime.now()
            segment.captioning_error = None
            for name, value in fields.items():
                setattr(segment, name, value)
            return True

        self.store.modify_segment(context.project_id, context.segment_id, apply)
        self.store.set_progress(context.project_id, context.process_id, 100)

    def _finish_segment_failed(self, context: StageContext, message: str) -> None:
        def apply(segment: Segment) -> bool:
            if segment.captioning_process_id != context.process_id:
                return False
            segment.captioning_status = CaptioningStatus.FAILED
            segment.captioning_failed_at = datetime.now()
            segment.captioning_error = message
            return True

        self.store.modify_segment(context.project_id, context.segment_id, apply)

    def _settle_caption(self, project_id: str) -> None:
        """
        Update project status once no segment is being captioned.

        All segments completed -> captioned. Otherwise the project returns
        to segmented; individual failures stay on their segment records.
        """
        segments = self.store.get_segments(project_id) or []
        if any(s.captioning_status == CaptioningStatus.IN_PROGRESS for s in segments):
            return

        all_done = bool(segments) and all(
            s.captioning_status == CaptioningStatus.COMPLETED for s in segments
        )

        def apply(record: Project) -> None:
            if all_done:
                if record.status != ProjectStatus.CAPTIONED:
                    record.status = ProjectStatus.CAPTIONED
                    record.caption_completed_at = datetime.now()
                    record.error = None
            elif record.status == ProjectStatus.CAPTIONING:
                record.status = ProjectStatus.SEGMENTED

        self.store.modify(project_id, apply)

    async def _track_caption_batch(
        self,
        project_id: str,
        batch_id: str,
        segment_ids: list[int],
    ) -> None:
        """Keep the batch progress key at the mean of its segments."""
        wanted = set(segment_ids)
        prefix = f"{project_id}:{PipelineStage.CAPTION.value}:"
        keys = [f"{prefix}{segment_id}" for segment_id in segment_ids]

        try:
            while True:
                segments = [s for s in (self.store.get_segments(project_id) or []) if s.id in wanted]
                self.store.set_progress(
                    project_id, batch_id, self.aggregator.caption_progress(segments)
                )
                tasks = [task for key in keys if (task := self.jobs.get(key)) is not None]
                if not any(not task.done() for task in tasks):
                    break
                await asyncio.wait(tasks, timeout=self.progress_interval)
        except Exception as e:
            logger.exception(f"Caption batch tracking failed for project {project_id}")

            def apply(record: Project) -> None:
                if record.caption_process_id == batch_id:
                    record.status = ProjectStatus.CAPTIONING_ERROR
                    record.error = f"[{PipelineStage.CAPTION.value}] {e}"

            self.store.modify(project_id, apply)
