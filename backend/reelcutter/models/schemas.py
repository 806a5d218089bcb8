"""
Pydantic models for the media pipeline.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, computed_field, field_validator

from reelcutter.utils.media_utils import parse_time_to_seconds


class ProjectStatus(str, Enum):
    """Status of a project in the stage state machine."""
    INITIALIZING = "initializing"
    INITIALIZED = "initialized"
    INITIALIZING_ERROR = "initializing_error"
    DOWNLOADING = "downloading"
    DOWNLOADED = "downloaded"
    DOWNLOAD_ERROR = "download_error"
    MERGING = "merging"
    MERGED = "merged"
    MERGING_ERROR = "merging_error"
    SEGMENTING = "segmenting"
    SEGMENTED = "segmented"
    SEGMENTING_ERROR = "segmenting_error"
    CAPTIONING = "captioning"
    CAPTIONED = "captioned"
    CAPTIONING_ERROR = "captioning_error"
    SEGMENTS_DELETED = "segments_deleted"


class PipelineStage(str, Enum):
    """Top-level pipeline stage.

    Each stage owns an in-progress, success and error status.
    """
    DOWNLOAD = "download"
    MERGE = "merge"
    SPLIT = "split"
    CAPTION = "caption"

    @property
    def running_status(self) -> ProjectStatus:
        return _STAGE_STATUSES[self][0]

    @property
    def done_status(self) -> ProjectStatus:
        return _STAGE_STATUSES[self][1]

    @property
    def error_status(self) -> ProjectStatus:
        return _STAGE_STATUSES[self][2]

    @property
    def process_field(self) -> str:
        """Project field holding the stage's current process id."""
        return f"{self.value}_process_id"

    @property
    def completed_field(self) -> str:
        return f"{self.value}_completed_at"


_STAGE_STATUSES = {
    PipelineStage.DOWNLOAD: (
        ProjectStatus.DOWNLOADING, ProjectStatus.DOWNLOADED, ProjectStatus.DOWNLOAD_ERROR,
    ),
    PipelineStage.MERGE: (
        ProjectStatus.MERGING, ProjectStatus.MERGED, ProjectStatus.MERGING_ERROR,
    ),
    PipelineStage.SPLIT: (
        ProjectStatus.SEGMENTING, ProjectStatus.SEGMENTED, ProjectStatus.SEGMENTING_ERROR,
    ),
    PipelineStage.CAPTION: (
        ProjectStatus.CAPTIONING, ProjectStatus.CAPTIONED, ProjectStatus.CAPTIONING_ERROR,
    ),
}


class CaptioningStatus(str, Enum):
    """Per-segment captioning state."""
    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"


class Project(BaseModel):
    """Durable project record (metadata.json)."""

    id: str
    created_at: datetime
    status: ProjectStatus = ProjectStatus.INITIALIZING
    current_stage: PipelineStage | None = None

    # Sources and trim offsets in seconds (0 = not set)
    video_url: str
    audio_url: str
    start_time: float = 0.0
    end_time: float = 0.0
    audio_start_time: float = 0.0
    audio_end_time: float = 0.0

    download_process_id: str | None = None
    download_completed_at: datetime | None = None
    merge_process_id: str | None = None
    merge_completed_at: datetime | None = None
    split_process_id: str | None = None
    split_completed_at: datetime | None = None
    caption_process_id: str | None = None
    caption_completed_at: datetime | None = None

    video_duration: float | None = None
    audio_duration: float | None = None
    total_duration: float | None = None
    segment_count: int = 0
    current_segment: int = 0
    total_segments: int = 0

    error: str | None = None
    progress: dict[str, int] = Field(default_factory=dict)
    title_color: str = "#a80000"


class Segment(BaseModel):
    """One fixed-length slice of the merged media (segments.json entry)."""

    id: int = Field(ge=1)
    filename: str
    start_time: float = 0.0
    duration: float

    captioning_status: CaptioningStatus = CaptioningStatus.PENDING
    captioning_progress: int = Field(default=0, ge=0, le=100)
    captioning_process_id: str | None = None
    captioning_started_at: datetime | None = None
    captioning_completed_at: datetime | None = None
    captioning_failed_at: datetime | None = None
    captioning_error: str | None = None
    subtitle: str | None = None
    captioned_filename: str | None = None


class CaptionToken(BaseModel):
    """Timestamped transcript token (word, or whole segment as fallback)."""

    start: float
    end: float
    text: str


class CaptionLine(BaseModel):
    """Packed display line for the subtitle track."""

    start: float
    end: float
    text: str


# ═══════════════════════════════════════════════════════════════════════════
# API request / response models
# ═══════════════════════════════════════════════════════════════════════════


class CreateProjectRequest(BaseModel):
    """Request to create a project from two source clips.

    Trim offsets accept seconds or "HH:MM:SS(.ms)" strings.
    """

    video_url: str = Field(min_length=1)
    audio_url: str = Field(min_length=1)
    start_time: float = Field(default=0.0, ge=0)
    end_time: float = Field(default=0.0, ge=0)
    audio_start_time: float = Field(default=0.0, ge=0)
    audio_end_time: float = Field(default=0.0, ge=0)

    @field_validator(
        "start_time", "end_time", "audio_start_time", "audio_end_time", mode="before"
    )
    @classmethod
    def _parse_offset(cls, value):
        if value is None or value == "":
            return 0.0
        if isinstance(value, str):
            return parse_time_to_seconds(value)
        return value


class CaptionRequest(BaseModel):
    """Request to caption one segment."""

    segment_number: int = Field(ge=1)


class ProjectCreated(BaseModel):
    project_id: str
    status: ProjectStatus


class ProcessStarted(BaseModel):
    """Accepted stage start."""

    project_id: str
    stage: PipelineStage
    process_id: str
    segment_id: int | None = None


class BatchCaptionStarted(BaseModel):
    project_id: str
    process_ids: dict[int, str]


class StageProgress(BaseModel):
    """Aggregated progress for the project's current stage."""

    stage: PipelineStage | None = None
    process_id: str | None = None
    main: int = 0
    children: dict[str, int] = Field(default_factory=dict)


class ProjectStatusResponse(BaseModel):
    """Project record plus the aggregated progress view."""

    project: Project
    progress: StageProgress


class CaptioningSummary(BaseModel):
    """Segment ids grouped by captioning status."""

    total: int
    captioned: list[int] = Field(default_factory=list)
    failed: list[int] = Field(default_factory=list)
    in_progress: list[int] = Field(default_factory=list)
    pending: list[int] = Field(default_factory=list)
    progress: int = 0

    @computed_field
    @property
    def all_captioned(self) -> bool:
        """True once every segment has a captioned output."""
        return self.total > 0 and len(self.captioned) == self.total


class DeleteResult(BaseModel):
    project_id: str
    deleted: list[str] = Field(default_factory=list)


class CleanupResult(BaseModel):
    project_id: str
    removed_files: int
