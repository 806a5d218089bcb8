"""
Progress aggregation for pipeline stages.

Maps phase-local progress into stage progress with fixed weights and
builds the externally visible progress view from a project's raw
progress map.
"""

import logging
from dataclasses import dataclass
from typing import Iterable

from reelcutter.models.schemas import (
    CaptioningStatus,
    PipelineStage,
    Project,
    Segment,
    StageProgress,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Phase:
    """Slot [start, end] of a stage's 0-100 range."""

    start: float
    end: float

    def interpolate(self, sub_percent: float) -> float:
        """overall = start + sub/100 * (end - start)"""
        sub = min(max(sub_percent, 0.0), 100.0)
        return self.start + sub / 100 * (self.end - self.start)


# Segment caption sub-pipeline (must cover 0-100 without gaps)
CAPTION_PHASES = {
    "extract_audio": Phase(0, 5),
    "transcribe": Phase(5, 45),
    "assemble": Phase(45, 50),
    "burn": Phase(50, 80),
    "overlay": Phase(80, 95),
    "cleanup": Phase(95, 100),
}

# Merge: duration probe first, then the encode
MERGE_PHASES = {
    "duration": Phase(0, 25),
    "encode": Phase(25, 100),
}

# Named children exposed per stage: tag -> weight in the parent value
STAGE_CHILDREN: dict[PipelineStage, dict[str, float]] = {
    PipelineStage.DOWNLOAD: {"video": 0.5, "audio": 0.5},
    PipelineStage.MERGE: {"duration": 0.0},
}


def child_key(process_id: str, tag: str) -> str:
    """Progress key of a named sub-process: <parent>_<tag>"""
    return f"{process_id}_{tag}"


class ProgressAggregator:
    """
    Composes raw progress values into stage progress.

    Example:
        aggregator = ProgressAggregator()
        aggregator.weighted({"video": 40, "audio": 100}, PipelineStage.DOWNLOAD)  # 70.0
        aggregator.phase_progress(CAPTION_PHASES, "burn", 50)  # 65.0
        view = aggregator.stage_progress(project)
    """

    def phase_progress(
        self,
        phases: dict[str, Phase],
        phase: str,
        sub_percent: float = 100,
    ) -> float:
        """Map phase-local progress into the stage range."""
        return phases[phase].interpolate(sub_percent)

    def weighted(self, children: dict[str, float], stage: PipelineStage) -> float:
        """Weighted parent value from child values (missing children count as 0)."""
        weights = STAGE_CHILDREN.get(stage, {})
        total_weight = sum(weights.values())
        if not total_weight:
            return 0.0
        value = sum(children.get(tag, 0.0) * weight for tag, weight in weights.items())
        return min(value / total_weight, 100.0)

    def split_progress(self, completed: int, total: int) -> float:
        """Fraction of segments fully written."""
        if total <= 0:
            return 0.0
        return min(completed / total * 100, 100.0)

    def caption_progress(self, segments: Iterable[Segment]) -> float:
        """Mean captioning progress over segments (completed count as 100)."""
        values = [
            100 if s.captioning_status == CaptioningStatus.COMPLETED else s.captioning_progress
            for s in segments
        ]
        if not values:
            return 0.0
        return sum(values) / len(values)

    def stage_progress(
        self,
        project: Project,
        segments: list[Segment] | None = None,
    ) -> StageProgress:
        """
        Build the progress view for the project's current stage.

        The main value is the stage's primary key if present, else the
        maximum across all keys of the project. Named children are
        exposed individually; during captioning each segment is a child.

        Args:
            project: Project record
            segments: Segment list (used for the caption stage)

        Returns:
            StageProgress view
        """
        stage = project.current_stage
        if stage is None:
            return StageProgress()

        process_id = getattr(project, stage.process_field)
        progress = project.progress

        if process_id is not None and process_id in progress:
            main = progress[process_id]
        else:
            main = max(progress.values(), default=0)

        children: dict[str, int] = {}
        if process_id is not None:
            for tag in STAGE_CHILDREN.get(stage, {}):
                key = child_key(process_id, tag)
                if key in progress:
                    children[tag] = progress[key]

        if stage == PipelineStage.CAPTION and segments:
            for segment in segments:
                children[f"segment_{segment.id}"] = segment.captioning_progress

        return StageProgress(
            stage=stage,
            process_id=process_id,
            main=int(round(min(max(main, 0), 100))),
            children=children,
        )
