"""
Stage abstraction for the media pipeline.

Each stage:
- Declares the on-disk artifacts it needs (checked before start)
- Runs its work in execute() under a fresh process id
- Returns the project fields to stamp on success

Status transitions around execute() belong to the PipelineController.

Example:
    class SplitStage(BaseStage):
        name = PipelineStage.SPLIT
        depends_on = [PipelineStage.MERGE]

        def required_artifacts(self, context):
            return [context.paths.merged_path]

        async def execute(self, context: StageContext) -> dict:
            ...
            return {"segment_count": count}
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Iterable

from reelcutter.models.schemas import PipelineStage, Project
from reelcutter.services.store import ProjectPaths, ProjectStore

logger = logging.getLogger(__name__)


class StageError(Exception):
    """Error during stage execution.

    Attributes:
        stage_name: Name of the stage that failed
        message: Error description
        cause: Original exception (if any)
    """

    def __init__(
        self,
        stage_name: str,
        message: str,
        cause: Exception | None = None,
    ):
        self.stage_name = stage_name
        self.message = message
        self.cause = cause
        super().__init__(f"[{stage_name}] {message}")


class PreconditionError(Exception):
    """Required artifact of a previous stage is missing.

    Attributes:
        stage: Stage that cannot start
        missing: Human-readable list of missing items
    """

    def __init__(self, stage: PipelineStage, missing: list[str]):
        self.stage = stage
        self.missing = missing
        super().__init__(
            f"Cannot start {stage.value}: missing {', '.join(missing)}"
        )


@dataclass
class StageContext:
    """Everything a stage run needs.

    Attributes:
        project: Project snapshot taken when the stage was accepted
        process_id: Process id allocated for this run
        paths: Project directory layout
        store: Durable store for progress and records
        segment_id: Target segment (caption stage only)
    """

    project: Project
    process_id: str
    paths: ProjectPaths
    store: ProjectStore
    segment_id: int | None = None

    @property
    def project_id(self) -> str:
        return self.project.id

    async def report(self, percent: float, key: str | None = None) -> None:
        """Write one progress entry (default: the run's own process id)."""
        self.store.set_progress(self.project_id, key or self.process_id, percent)

    def update_if_current(self, stage: PipelineStage, **fields: Any) -> bool:
        """Set project fields only if this run has not been superseded."""
        applied = False

        def apply(project: Project) -> None:
            nonlocal applied
            if getattr(project, stage.process_field) != self.process_id:
                return
            for name, value in fields.items():
                setattr(project, name, value)
            applied = True

        self.store.modify(self.project_id, apply)
        return applied


class BaseStage(ABC):
    """Abstract base class for pipeline stages.

    Subclasses must implement:
    - name: PipelineStage identifier
    - execute(): Async method that performs the work

    Optional overrides:
    - depends_on: Stages whose artifacts this stage consumes
    - required_artifacts(): Files that must exist before start
    """

    name: PipelineStage
    depends_on: list[PipelineStage] = []

    def required_artifacts(self, context: StageContext) -> list[Path]:
        """Files produced by previous stages that this stage reads."""
        return []

    def check_preconditions(self, context: StageContext) -> None:
        """
        Verify required artifacts exist and are non-empty.

        Raises:
            PreconditionError: If anything is missing
        """
        missing = [
            path.relative_to(context.paths.root).as_posix()
            for path in self.required_artifacts(context)
            if not path.exists() or (path.is_file() and path.stat().st_size == 0)
        ]
        if missing:
            raise PreconditionError(self.name, missing)

    @abstractmethod
    async def execute(self, context: StageContext) -> dict[str, Any]:
        """Execute the stage.

        Args:
            context: Run context

        Returns:
            Project fields to set on success

        Raises:
            StageError: If execution fails
        """
        pass

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__}(name='{self.name.value}')>"


async def run_all_or_cancel(aws: Iterable[Awaitable[Any]]) -> list[Any]:
    """
    Run awaitables concurrently; the first failure cancels the rest.

    Results are returned in input order. If the caller is cancelled,
    every child is cancelled and awaited before re-raising.

    Raises:
        Exception: The first child failure
    """
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    for task in pending:
        task.cancel()
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)

    for task in tasks:
        if task in done and not task.cancelled() and task.exception() is not None:
            raise task.exception()

    return [task.result() for task in tasks]
