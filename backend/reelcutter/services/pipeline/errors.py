"""
Controller-level errors surfaced synchronously to API callers.
"""


class ProjectNotFoundError(Exception):
    """Project record does not exist."""

    def __init__(self, project_id: str):
        self.project_id = project_id
        super().__init__(f"Project not found: {project_id}")


class SegmentNotFoundError(Exception):
    """Segment id is not in the project's segment list."""

    def __init__(self, project_id: str, segment_id: int):
        self.project_id = project_id
        self.segment_id = segment_id
        super().__init__(f"Segment {segment_id} not found in project {project_id}")


class ProjectBusyError(Exception):
    """Operation conflicts with running workers of the project."""

    def __init__(self, project_id: str, running: list[str]):
        self.project_id = project_id
        self.running = running
        super().__init__(
            f"Project {project_id} has running jobs: {', '.join(running)}"
        )
