"""
Shared FastAPI dependencies.
"""

from functools import lru_cache

from fastapi import HTTPException

from reelcutter.config import get_settings
from reelcutter.services.job_manager import get_job_manager
from reelcutter.services.pipeline import (
    ProjectBusyError,
    ProjectNotFoundError,
    SegmentNotFoundError,
)
from reelcutter.services.pipeline.controller import PipelineController
from reelcutter.services.stages import PreconditionError


@lru_cache
def get_controller() -> PipelineController:
    """Get cached pipeline controller instance."""
    return PipelineController.from_settings(get_settings(), jobs=get_job_manager())


def to_http_error(error: Exception) -> HTTPException:
    """
    Map controller errors to HTTP errors.

    - ProjectNotFoundError, SegmentNotFoundError -> 404
    - PreconditionError -> 400
    - ProjectBusyError -> 409
    """
    if isinstance(error, (ProjectNotFoundError, SegmentNotFoundError)):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, PreconditionError):
        return HTTPException(status_code=400, detail=str(error))
    if isinstance(error, ProjectBusyError):
        return HTTPException(status_code=409, detail=str(error))
    return HTTPException(status_code=500, detail=str(error))


CONTROLLER_ERRORS = (
    ProjectNotFoundError,
    SegmentNotFoundError,
    PreconditionError,
    ProjectBusyError,
)
