"""
HTTP API routes for projects.

Provides endpoints for:
- Creating and listing projects
- Querying project status with aggregated progress
- Listing and deleting segments
- Deleting projects and cleaning temp files
"""

import logging

from fastapi import APIRouter, Depends

from reelcutter.api.dependencies import CONTROLLER_ERRORS, get_controller, to_http_error
from reelcutter.models.schemas import (
    CleanupResult,
    CreateProjectRequest,
    DeleteResult,
    Project,
    ProjectCreated,
    ProjectStatusResponse,
    Segment,
)
from reelcutter.services.pipeline.controller import PipelineController

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/projects", tags=["projects"])


@router.post("", response_model=ProjectCreated)
async def create_project(
    request: CreateProjectRequest,
    controller: PipelineController = Depends(get_controller),
) -> ProjectCreated:
    """
    Create a project from two source clips.

    Args:
        request: Source locations and optional trim offsets

    Returns:
        New project id and its initial status

    Raises:
        400: Missing or malformed fields
    """
    project = controller.create_project(request)
    logger.info(f"Created project {project.id} ({project.status.value})")
    return ProjectCreated(project_id=project.id, status=project.status)


@router.get("", response_model=list[Project])
async def list_projects(
    controller: PipelineController = Depends(get_controller),
) -> list[Project]:
    """List all projects, newest first."""
    return controller.list_projects()


@router.get("/{project_id}", response_model=ProjectStatusResponse)
async def get_project_status(
    project_id: str,
    controller: PipelineController = Depends(get_controller),
) -> ProjectStatusResponse:
    """
    Get project record and aggregated progress of its current stage.

    Raises:
        404: Project not found
    """
    try:
        return controller.get_status(project_id)
    except CONTROLLER_ERRORS as e:
        raise to_http_error(e) from e


@router.get("/{project_id}/segments", response_model=list[Segment])
async def get_segments(
    project_id: str,
    controller: PipelineController = Depends(get_controller),
) -> list[Segment]:
    """
    Get the segment list (empty before the first split).

    Raises:
        404: Project not found
    """
    try:
        return controller.get_segments(project_id)
    except CONTROLLER_ERRORS as e:
        raise to_http_error(e) from e


@router.delete("/{project_id}", response_model=DeleteResult)
async def delete_project(
    project_id: str,
    controller: PipelineController = Depends(get_controller),
) -> DeleteResult:
    """
    Cancel running jobs and delete the project with all files.

    Raises:
        404: Project not found
    """
    try:
        deleted = await controller.delete_project(project_id)
    except CONTROLLER_ERRORS as e:
        raise to_http_error(e) from e
    return DeleteResult(project_id=project_id, deleted=deleted)


@router.delete("/{project_id}/segments", response_model=DeleteResult)
async def delete_segments(
    project_id: str,
    controller: PipelineController = Depends(get_controller),
) -> DeleteResult:
    """
    Delete segment media, captioned outputs and the segment list.

    Raises:
        404: Project not found
    """
    try:
        deleted = await controller.delete_segments(project_id)
    except CONTROLLER_ERRORS as e:
        raise to_http_error(e) from e
    return DeleteResult(project_id=project_id, deleted=deleted)


@router.post("/{project_id}/cleanup", response_model=CleanupResult)
async def cleanup_temp_files(
    project_id: str,
    controller: PipelineController = Depends(get_controller),
) -> CleanupResult:
    """
    Remove intermediate files from the project's temp directory.

    Raises:
        404: Project not found
        409: Captioning workers are running
    """
    try:
        removed = controller.cleanup_temp(project_id)
    except CONTROLLER_ERRORS as e:
        raise to_http_error(e) from e
    return CleanupResult(project_id=project_id, removed_files=removed)
