"""
Stage trigger routes.

Every start endpoint returns as soon as the stage is accepted; progress
and results are observed by polling GET /api/projects/{project_id}.
"""

import logging

from fastapi import APIRouter, Depends

from reelcutter.api.dependencies import CONTROLLER_ERRORS, get_controller, to_http_error
from reelcutter.models.schemas import (
    BatchCaptionStarted,
    CaptioningSummary,
    CaptionRequest,
    PipelineStage,
    ProcessStarted,
)
from reelcutter.services.pipeline.controller import PipelineController

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/projects/{project_id}/process", tags=["processing"])


@router.post("/download", response_model=ProcessStarted)
async def start_download(
    project_id: str,
    controller: PipelineController = Depends(get_controller),
) -> ProcessStarted:
    """
    Download the visual and audio tracks.

    Raises:
        404: Project not found
    """
    try:
        process_id = await controller.start_download(project_id)
    except CONTROLLER_ERRORS as e:
        raise to_http_error(e) from e
    return ProcessStarted(project_id=project_id, stage=PipelineStage.DOWNLOAD, process_id=process_id)


@router.post("/merge", response_model=ProcessStarted)
async def start_merge(
    project_id: str,
    controller: PipelineController = Depends(get_controller),
) -> ProcessStarted:
    """
    Merge downloaded tracks into one vertical clip.

    Raises:
        400: Downloaded tracks missing
        404: Project not found
    """
    try:
        process_id = await controller.start_merge(project_id)
    except CONTROLLER_ERRORS as e:
        raise to_http_error(e) from e
    return ProcessStarted(project_id=project_id, stage=PipelineStage.MERGE, process_id=process_id)


@router.post("/split", response_model=ProcessStarted)
async def start_split(
    project_id: str,
    controller: PipelineController = Depends(get_controller),
) -> ProcessStarted:
    """
    Split the merged clip into fixed-length segments.

    Raises:
        400: Merged clip missing
        404: Project not found
    """
    try:
        process_id = await controller.start_split(project_id)
    except CONTROLLER_ERRORS as e:
        raise to_http_error(e) from e
    return ProcessStarted(project_id=project_id, stage=PipelineStage.SPLIT, process_id=process_id)


@router.post("/caption", response_model=ProcessStarted)
async def start_caption(
    project_id: str,
    request: CaptionRequest,
    controller: PipelineController = Depends(get_controller),
) -> ProcessStarted:
    """
    Caption one segment (retries if it is already running).

    Raises:
        400: No segment list
        404: Project or segment not found
    """
    try:
        process_id = await controller.start_caption(project_id, request.segment_number)
    except CONTROLLER_ERRORS as e:
        raise to_http_error(e) from e
    return ProcessStarted(
        project_id=project_id,
        stage=PipelineStage.CAPTION,
        process_id=process_id,
        segment_id=request.segment_number,
    )


@router.post("/caption/all", response_model=BatchCaptionStarted)
async def start_caption_all(
    project_id: str,
    include_completed: bool = False,
    controller: PipelineController = Depends(get_controller),
) -> BatchCaptionStarted:
    """
    Caption every segment not yet completed through the worker pool.

    Raises:
        400: No segment list
        404: Project not found
    """
    try:
        process_ids = await controller.start_caption_all(project_id, include_completed)
    except CONTROLLER_ERRORS as e:
        raise to_http_error(e) from e
    return BatchCaptionStarted(project_id=project_id, process_ids=process_ids)


@router.get("/caption", response_model=CaptioningSummary)
async def get_captioning_summary(
    project_id: str,
    controller: PipelineController = Depends(get_controller),
) -> CaptioningSummary:
    """
    Segment ids grouped by captioning status.

    Raises:
        400: No segment list
        404: Project not found
    """
    try:
        return controller.captioning_summary(project_id)
    except CONTROLLER_ERRORS as e:
        raise to_http_error(e) from e


@router.post("/{stage}/cancel")
async def cancel_stage(
    project_id: str,
    stage: PipelineStage,
    controller: PipelineController = Depends(get_controller),
) -> dict:
    """
    Cancel running jobs of a stage.

    Cancelled workers record the stage (or segment) as failed.

    Raises:
        404: Project not found
    """
    try:
        cancelled = await controller.cancel_stage(project_id, stage)
    except CONTROLLER_ERRORS as e:
        raise to_http_error(e) from e
    return {"project_id": project_id, "stage": stage.value, "cancelled": cancelled}
