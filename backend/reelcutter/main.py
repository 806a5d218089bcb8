"""
FastAPI application for the media pipeline.

Provides HTTP API for downloading, merging, splitting and captioning
clips; clients poll project status for progress.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from reelcutter.api import process_routes, routes
from reelcutter.api.dependencies import get_controller
from reelcutter.config import get_settings
from reelcutter.logging_config import setup_logging
from reelcutter.services.ai_clients import OllamaClient
from reelcutter.services.job_manager import get_job_manager
from reelcutter.services.tools import ToolLocator

# Configure logging before anything else
settings = get_settings()
setup_logging(settings)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan handler.

    Logs startup info, checks external tools, fails records left
    in-progress by a previous run and cancels running jobs on shutdown.
    """
    logger.info("Starting Reelcutter API")
    logger.info(f"Log level: {settings.log_level}")
    logger.info(f"Projects directory: {settings.projects_root}")

    settings.projects_root.mkdir(parents=True, exist_ok=True)

    tools = ToolLocator.from_settings(settings).check_tools()
    missing = [name for name, available in tools.items() if not available]
    if missing:
        logger.warning(f"External tools not found: {', '.join(missing)}")
    else:
        logger.info("External tools: all available")

    recovered = get_controller().recover_interrupted()
    if recovered:
        logger.warning(f"Marked {recovered} interrupted project(s) as failed")

    yield

    logger.info("Shutting down Reelcutter API")
    await get_job_manager().shutdown()


app = FastAPI(
    title="Reelcutter API",
    description="API for downloading, merging, splitting and captioning short vertical clips",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware for frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(routes.router)
app.include_router(process_routes.router)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Report malformed or missing request fields as 400."""
    return JSONResponse(status_code=400, content={"detail": exc.errors()})


@app.get("/health")
async def health_check() -> dict:
    """
    Health check endpoint.

    Returns:
        Basic health status
    """
    return {"status": "ok"}


@app.get("/health/tools")
async def tools_health() -> dict:
    """
    Check external tool and title service availability.

    Returns:
        Availability of ffmpeg, ffprobe, yt-dlp, whisper and Ollama
    """
    settings = get_settings()
    tools = ToolLocator.from_settings(settings).check_tools()
    async with OllamaClient.from_settings(settings) as client:
        status = await client.check_services()
    return {
        **tools,
        "ollama": status["ollama"],
        "ollama_url": settings.ollama_url,
        "title_model": settings.title_model,
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "reelcutter.main:app",
        host="0.0.0.0",
        port=8802,
        reload=True,
    )
