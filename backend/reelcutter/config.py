"""
Application configuration and settings.
"""

from functools import lru_cache
from pathlib import Path

import yaml
from pydantic_settings import BaseSettings

BACKEND_DIR = Path(__file__).resolve().parent.parent


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Paths
    projects_root: Path = Path("/data/projects")
    config_dir: Path = BACKEND_DIR / "config"
    prompts_dir: Path | None = None  # External prompts directory (overrides built-in)

    # External tools (bare names are resolved via PATH and common locations)
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    ytdlp_path: str = "yt-dlp"
    whisper_path: str = "whisper"
    whisper_model: str = "base.en"

    # Pipeline
    segment_length: float = 60.0
    caption_concurrency: int = 2
    progress_interval: float = 1.0  # Min seconds between stored progress updates
    process_timeout: float = 3600.0
    probe_timeout: float = 60.0

    # Title generation (Ollama, OpenAI-compatible endpoint)
    ollama_url: str = "http://localhost:11434"
    title_model: str = "llama3:latest"
    title_timeout: float = 60.0
    title_enabled: bool = True

    # Logging
    log_level: str = "INFO"
    log_format: str = "structured"  # "simple" or "structured"

    # Per-module log levels (optional overrides)
    log_level_process: str | None = None
    log_level_pipeline: str | None = None
    log_level_stages: str | None = None
    log_level_store: str | None = None
    log_level_titles: str | None = None

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def prompt_candidates(
    stage: str,
    component: str,
    model: str | None = None,
    settings: Settings | None = None,
) -> list[Path]:
    """
    Prompt files checked for a component, highest priority first.

    External prompts_dir wins over the built-in config/prompts; within
    each, a model-family file ("user_llama.md" for "llama3:latest")
    wins over the generic one.
    """
    if settings is None:
        settings = get_settings()

    names = [f"{component}.md"]
    if model:
        family = model.split(":")[0].rstrip("0123456789.")
        names.insert(0, f"{component}_{family}.md")

    roots = [settings.config_dir / "prompts"]
    if settings.prompts_dir and settings.prompts_dir.exists():
        roots.insert(0, settings.prompts_dir)

    return [root / stage / name for root in roots for name in names]


def load_prompt(
    stage: str,
    component: str,
    model: str | None = None,
    settings: Settings | None = None,
) -> str:
    """
    Load a prompt template.

    Args:
        stage: Prompt group ("title")
        component: Prompt component ("system", "user")
        model: Model name for model-specific prompts (optional)
        settings: Optional settings instance

    Returns:
        Prompt template content

    Raises:
        FileNotFoundError: If no candidate file exists
    """
    candidates = prompt_candidates(stage, component, model, settings)
    for path in candidates:
        if path.exists():
            return path.read_text(encoding="utf-8")

    raise FileNotFoundError(
        f"Prompt not found: {stage}/{component} (checked: {', '.join(str(p) for p in candidates)})"
    )


def load_encoding_config(settings: Settings | None = None) -> dict:
    """
    Load ffmpeg presets and overlay styling from config/encoding.yaml.

    A missing file yields an empty dict; callers fall back to
    their built-in defaults key by key.

    Args:
        settings: Optional settings instance

    Returns:
        Encoding configuration dictionary
    """
    if settings is None:
        settings = get_settings()

    encoding_path = settings.config_dir / "encoding.yaml"
    if not encoding_path.exists():
        return {}

    with open(encoding_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}
