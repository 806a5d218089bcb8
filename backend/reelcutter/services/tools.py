"""
External tool discovery.

Resolves tool names (ffmpeg, ffprobe, yt-dlp, whisper) to executable
paths: configured path first, then PATH, then common install locations.
"""

import logging
import os
import shutil
from pathlib import Path

from reelcutter.config import Settings
from reelcutter.services.process.errors import ToolNotFoundError

logger = logging.getLogger(__name__)

COMMON_LOCATIONS = [
    Path("/usr/local/bin"),
    Path("/usr/bin"),
    Path("/opt/homebrew/bin"),
    Path("/opt/local/bin"),
    Path.home() / ".local" / "bin",
]


class ToolLocator:
    """
    Resolves and caches executable paths for external tools.

    Example:
        locator = ToolLocator.from_settings(settings)
        ffmpeg = locator.resolve("ffmpeg")
        status = locator.check_tools()  # {"ffmpeg": True, ...}
    """

    def __init__(self, configured: dict[str, str] | None = None):
        """
        Initialize locator.

        Args:
            configured: Tool name -> configured command or absolute path
        """
        self.configured = configured or {}
        self._cache: dict[str, str] = {}

    @classmethod
    def from_settings(cls, settings: Settings) -> "ToolLocator":
        return cls(
            {
                "ffmpeg": settings.ffmpeg_path,
                "ffprobe": settings.ffprobe_path,
                "yt-dlp": settings.ytdlp_path,
                "whisper": settings.whisper_path,
            }
        )

    def candidates(self, tool: str) -> list[str]:
        """Paths checked for a tool, in priority order."""
        command = self.configured.get(tool, tool)
        candidates = [command]
        name = Path(command).name
        candidates.extend(str(location / name) for location in COMMON_LOCATIONS)
        return candidates

    def resolve(self, tool: str) -> str:
        """
        Find the executable for a tool.

        Args:
            tool: Tool name

        Returns:
            Executable path

        Raises:
            ToolNotFoundError: If no candidate is executable
        """
        if tool in self._cache:
            return self._cache[tool]

        candidates = self.candidates(tool)
        for candidate in candidates:
            found = shutil.which(candidate)
            if found is None and os.path.isfile(candidate) and os.access(candidate, os.X_OK):
                found = candidate
            if found:
                logger.debug(f"Resolved {tool} -> {found}")
                self._cache[tool] = found
                return found

        raise ToolNotFoundError(tool, candidates)

    def is_available(self, tool: str) -> bool:
        try:
            self.resolve(tool)
        except ToolNotFoundError:
            return False
        return True

    def check_tools(self) -> dict[str, bool]:
        """Availability of every configured tool."""
        tools = self.configured or {name: name for name in ("ffmpeg", "ffprobe", "yt-dlp", "whisper")}
        return {name: self.is_available(name) for name in tools}
