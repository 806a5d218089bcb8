"""
Error hierarchy for external tool invocations.

All errors carry the tool name so stage error messages read
"[merge] ffmpeg exited with code 1: <diagnostics>".
"""

from pathlib import Path


class ProcessError(Exception):
    """Base error for external process failures.

    Attributes:
        tool: Tool name (e.g. "ffmpeg")
        message: Error description
    """

    def __init__(self, tool: str, message: str):
        self.tool = tool
        self.message = message
        super().__init__(message)


class ToolNotFoundError(ProcessError):
    """Required binary is not discoverable."""

    def __init__(self, tool: str, searched: list[str] | None = None):
        self.searched = searched or []
        message = f"{tool} not found"
        if self.searched:
            message += f" (searched: {', '.join(self.searched)})"
        super().__init__(tool, message)


class ProcessFailedError(ProcessError):
    """Non-zero exit code.

    Attributes:
        returncode: Process exit code
        diagnostics: Tail of the tool's diagnostic output
    """

    def __init__(self, tool: str, returncode: int, diagnostics: str = ""):
        self.returncode = returncode
        self.diagnostics = diagnostics
        message = f"{tool} exited with code {returncode}"
        if diagnostics:
            message += f": {diagnostics}"
        super().__init__(tool, message)


class OutputMissingError(ProcessError):
    """Zero exit code but a declared output is absent or empty."""

    def __init__(self, tool: str, path: Path):
        self.path = path
        super().__init__(tool, f"{tool} produced no output at {path.name}")


class ProcessTimeoutError(ProcessError):
    """Process exceeded its time limit and was killed."""

    def __init__(self, tool: str, timeout: float):
        self.timeout = timeout
        super().__init__(tool, f"{tool} timed out after {timeout:.0f}s")
