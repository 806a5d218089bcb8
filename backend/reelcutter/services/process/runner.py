"""
Generic runner for external tool invocations.

Spawns one process, streams its output through a parsing strategy,
throttles progress callbacks and validates declared outputs.

Failure kinds (see errors.py):
- ToolNotFoundError: binary cannot be resolved or spawned
- ProcessFailedError: non-zero exit code, message carries the diagnostic tail
- OutputMissingError: zero exit but a declared output is absent or empty
- ProcessTimeoutError: time limit exceeded, process group killed

Cancelling the awaiting task kills the whole process group before
the CancelledError propagates.
"""

import asyncio
import codecs
import logging
import os
import re
import signal
import time
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Awaitable, Callable, Sequence

from reelcutter.services.process.errors import (
    OutputMissingError,
    ProcessFailedError,
    ProcessTimeoutError,
    ToolNotFoundError,
)
from reelcutter.services.process.parsers import OutputParser, ProgressEvent

if TYPE_CHECKING:
    from reelcutter.services.tools import ToolLocator

logger = logging.getLogger(__name__)

# Type alias for progress callback
# Signature: (percent 0-100) -> None
ProgressCallback = Callable[[float], Awaitable[None]]

LINE_SPLIT = re.compile(r"[\r\n]")
DIAGNOSTIC_LIMIT = 2000  # chars of output tail kept for error messages
KILL_GRACE_SECONDS = 5.0


@dataclass
class ProcessResult:
    """Successful invocation result."""

    tool: str
    returncode: int
    stdout: str = ""
    diagnostics: str = ""
    outputs: list[Path] = field(default_factory=list)


class ProgressThrottle:
    """
    Forwards progress at most once per interval.

    Repeated identical values are dropped. Forced updates (start, terminal
    100) bypass the interval. Callback errors are logged, never raised.

    Example:
        throttle = ProgressThrottle(callback, interval=1.0)
        await throttle.update(12.5)
        await throttle.update(100, force=True)
    """

    def __init__(
        self,
        callback: ProgressCallback | None,
        interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.callback = callback
        self.interval = interval
        self.clock = clock
        self._last_time: float | None = None
        self._last_value: int | None = None

    async def update(self, percent: float, force: bool = False) -> bool:
        """
        Offer a progress value.

        Returns:
            True if the callback was invoked
        """
        if self.callback is None:
            return False

        value = int(round(min(max(percent, 0.0), 100.0)))
        now = self.clock()

        if not force:
            if value == self._last_value:
                return False
            if self._last_time is not None and now - self._last_time < self.interval:
                return False

        self._last_time = now
        self._last_value = value

        try:
            await self.callback(value)
        except Exception as e:
            # Never fail a tool run due to callback error
            logger.warning(f"Progress callback error: {e}")
        return True


class ProcessRunner:
    """
    Runs external tools as managed subprocesses.

    Example:
        runner = ProcessRunner(ToolLocator.from_settings(settings), progress_interval=1.0)
        await runner.run(
            "ffmpeg",
            ["-i", "in.mp4", "-y", "out.mp4"],
            parser=FfmpegProgressParser(target_duration=60),
            on_progress=callback,
            outputs=[Path("out.mp4")],
        )
    """

    def __init__(
        self,
        locator: "ToolLocator",
        progress_interval: float = 1.0,
        default_timeout: float | None = 3600.0,
    ):
        """
        Initialize runner.

        Args:
            locator: Resolves tool names to executable paths
            progress_interval: Min seconds between progress callbacks
            default_timeout: Timeout when run() gets none (None = unlimited)
        """
        self.locator = locator
        self.progress_interval = progress_interval
        self.default_timeout = default_timeout

    async def run(
        self,
        tool: str,
        args: Sequence[str],
        parser: OutputParser | None = None,
        on_progress: ProgressCallback | None = None,
        outputs: Sequence[Path] = (),
        timeout: float | None = None,
        capture_stdout: bool = False,
    ) -> ProcessResult:
        """
        Run one tool invocation to completion.

        Args:
            tool: Tool name known to the locator ("ffmpeg", "yt-dlp", ...)
            args: Arguments after the executable
            parser: Output parsing strategy (default: ignore output)
            on_progress: Async progress callback (0-100)
            outputs: Files that must exist and be non-empty on success
            timeout: Seconds before the process group is killed
            capture_stdout: Keep full stdout in the result

        Returns:
            ProcessResult on success

        Raises:
            ToolNotFoundError: Tool missing
            ProcessFailedError: Non-zero exit
            OutputMissingError: Declared output absent or empty
            ProcessTimeoutError: Timeout exceeded
        """
        parser = parser or OutputParser()
        timeout = timeout if timeout is not None else self.default_timeout
        throttle = ProgressThrottle(on_progress, self.progress_interval)

        executable = self.locator.resolve(tool)
        cmd = [executable, *[str(a) for a in args]]
        logger.debug(f"Running {tool}: {' '.join(cmd)}")

        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise ToolNotFoundError(tool, [executable]) from e

        start_event = parser.on_start()
        if start_event is not None:
            await throttle.update(start_event.percent, force=True)

        tail: deque[str] = deque(maxlen=200)
        stdout_parts: list[str] = []

        async def consume(stream: asyncio.StreamReader, is_stdout: bool) -> None:
            decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
            pending = ""
            while True:
                chunk = await stream.read(4096)
                decoded = decoder.decode(chunk, final=not chunk)
                if is_stdout and capture_stdout:
                    stdout_parts.append(decoded)
                *lines, pending = LINE_SPLIT.split(pending + decoded)
                for line in lines:
                    await handle_line(line)
                if not chunk:
                    break
            if pending:
                await handle_line(pending)

        async def handle_line(line: str) -> None:
            if not line.strip():
                return
            tail.append(line.strip())
            event = parser.parse_line(line)
            if isinstance(event, ProgressEvent):
                await throttle.update(event.percent)

        try:
            await asyncio.wait_for(
                asyncio.gather(
                    consume(process.stdout, True),
                    consume(process.stderr, False),
                    process.wait(),
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            logger.error(f"{tool} timed out after {timeout}s (pid {process.pid})")
            await self._kill(process)
            raise ProcessTimeoutError(tool, timeout or 0.0)
        except asyncio.CancelledError:
            logger.info(f"{tool} cancelled, killing pid {process.pid}")
            await self._kill(process)
            raise

        diagnostics = _tail_text(tail)

        if process.returncode != 0:
            logger.error(f"{tool} failed (code {process.returncode}): {diagnostics[-500:]}")
            raise ProcessFailedError(tool, process.returncode, diagnostics)

        for path in outputs:
            path = Path(path)
            if not path.exists() or path.stat().st_size == 0:
                logger.error(f"{tool} exited 0 but {path} is missing or empty")
                raise OutputMissingError(tool, path)

        await throttle.update(100, force=True)

        return ProcessResult(
            tool=tool,
            returncode=process.returncode,
            stdout="".join(stdout_parts),
            diagnostics=diagnostics,
            outputs=[Path(p) for p in outputs],
        )

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        """Terminate the process group, escalating to SIGKILL."""
        if process.returncode is not None:
            return

        for sig, grace in ((signal.SIGTERM, KILL_GRACE_SECONDS), (signal.SIGKILL, None)):
            try:
                os.killpg(process.pid, sig)
            except ProcessLookupError:
                return
            except PermissionError as e:
                logger.warning(f"Cannot signal process group {process.pid}: {e}")
                process.kill()

            try:
                await asyncio.wait_for(asyncio.shield(process.wait()), timeout=grace)
                return
            except asyncio.TimeoutError:
                continue


def _tail_text(lines: deque[str], limit: int = DIAGNOSTIC_LIMIT) -> str:
    """Join the last lines of output, keeping at most limit chars."""
    text = "\n".join(lines)
    if len(text) > limit:
        text = "…" + text[-limit:]
    return text
