"""
Speech-to-text via the whisper CLI.

Runs whisper with word timestamps and JSON output, then flattens
the result into caption tokens. Word-level tokens are preferred;
segment-level text is the fallback when a segment has no words.
"""

import json
import logging
from pathlib import Path

from reelcutter.models.schemas import CaptionToken
from reelcutter.services.process import (
    ProcessError,
    ProcessRunner,
    ProgressCallback,
    WhisperProgressParser,
)

logger = logging.getLogger(__name__)


def parse_whisper_json(data: dict) -> list[CaptionToken]:
    """
    Convert whisper JSON output to caption tokens.

    Args:
        data: Parsed whisper JSON ({"segments": [{"words": [...], ...}]})

    Returns:
        Tokens ordered by start time, blank words dropped
    """
    tokens: list[CaptionToken] = []

    for segment in data.get("segments") or []:
        words = segment.get("words") or []
        if words:
            for word in words:
                text = (word.get("word") or "").strip()
                if not text:
                    continue
                tokens.append(
                    CaptionToken(
                        start=float(word.get("start", segment.get("start", 0.0))),
                        end=float(word.get("end", segment.get("end", 0.0))),
                        text=text,
                    )
                )
            continue

        # Fallback: whole segment as one token
        text = (segment.get("text") or "").strip()
        if text:
            tokens.append(
                CaptionToken(
                    start=float(segment.get("start", 0.0)),
                    end=float(segment.get("end", 0.0)),
                    text=text,
                )
            )

    tokens.sort(key=lambda t: t.start)
    return tokens


def transcript_text(tokens: list[CaptionToken]) -> str:
    """Plain transcript text from tokens."""
    return " ".join(token.text for token in tokens).strip()


class WhisperCliTranscriber:
    """
    Transcribes audio files with the local whisper CLI.

    Example:
        transcriber = WhisperCliTranscriber(runner, model="base.en")
        tokens = await transcriber.transcribe(Path("temp/audio_1.wav"), Path("temp"))
    """

    def __init__(
        self,
        runner: ProcessRunner,
        model: str = "base.en",
        timeout: float | None = None,
    ):
        """
        Initialize transcriber.

        Args:
            runner: Process runner
            model: Whisper model name
            timeout: Timeout per transcription
        """
        self.runner = runner
        self.model = model
        self.timeout = timeout

    async def transcribe(
        self,
        audio_path: Path,
        output_dir: Path,
        on_progress: ProgressCallback | None = None,
    ) -> list[CaptionToken]:
        """
        Transcribe one audio file.

        Args:
            audio_path: 16 kHz mono WAV
            output_dir: Directory for whisper's JSON output
            on_progress: Progress callback (0-100)

        Returns:
            Caption tokens (may be empty for silent audio)

        Raises:
            ProcessError: If whisper fails or its JSON is unreadable
        """
        output_dir.mkdir(parents=True, exist_ok=True)
        json_path = output_dir / f"{audio_path.stem}.json"

        logger.info(f"Transcribing {audio_path.name} with whisper {self.model}")

        await self.runner.run(
            "whisper",
            [
                str(audio_path),
                "--model", self.model,
                "--output_dir", str(output_dir),
                "--output_format", "json",
                "--word_timestamps", "True",
                "--verbose", "False",
            ],
            parser=WhisperProgressParser(),
            on_progress=on_progress,
            outputs=[json_path],
            timeout=self.timeout,
        )

        try:
            data = json.loads(json_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ProcessError("whisper", f"Unreadable transcript {json_path.name}: {e}") from e

        tokens = parse_whisper_json(data)
        logger.info(f"Transcribed {audio_path.name}: {len(tokens)} tokens")
        return tokens
