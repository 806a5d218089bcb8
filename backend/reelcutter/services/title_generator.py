"""
Title generator service.

Generates a short title for a segment overlay from its transcript.
Best-effort: any failure returns None and the overlay falls back to
the "Part N" title alone.
"""

import logging

import httpx

from reelcutter.config import Settings, load_prompt
from reelcutter.services.ai_clients import AIClientError, OllamaClient

logger = logging.getLogger(__name__)

MAX_TITLE_WORDS = 5
SAMPLE_THRESHOLD_CHARS = 1000
SAMPLE_WORDS = 100


def sample_transcript(text: str) -> str:
    """
    Shorten long transcripts to beginning, middle and end samples.

    Transcripts up to 1000 chars are returned unchanged; longer ones keep
    100 words from each of the three positions.
    """
    text = text.strip()
    if len(text) <= SAMPLE_THRESHOLD_CHARS:
        return text

    words = text.split()
    if len(words) <= SAMPLE_WORDS * 3:
        return text

    middle_start = len(words) // 2 - SAMPLE_WORDS // 2
    beginning = " ".join(words[:SAMPLE_WORDS])
    middle = " ".join(words[middle_start:middle_start + SAMPLE_WORDS])
    end = " ".join(words[-SAMPLE_WORDS:])
    return f"{beginning} ... {middle} ... {end}"


def clean_title(raw: str) -> str | None:
    """Strip quotes and surrounding noise, cap at five words."""
    first_line = next((line for line in raw.strip().splitlines() if line.strip()), "")
    text = first_line.strip().strip("\"'`“”‘’*").strip()
    if text.lower().startswith("title:"):
        text = text[len("title:"):].strip().strip("\"'`“”‘’")
    words = text.split()
    if not words:
        return None
    return " ".join(words[:MAX_TITLE_WORDS]).rstrip(".!,;:")


class TitleGenerator:
    """Generates short overlay titles via Ollama.

    On error, returns None (does not fail the segment).

    Example:
        generator = TitleGenerator(settings)
        title = await generator.generate("so today we are going to talk about ...")
    """

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings
        self.transport = transport

    async def generate(self, transcript: str) -> str | None:
        """Generate a title for the given transcript.

        Args:
            transcript: Segment transcript text

        Returns:
            Title of at most five words, or None
        """
        if not self.settings.title_enabled:
            return None

        caption_text = sample_transcript(transcript)
        if not caption_text:
            logger.info("Title skipped: empty transcript")
            return None

        try:
            system_prompt = load_prompt("title", "system", self.settings.title_model, self.settings)
            user_template = load_prompt("title", "user", self.settings.title_model, self.settings)
        except FileNotFoundError as e:
            logger.warning(f"Title skipped: {e}")
            return None

        try:
            user_prompt = user_template.format(caption_text=caption_text)
        except (KeyError, IndexError, ValueError) as e:
            logger.warning(f"Title skipped: bad user prompt template: {e!r}")
            return None

        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ]

        try:
            async with OllamaClient.from_settings(self.settings, transport=self.transport) as client:
                content = await client.chat(
                    messages,
                    temperature=0.5,
                    max_tokens=50,
                )
        except (AIClientError, httpx.HTTPError) as e:
            logger.warning(f"Title generation failed: {e}")
            return None

        title = clean_title(content)
        if title:
            logger.info(f"Generated title: {title}")
        else:
            logger.warning("Title generation returned empty text")
        return title
