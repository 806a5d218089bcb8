"""Tests for overlay title generation (Ollama calls mocked with httpx.MockTransport)."""

import json
from pathlib import Path

import httpx
import pytest

from reelcutter.config import Settings
from reelcutter.services.ai_clients import AIClientResponseError, OllamaClient
from reelcutter.services.title_generator import TitleGenerator, clean_title, sample_transcript

pytestmark = pytest.mark.anyio


def chat_transport(content: str | None, requests: list[dict] | None = None) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/version":
            return httpx.Response(200, json={"version": "0.3.0"})
        if requests is not None:
            requests.append(json.loads(request.content))
        return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})

    return httpx.MockTransport(handler)


def failing_transport(status_code: int) -> httpx.MockTransport:
    return httpx.MockTransport(lambda request: httpx.Response(status_code, text="model not found"))


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(projects_root=tmp_path, ollama_url="http://ollama.test:11434/")


class TestTextHelpers:
    def test_short_transcript_unchanged(self) -> None:
        assert sample_transcript("  just a few words ") == "just a few words"

    def test_long_transcript_sampled(self) -> None:
        words = [f"w{i}" for i in range(1000)]
        sampled = sample_transcript(" ".join(words))

        parts = sampled.split(" ... ")
        assert len(parts) == 3
        assert parts[0].split()[0] == "w0"
        assert parts[1].split()[0] == "w450"
        assert parts[2].split()[-1] == "w999"
        assert all(len(part.split()) == 100 for part in parts)

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ('"Cats Always Land Safely"', "Cats Always Land Safely"),
            ("Title: One Two Three Four Five Six", "One Two Three Four Five"),
            ("Big News!\nExplanation follows", "Big News"),
            ("   ", None),
        ],
    )
    def test_clean_title(self, raw: str, expected: str | None) -> None:
        assert clean_title(raw) == expected


class TestTitleGenerator:
    async def test_generates_clean_title(self, settings: Settings) -> None:
        requests: list[dict] = []
        generator = TitleGenerator(settings, transport=chat_transport('"Why Cats Land Upright"', requests))

        title = await generator.generate("so today we talk about cats and how they land")

        assert title == "Why Cats Land Upright"
        assert requests[0]["model"] == settings.title_model
        assert requests[0]["max_tokens"] == 50
        assert "cats and how they land" in requests[0]["messages"][1]["content"]

    async def test_service_error_returns_none(self, settings: Settings) -> None:
        generator = TitleGenerator(settings, transport=failing_transport(500))
        assert await generator.generate("some transcript") is None

    async def test_disabled(self, tmp_path: Path) -> None:
        requests: list[dict] = []
        settings = Settings(projects_root=tmp_path, title_enabled=False)
        generator = TitleGenerator(settings, transport=chat_transport("x", requests))

        assert await generator.generate("some transcript") is None
        assert requests == []

    async def test_empty_transcript(self, settings: Settings) -> None:
        assert await TitleGenerator(settings, transport=chat_transport("x")).generate("  ") is None

    async def test_missing_prompts(self, tmp_path: Path) -> None:
        settings = Settings(projects_root=tmp_path, config_dir=tmp_path / "no-config")
        generator = TitleGenerator(settings, transport=chat_transport("Title"))
        assert await generator.generate("some transcript") is None

    async def test_null_content_returns_none(self, settings: Settings) -> None:
        generator = TitleGenerator(settings, transport=chat_transport(None))
        assert await generator.generate("some transcript") is None

    async def test_user_prompt_with_literal_braces(self, tmp_path: Path) -> None:
        external = tmp_path / "prompts"
        (external / "title").mkdir(parents=True)
        (external / "title" / "user.md").write_text('Answer as {"title": "..."}\n\n{caption_text}')
        settings = Settings(projects_root=tmp_path, prompts_dir=external)
        requests: list[dict] = []
        generator = TitleGenerator(settings, transport=chat_transport("Title", requests))

        assert await generator.generate("some transcript") is None
        assert requests == []


class TestOllamaClient:
    async def test_check_services(self, settings: Settings) -> None:
        async with OllamaClient.from_settings(settings, transport=chat_transport("x")) as client:
            status = await client.check_services()
        assert status == {"ollama": True, "ollama_version": "0.3.0"}

    async def test_http_error_mapped(self, settings: Settings) -> None:
        async with OllamaClient.from_settings(settings, transport=failing_transport(404)) as client:
            with pytest.raises(AIClientResponseError) as exc_info:
                await client.chat([{"role": "user", "content": "hi"}])
        assert exc_info.value.status_code == 404

    async def test_null_content_is_empty_text(self, settings: Settings) -> None:
        async with OllamaClient.from_settings(settings, transport=chat_transport(None)) as client:
            assert await client.chat([{"role": "user", "content": "hi"}]) == ""
