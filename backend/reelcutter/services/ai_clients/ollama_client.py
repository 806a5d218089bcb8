"""
Ollama client for overlay title generation.

Talks to the OpenAI-compatible /v1/chat/completions endpoint.
Connect errors and timeouts are retried with exponential backoff;
HTTP error statuses are not.
"""

import logging

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from reelcutter.config import Settings
from reelcutter.services.ai_clients.base import (
    AIClientConfig,
    AIClientConnectionError,
    AIClientError,
    AIClientResponseError,
    AIClientTimeoutError,
)

logger = logging.getLogger(__name__)

# Retry configuration for transient errors
RETRY_DECORATOR = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=20),
    retry=retry_if_exception_type((httpx.ConnectError, httpx.TimeoutException)),
    reraise=True,
)


class OllamaClient:
    """
    Async HTTP client for Ollama.

    Example:
        async with OllamaClient.from_settings(settings) as client:
            status = await client.check_services()
            title = await client.chat(messages, temperature=0.5, max_tokens=50)
    """

    def __init__(
        self,
        config: AIClientConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize client.

        Args:
            config: Service URL, timeout and default model
            transport: Optional httpx transport (httpx.MockTransport in tests)
        """
        self.config = config
        self.http_client = httpx.AsyncClient(
            base_url=config.base_url,
            timeout=config.timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "OllamaClient":
        config = AIClientConfig(
            base_url=settings.ollama_url.rstrip("/"),
            timeout=settings.title_timeout,
            model=settings.title_model,
        )
        return cls(config, transport=transport)

    async def close(self) -> None:
        await self.http_client.aclose()

    async def __aenter__(self) -> "OllamaClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def check_services(self) -> dict:
        """
        Probe the service version endpoint.

        Returns:
            {"ollama": bool, "ollama_version": str | None}
        """
        try:
            response = await self.http_client.get("/api/version", timeout=5.0)
            response.raise_for_status()
            version = response.json().get("version")
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"Ollama not available at {self.config.base_url}: {e}")
            return {"ollama": False, "ollama_version": None}

        logger.debug(f"Ollama available, version: {version}")
        return {"ollama": True, "ollama_version": version}

    @RETRY_DECORATOR
    async def _post_chat(self, body: dict) -> httpx.Response:
        response = await self.http_client.post("/v1/chat/completions", json=body)
        response.raise_for_status()
        return response

    async def chat(
        self,
        messages: list[dict],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> str:
        """
        Run one non-streaming chat completion.

        Args:
            messages: Chat messages [{"role": "user", "content": "..."}]
            model: Model name (default: configured title model)
            temperature: Sampling temperature
            max_tokens: Generation limit (None = model default)

        Returns:
            Assistant message content

        Raises:
            AIClientError: Timeout, connection, HTTP or body errors
        """
        model = model or self.config.model
        body: dict = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "stream": False,
        }
        if max_tokens is not None:
            body["max_tokens"] = max_tokens

        logger.debug(f"Chat with {model}, {len(messages)} messages")

        try:
            response = await self._post_chat(body)
            content = response.json()["choices"][0]["message"]["content"]
        except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as e:
            error = self._map_error(e, model)
            logger.error(f"Chat failed: {error}")
            raise error from e

        if not isinstance(content, str):
            logger.warning(f"Chat returned non-text content: {type(content).__name__}")
            return ""

        logger.debug(f"Chat response: {len(content)} chars")
        return content

    def _map_error(self, error: Exception, model: str) -> AIClientError:
        if isinstance(error, httpx.TimeoutException):
            return AIClientTimeoutError("Chat timeout", model=model, original_error=error)
        if isinstance(error, httpx.HTTPStatusError):
            return AIClientResponseError(
                f"Chat failed: HTTP {error.response.status_code}",
                model=model,
                status_code=error.response.status_code,
                response_body=error.response.text[:500],
                original_error=error,
            )
        if isinstance(error, httpx.HTTPError):
            return AIClientConnectionError(
                f"Cannot connect to Ollama at {self.config.base_url}",
                model=model,
                original_error=error,
            )
        return AIClientResponseError("Malformed chat response", model=model, original_error=error)
