"""
Configuration and error types for the text-generation client.

Title generation is best-effort, so callers usually catch AIClientError
as a whole; the subclasses only tell the logs why a title is missing.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class AIClientConfig:
    """
    Connection settings for the text-generation service.

    Attributes:
        base_url: Service root without trailing slash
        timeout: Per-request timeout in seconds
        model: Model used when a call names none
    """

    base_url: str
    timeout: float = 60.0
    model: str = "llama3:latest"


class AIClientError(Exception):
    """
    Text-generation request failed.

    Attributes:
        message: Error description
        model: Model the request was sent to
        original_error: Underlying exception if available
    """

    def __init__(
        self,
        message: str,
        model: str | None = None,
        original_error: Exception | None = None,
    ):
        self.message = message
        self.model = model
        self.original_error = original_error
        super().__init__(message)

    def __str__(self) -> str:
        if self.model:
            return f"{self.message} (model={self.model})"
        return self.message


class AIClientTimeoutError(AIClientError):
    """Service did not answer within the configured timeout."""


class AIClientConnectionError(AIClientError):
    """Service is not reachable."""


class AIClientResponseError(AIClientError):
    """
    Service answered with an error status or an unusable body.

    Attributes:
        status_code: HTTP status code (None for malformed bodies)
        response_body: First 500 chars of the body
    """

    def __init__(
        self,
        message: str,
        model: str | None = None,
        status_code: int | None = None,
        response_body: str | None = None,
        original_error: Exception | None = None,
    ):
        super().__init__(message, model=model, original_error=original_error)
        self.status_code = status_code
        self.response_body = response_body
