"""Gemini generateContent client with a reusable retry policy."""

import asyncio
import base64
import dataclasses
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import httpx
import pydantic

from hairlab.config import Settings
from hairlab.errors import BackendError, ConfigurationError
from hairlab.models import BinaryPart, GenerateContentResponse, MultiModalRequest, TextPart

logger = logging.getLogger(__name__)

T = TypeVar("T")

IMAGE_SAFETY_SETTINGS = [
    {"category": "HARM_CATEGORY_HARASSMENT", "threshold": "BLOCK_ONLY_HIGH"},
    {"category": "HARM_CATEGORY_HATE_SPEECH", "threshold": "BLOCK_ONLY_HIGH"},
    {"category": "HARM_CATEGORY_SEXUALLY_EXPLICIT", "threshold": "BLOCK_ONLY_HIGH"},
    {"category": "HARM_CATEGORY_DANGEROUS_CONTENT", "threshold": "BLOCK_ONLY_HIGH"},
]

TRANSIENT_STATUSES = {408, 429, 500, 502, 503, 504}


def _always(exc: Exception) -> bool:
    return True


def is_transient(exc: Exception) -> bool:
    """Narrower predicate: transport failures, malformed bodies, 408/429/5xx."""
    if not isinstance(exc, BackendError):
        return False
    return exc.status is None or exc.status in TRANSIENT_STATUSES or 200 <= exc.status < 300


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with exponential backoff.

    ``retry_on`` decides whether a caught exception is worth another attempt;
    anything rejected by it is raised immediately. On exhaustion the last
    exception is re-raised as is.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 8.0
    exceptions: tuple = (Exception,)
    retry_on: Callable[[Exception], bool] = _always
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)

    def with_attempts(self, max_attempts: int) -> "RetryPolicy":
        return dataclasses.replace(self, max_attempts=max_attempts)

    async def run(self, fn: Callable[[], Awaitable[T]], label: str = "call") -> T:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await fn()
            except self.exceptions as e:
                if isinstance(e, BackendError):
                    e.attempts = attempt
                if attempt == self.max_attempts or not self.retry_on(e):
                    raise
                delay = self.delay_for(attempt)
                logger.warning(
                    "[%s] Attempt %d/%d failed: %s. Retrying in %.1fs...",
                    label, attempt, self.max_attempts, e, delay,
                )
                await self.sleep(delay)

        raise AssertionError("unreachable")


def _part_to_wire(part) -> dict:
    if isinstance(part, TextPart):
        return {"text": part.text}
    if isinstance(part, BinaryPart):
        return {
            "inlineData": {
                "mimeType": part.mime_type,
                "data": base64.b64encode(part.data).decode("ascii"),
            }
        }
    raise TypeError(f"Unsupported part type: {type(part).__name__}")


def build_request_body(request: MultiModalRequest) -> dict:
    """Translate a MultiModalRequest into the generateContent JSON body."""
    body: dict = {
        "contents": [
            {"role": "user", "parts": [_part_to_wire(part) for part in request.parts]},
        ],
    }
    if request.system_instruction:
        body["systemInstruction"] = {"parts": [{"text": request.system_instruction}]}

    generation_config: dict = {}
    if request.output_contract is not None:
        generation_config["responseMimeType"] = "application/json"
        generation_config["responseSchema"] = request.output_contract
    if request.response_modalities:
        generation_config["responseModalities"] = list(request.response_modalities)
    body["generationConfig"] = generation_config

    if request.safety_settings:
        body["safetySettings"] = list(request.safety_settings)
    return body


class GeminiClient:
    def __init__(
        self,
        settings: Settings,
        http_client: httpx.AsyncClient | None = None,
        retry: RetryPolicy | None = None,
    ):
        if not settings.gemini_api_key:
            raise ConfigurationError("Gemini API key not configured")
        self._settings = settings
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=settings.request_timeout_seconds)
        self._retry = retry or RetryPolicy(
            max_attempts=settings.retry_limit,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            exceptions=(BackendError,),
            retry_on=is_transient if settings.retry_transient_only else _always,
        )

    @property
    def settings(self) -> Settings:
        return self._settings

    def endpoint(self, model: str) -> str:
        return f"{self._settings.gemini_base_url}/{model}:generateContent"

    async def call(
        self,
        model: str,
        request: MultiModalRequest,
        max_attempts: int | None = None,
    ) -> GenerateContentResponse:
        """POST the request, retrying on any failure up to the policy's budget.

        Raises BackendError carrying the last status and body once attempts are
        exhausted. A well-formed 2xx response is returned without further checks.
        """
        url = self.endpoint(model)
        body = build_request_body(request)
        policy = self._retry if max_attempts is None else self._retry.with_attempts(max_attempts)

        logger.info("[gemini] Calling %s with %d part(s)", model, len(request.parts))
        response = await policy.run(lambda: self._post_once(url, body), label=f"gemini:{model}")
        logger.info("[gemini] %s request successful", model)
        return response

    async def _post_once(self, url: str, body: dict) -> GenerateContentResponse:
        try:
            resp = await self._client.post(
                url,
                json=body,
                headers={"x-goog-api-key": self._settings.gemini_api_key},
                timeout=self._settings.request_timeout_seconds,
            )
        except httpx.TimeoutException as e:
            raise BackendError(f"Gemini request timed out: {e!r}") from e
        except httpx.HTTPError as e:
            raise BackendError(f"Gemini request failed: {e!r}") from e

        if not resp.is_success:
            raise BackendError(
                f"Gemini API returned {resp.status_code} {resp.reason_phrase}",
                status=resp.status_code,
                body=resp.text,
            )

        try:
            return GenerateContentResponse.model_validate(resp.json())
        except (ValueError, pydantic.ValidationError) as e:
            raise BackendError(
                f"Gemini API returned a malformed body: {e}",
                status=resp.status_code,
                body=resp.text,
            ) from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "GeminiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
