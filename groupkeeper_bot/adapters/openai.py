from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any, Optional

import httpx
import structlog
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

logger = structlog.get_logger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"
RETRYABLE = (httpx.TimeoutException, httpx.ReadError, httpx.ConnectError)


class OpenAIAdapterError(Exception):
    """Transport, HTTP or payload failure; never a verdict."""


def image_data_url(image: bytes, *, mime: str = "image/jpeg") -> str:
    return f"data:{mime};base64,{base64.b64encode(image).decode('ascii')}"


def _image_part(image: bytes) -> dict[str, Any]:
    return {"type": "image_url", "image_url": {"url": image_data_url(image)}}


class OpenAIAdapter:
    """
    Shared JSON-over-HTTPS transport for the OpenAI endpoints.

    Network hiccups are retried with exponential backoff; HTTP errors and
    malformed bodies surface as OpenAIAdapterError straight away.
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = 15.0,
        client: Optional[httpx.AsyncClient] = None,
        max_attempts: int = 3,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers={"Authorization": f"Bearer {api_key}"},
        )
        self._max_attempts = max_attempts

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            wait=wait_exponential(multiplier=0.5, min=0.5, max=5.0),
            stop=stop_after_attempt(self._max_attempts),
            retry=retry_if_exception_type(RETRYABLE),
            reraise=True,
        )

    async def _send(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        response = await self._client.post(path, json=payload)
        if response.is_error:
            raise OpenAIAdapterError(f"{path} returned {response.status_code}: {response.text[:200]}")
        return response.json()

    async def post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        try:
            async for attempt in self._retrying():
                with attempt:
                    logger.debug("openai_request", path=path, attempt=attempt.retry_state.attempt_number)
                    return await self._send(path, payload)
        except httpx.HTTPError as exc:
            raise OpenAIAdapterError(f"{type(exc).__name__}: {exc}") from exc
        except ValueError as exc:
            raise OpenAIAdapterError(f"{path} returned invalid JSON: {exc}") from exc
        raise OpenAIAdapterError(f"{path}: no attempts made")

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


@dataclass(slots=True)
class OmniModerationResult:
    flagged: bool
    categories: dict[str, bool] = field(default_factory=dict)
    category_scores: dict[str, float] = field(default_factory=dict)

    def flagged_categories(self) -> list[str]:
        return [name for name, hit in self.categories.items() if hit]


class OmniModerationClient(OpenAIAdapter):
    async def classify_image(
        self,
        image: bytes,
        *,
        instruction: Optional[str] = None,
        model: str = "omni-moderation-latest",
    ) -> OmniModerationResult:
        parts: list[dict[str, Any]] = [{"type": "text", "text": instruction}] if instruction else []
        parts.append(_image_part(image))
        logger.debug("omni_image_request", model=model, size=len(image))
        data = await self.post("/moderations", {"model": model, "input": parts})
        try:
            first = data["results"][0]
            return OmniModerationResult(
                flagged=bool(first["flagged"]),
                categories=dict(first.get("categories") or {}),
                category_scores=dict(first.get("category_scores") or {}),
            )
        except (KeyError, IndexError, TypeError) as exc:
            raise OpenAIAdapterError(f"unexpected moderation payload: {exc}") from exc


@dataclass(slots=True)
class ChatCompletionResult:
    content: str
    finish_reason: str = "stop"


class GPTClient(OpenAIAdapter):
    async def ask_about_image(
        self,
        prompt: str,
        image: bytes,
        *,
        model: str = "gpt-4o",
        max_completion_tokens: int = 100,
    ) -> ChatCompletionResult:
        """Single-turn question about one image, answered deterministically."""
        payload = {
            "model": model,
            "messages": [{"role": "user", "content": [{"type": "text", "text": prompt}, _image_part(image)]}],
            "temperature": 0,
            "max_completion_tokens": max_completion_tokens,
        }
        logger.debug("gpt_image_request", model=model, size=len(image))
        data = await self.post("/chat/completions", payload)
        try:
            choice = data["choices"][0]
        except (KeyError, IndexError, TypeError) as exc:
            raise OpenAIAdapterError(f"unexpected completion payload: {exc}") from exc
        message = choice.get("message") or {}
        return ChatCompletionResult(
            content=message.get("content") or "",
            finish_reason=choice.get("finish_reason") or "stop",
        )
