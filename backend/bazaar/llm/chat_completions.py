"""
OpenAI-compatible chat completions provider.

WHAT: One httpx client for LM Studio (local) and OpenRouter (cloud)
WHY: Both expose /models and /chat/completions with the same payloads; only the
     base URL, auth header and enablement differ
HOW: AsyncClient with connection pooling, exponential-backoff retries on timeout,
     connect errors and 5xx; no retry on 4xx; <think> blocks stripped from output
"""

import asyncio
import json
import re

import httpx

from .types import (
    ChatMessage,
    LLMResult,
    ProviderStatus,
    ProviderDisabledError,
    ProviderTimeoutError,
    ProviderUnavailableError,
    ProviderResponseError,
)
from ..core.config import settings
from ..utils.logger import get_logger

logger = get_logger(__name__)

_THINK_BLOCK = re.compile(r"<think(?:ing)?>.*?</think(?:ing)?>\s*", re.DOTALL | re.IGNORECASE)
_THINK_TAG = re.compile(r"</?think(?:ing)?>\s*", re.IGNORECASE)


def strip_thinking_blocks(text: str) -> str:
    """Remove <think>...</think> reasoning blocks and stray tags."""
    text = _THINK_BLOCK.sub("", text or "")
    return _THINK_TAG.sub("", text).strip()


class ChatCompletionsProvider:
    """Chat completions provider with retry logic."""

    def __init__(
        self,
        name: str,
        base_url: str,
        default_model: str,
        *,
        timeout: float,
        api_key: str | None = None,
        enabled: bool = True,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        extra_payload: dict | None = None,
    ):
        """
        Initialize provider with an httpx client.

        Args:
            name: Provider label used in logs and status
            base_url: API root (ending in /v1)
            default_model: Model used when a call does not name one
            timeout: Read timeout in seconds
            api_key: Bearer token (OpenRouter)
            enabled: Disabled providers raise ProviderDisabledError on use
            max_retries: Attempts per generate call
            retry_delay: Base delay for exponential backoff
            extra_payload: Provider-specific request fields
        """
        self.name = name
        self.base_url = base_url.rstrip("/")
        self.default_model = default_model
        self.timeout = timeout
        self.enabled = enabled
        self.max_retries = max_retries or settings.LLM_MAX_RETRIES
        self.retry_delay = settings.LLM_RETRY_DELAY if retry_delay is None else retry_delay
        self.extra_payload = extra_payload or {}

        headers = {}
        if api_key:
            headers = {
                "Authorization": f"Bearer {api_key}",
                "HTTP-Referer": settings.APP_NAME,
                "X-Title": settings.APP_NAME,
            }

        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(5.0, read=self.timeout),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
            headers=headers,
        )

    @classmethod
    def lm_studio(cls) -> "ChatCompletionsProvider":
        """Local LM Studio server from settings."""
        return cls(
            "lm_studio",
            settings.LM_STUDIO_BASE_URL,
            settings.LM_STUDIO_DEFAULT_MODEL,
            timeout=settings.LM_STUDIO_TIMEOUT,
            # Qwen3 reasoning off
            extra_payload={"enable_thinking": False},
        )

    @classmethod
    def openrouter(cls) -> "ChatCompletionsProvider":
        """
        OpenRouter from settings.

        Raises:
            ProviderDisabledError: If enabled without an API key
        """
        enabled = settings.LLM_ENABLE_OPENROUTER
        api_key = settings.OPENROUTER_API_KEY.strip()
        if enabled and not api_key:
            logger.error("OpenRouter enabled but OPENROUTER_API_KEY is not set")
            raise ProviderDisabledError(
                "OpenRouter is enabled but OPENROUTER_API_KEY is not set. "
                "Set OPENROUTER_API_KEY in your .env file."
            )
        return cls(
            "openrouter",
            settings.OPENROUTER_BASE_URL,
            settings.OPENROUTER_DEFAULT_MODEL,
            timeout=settings.OPENROUTER_TIMEOUT,
            api_key=api_key or None,
            enabled=enabled,
        )

    def _check_enabled(self):
        if not self.enabled:
            raise ProviderDisabledError(
                f"{self.name} provider is disabled. Set LLM_ENABLE_OPENROUTER=true to enable."
            )

    async def ping(self) -> ProviderStatus:
        """
        Check provider availability via the models list.

        Returns:
            ProviderStatus with availability and model list
        """
        if not self.enabled:
            return ProviderStatus(available=False, base_url=self.base_url, error="Provider disabled")

        try:
            response = await self.client.get(f"{self.base_url}/models", timeout=5.0)
            response.raise_for_status()
            models = [m.get("id") for m in response.json().get("data", [])]
            return ProviderStatus(available=True, base_url=self.base_url, models=models or None)
        except httpx.TimeoutException:
            logger.warning(f"{self.name} ping timed out")
            return ProviderStatus(available=False, base_url=self.base_url, error="Connection timeout")
        except httpx.ConnectError:
            logger.warning(f"{self.name} not reachable")
            return ProviderStatus(available=False, base_url=self.base_url, error="Connection refused")
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"{self.name} ping failed: {e}")
            return ProviderStatus(available=False, base_url=self.base_url, error=str(e))

    async def generate(
        self,
        messages: list[ChatMessage],
        *,
        temperature: float,
        max_tokens: int,
        stop: list[str] | None = None,
        model: str | None = None
    ) -> LLMResult:
        """
        Generate a complete response.

        Args:
            messages: Conversation history
            temperature: Sampling temperature
            max_tokens: Maximum tokens to generate
            stop: Optional stop sequences
            model: Optional model name (uses default_model if not provided)

        Returns:
            LLMResult with text, usage, and model

        Raises:
            ProviderDisabledError: Provider turned off in configuration
            ProviderTimeoutError: Request timed out on every attempt
            ProviderUnavailableError: Provider not reachable
            ProviderResponseError: Invalid or error response
        """
        self._check_enabled()
        model_to_use = model or self.default_model

        payload = {
            "model": model_to_use,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "stream": False,
            **self.extra_payload,
        }
        if stop:
            payload["stop"] = stop

        for attempt in range(self.max_retries):
            try:
                response = await self.client.post(f"{self.base_url}/chat/completions", json=payload)
                response.raise_for_status()
                data = response.json()

                text = strip_thinking_blocks(data["choices"][0]["message"]["content"])
                usage = data.get("usage", {})
                response_model = data.get("model", model_to_use)

                logger.info(
                    f"{self.name} generate success (model: {response_model}, "
                    f"tokens: {usage.get('total_tokens', 'unknown')})"
                )
                return LLMResult(text=text, usage=usage, model=response_model)

            except httpx.TimeoutException as e:
                logger.warning(f"{self.name} timeout (attempt {attempt + 1}/{self.max_retries})")
                if attempt == self.max_retries - 1:
                    raise ProviderTimeoutError(f"Request timed out after {self.max_retries} attempts") from e
                await asyncio.sleep(self.retry_delay * (2 ** attempt))

            except httpx.ConnectError as e:
                logger.error(f"{self.name} connection refused (attempt {attempt + 1}/{self.max_retries})")
                if attempt == self.max_retries - 1:
                    raise ProviderUnavailableError(f"{self.name} is not reachable") from e
                await asyncio.sleep(self.retry_delay * (2 ** attempt))

            except httpx.HTTPStatusError as e:
                if e.response.status_code >= 500:
                    logger.error(
                        f"{self.name} server error {e.response.status_code} "
                        f"(attempt {attempt + 1}/{self.max_retries})"
                    )
                    if attempt == self.max_retries - 1:
                        raise ProviderResponseError(f"Server error: {e.response.status_code}") from e
                    await asyncio.sleep(self.retry_delay * (2 ** attempt))
                else:
                    raise ProviderResponseError(f"HTTP {e.response.status_code}: {e.response.text}") from e

            except (KeyError, IndexError, TypeError, json.JSONDecodeError) as e:
                logger.error(f"Invalid response from {self.name}: {e}")
                raise ProviderResponseError(f"Invalid response format: {e}") from e

        raise ProviderResponseError(f"{self.name} made no attempts (max_retries={self.max_retries})")

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()
