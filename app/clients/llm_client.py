"""LLM client -- Anthropic Messages API completion port."""

import asyncio
import logging

import httpx

from app.errors import ConfigurationError, RemoteError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Retry configuration
# ---------------------------------------------------------------------------

MAX_RETRIES = 3
RETRY_BACKOFF_BASE = 2.0  # seconds; doubles per retry
_RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 529})


def _compute_wait(retry_after: str | None, attempt: int, backoff_base: float) -> float:
    """Return seconds to wait before retrying.

    Prefers the ``retry-after`` header for 429s. Falls back to exponential
    backoff capped at 60 seconds.
    """
    if retry_after:
        try:
            return min(float(retry_after), 60.0)
        except (ValueError, TypeError):
            pass
    return min(backoff_base ** (attempt + 1), 60.0)


async def _retry_on_transient(
    coro_factory,
    *,
    max_retries: int = MAX_RETRIES,
    backoff_base: float = RETRY_BACKOFF_BASE,
):
    """Retry a coroutine factory on transient HTTP / network errors.

    ``coro_factory`` is a zero-arg callable that returns a new awaitable each
    time (so we can retry fresh).
    """
    last_exc: Exception | None = None
    for attempt in range(max_retries + 1):
        try:
            return await coro_factory()
        except (httpx.TimeoutException, httpx.TransportError) as exc:
            # Covers ReadError, ConnectError, CloseError, etc.
            last_exc = exc
            if attempt < max_retries:
                wait = min(backoff_base ** (attempt + 1), 60.0)
                logger.warning(
                    "LLM request %s (attempt %d/%d), retrying in %.1fs",
                    type(exc).__name__, attempt + 1, max_retries + 1, wait,
                )
                await asyncio.sleep(wait)
            else:
                raise RemoteError(f"Anthropic API unreachable: {exc}") from exc
        except _RetryableStatus as exc:
            last_exc = exc.error
            if attempt < max_retries:
                wait = _compute_wait(exc.retry_after, attempt, backoff_base)
                logger.warning(
                    "LLM request %d (attempt %d/%d), retrying in %.1fs",
                    exc.error.remote_status, attempt + 1, max_retries + 1, wait,
                )
                await asyncio.sleep(wait)
            else:
                raise exc.error from None
    raise last_exc  # type: ignore[misc]  # pragma: no cover


class _RetryableStatus(Exception):
    """Internal carrier for a retryable API status plus its retry-after hint."""

    def __init__(self, error: RemoteError, retry_after: str | None):
        super().__init__(str(error))
        self.error = error
        self.retry_after = retry_after


# ---------------------------------------------------------------------------
# Anthropic
# ---------------------------------------------------------------------------

ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_API_VERSION = "2023-06-01"


def _anthropic_headers(api_key: str) -> dict:
    """Return standard Anthropic API headers."""
    return {
        "x-api-key": api_key,
        "anthropic-version": ANTHROPIC_API_VERSION,
        "Content-Type": "application/json",
    }


def _extract_text(data: dict) -> str:
    content_blocks = data.get("content", [])
    if not content_blocks:
        raise RemoteError("Empty response from Anthropic API")
    text_parts = [b["text"] for b in content_blocks if b.get("type") == "text"]
    if not text_parts:
        raise RemoteError("No text block in Anthropic API response")
    return "\n".join(text_parts)


class AnthropicCompletion:
    """:class:`~app.clients.ports.CompletionPort` over the Anthropic API.

    Owns its ``httpx.AsyncClient`` unless one is passed in.  Call
    :meth:`close` on shutdown.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        http: httpx.AsyncClient | None = None,
        max_retries: int = MAX_RETRIES,
    ) -> None:
        if not api_key:
            raise ConfigurationError("ANTHROPIC_API_KEY is not configured")
        self._api_key = api_key
        self.model = model
        self._http = http or httpx.AsyncClient(timeout=300.0)
        self._max_retries = max_retries

    async def complete(
        self,
        prompt: str,
        max_tokens: int,
        system_prompt: str | None = None,
    ) -> str:
        """Send a single-turn request and return the concatenated text blocks."""
        body: dict = {
            "model": self.model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system_prompt:
            body["system"] = system_prompt

        async def _call() -> str:
            response = await self._http.post(
                ANTHROPIC_MESSAGES_URL,
                headers=_anthropic_headers(self._api_key),
                json=body,
            )
            if response.status_code >= 400:
                try:
                    err_msg = response.json().get("error", {}).get("message", response.text)
                except Exception:
                    err_msg = response.text
                error = RemoteError(
                    f"Anthropic API {response.status_code}: {err_msg}",
                    remote_status=response.status_code,
                )
                if response.status_code in _RETRYABLE_STATUS_CODES:
                    raise _RetryableStatus(error, response.headers.get("retry-after"))
                raise error
            return _extract_text(response.json())

        return await _retry_on_transient(_call, max_retries=self._max_retries)

    async def close(self) -> None:
        await self._http.aclose()
