"""
Debug provider: a human (or a script) answers instead of a model.

The provider posts the fully assembled context to a local debug server and
yields whatever the server sends back as a single terminal chunk. It's
useful for inspecting context assembly without spending API tokens.

Before each completion a short liveness probe (GET /health, 1s timeout)
checks that the server is running, so a missing server fails fast with an
actionable message instead of hanging on the main request.
"""

from collections.abc import AsyncIterator
from typing import Any

import httpx

from tinkerchat.config.logging import get_logger
from tinkerchat.context.models import Context
from tinkerchat.llm.base import Provider
from tinkerchat.llm.models import (
    CompletionOptions,
    LLMError,
    ProtocolError,
    ProviderCapabilities,
    ProviderInfo,
    StreamChunk,
    TokenUsage,
)

logger = get_logger(__name__)

DEFAULT_HOST = "localhost"
DEFAULT_PORT = 7331
HEALTH_TIMEOUT = 1.0


class DebugProvider(Provider):
    """
    Sends context to a debug server for a manual response.

    Args:
        host: Debug server host
        port: Debug server port
        client: Pre-built httpx.AsyncClient (tests inject a MockTransport)
    """

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = f"http://{host}:{port}"
        self.info = ProviderInfo(
            id="debug",
            name="Debug Provider",
            model="human",
            capabilities=ProviderCapabilities(
                max_context_tokens=100_000,
                max_output_tokens=100_000,
                streaming=False,
            ),
        )
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(10.0, read=None))
            self._owns_client = True
        return self._client

    async def check_health(self) -> None:
        """
        Probe the debug server.

        Raises:
            LLMError: If the server is unreachable or unhealthy
        """
        try:
            response = await self._get_client().get(
                f"{self.base_url}/health", timeout=HEALTH_TIMEOUT
            )
        except httpx.HTTPError as e:
            raise LLMError(
                f"Debug server not available at {self.base_url}. "
                f"Start it before using the debug provider.",
                cause=e,
            ) from e

        if not response.is_success:
            raise LLMError(
                f"Debug server at {self.base_url} is unhealthy (HTTP {response.status_code})"
            )

    @staticmethod
    def _request_body(context: Context, options: CompletionOptions | None) -> dict[str, Any]:
        options = options or CompletionOptions()
        return {
            "systemPrompt": context.system_prompt,
            "items": [
                {
                    "type": item.type,
                    "content": item.content,
                    "tokens": item.token_count,
                    "priority": item.priority.value,
                    "source": item.source.model_dump(mode="json", exclude={"embedding"})
                    if item.source is not None
                    else None,
                }
                for item in context.items
            ],
            "budget": {
                "total": context.budget.total,
                "used": context.budget.used,
                "available": context.budget.available,
                "reserved": context.budget.reserved,
            },
            "options": {
                "maxTokens": options.max_tokens,
                "temperature": options.temperature,
            },
        }

    async def complete(
        self,
        context: Context,
        options: CompletionOptions | None = None,
    ) -> AsyncIterator[StreamChunk]:
        """Send context to the debug server and yield its reply as one chunk."""
        await self.check_health()

        try:
            response = await self._get_client().post(
                f"{self.base_url}/complete", json=self._request_body(context, options)
            )
        except httpx.HTTPError as e:
            raise LLMError(f"Debug server request failed: {e}", cause=e) from e

        if not response.is_success:
            raise ProtocolError(
                f"Debug server error: {response.text}",
                status_code=response.status_code,
                body=response.text,
            )

        result = response.json()
        usage = result.get("usage")
        yield StreamChunk(
            content=result.get("content", ""),
            done=True,
            usage=TokenUsage(
                prompt_tokens=usage.get("promptTokens", 0),
                completion_tokens=usage.get("completionTokens", 0),
                total_tokens=usage.get("totalTokens", 0),
            )
            if usage
            else None,
        )

    def translate_record_kind(self, kind) -> str:
        """Pass kinds through unchanged; the debug server shows them verbatim."""
        return str(getattr(kind, "value", kind))

    async def shutdown(self) -> None:
        """Close the HTTP client if this provider created it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
