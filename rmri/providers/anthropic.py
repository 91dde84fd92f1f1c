import os
import time
from typing import Any, Dict, Optional

from anthropic import AsyncAnthropic
from dotenv import load_dotenv

from ..config.providers import PROVIDER_SETTINGS
from ..models.generation import CallOptions, ProviderResponse, ProviderType, UsageMetadata
from ..observability.logging import ProviderLogger
from .base import ProviderAdapter, ProviderError
from .errors import ErrorMapper

# Load environment variables
load_dotenv()

logger = ProviderLogger("anthropic")


class AnthropicProvider(ProviderAdapter):
    """Anthropic Messages API provider."""

    provider_type = ProviderType.ANTHROPIC

    def __init__(self, api_key: Optional[str] = None):
        self._client: Optional[AsyncAnthropic] = None
        self._api_key = api_key or os.getenv(PROVIDER_SETTINGS[self.provider_type].api_key_env)

    @property
    def client(self) -> AsyncAnthropic:
        """Lazy initialization of Anthropic client."""
        if self._client is None:
            if not self._api_key:
                raise ProviderError(
                    "Anthropic API key not found in environment variables",
                    provider="anthropic",
                )
            self._client = AsyncAnthropic(api_key=self._api_key)
        return self._client

    def is_available(self) -> bool:
        return bool(self._api_key)

    async def call(self, prompt: str, options: CallOptions) -> ProviderResponse:
        """Call the Messages endpoint."""
        model = options.resolve_model(self.provider_type) or self.default_model()
        payload: Dict[str, Any] = {
            "model": model,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": options.max_tokens,
            "temperature": min(options.temperature, 1.0),
        }
        if options.system_prompt:
            payload["system"] = options.system_prompt

        with logger.track_request("call", model) as request_info:
            start = time.time()
            try:
                response = await self.client.messages.create(**payload)
            except Exception as e:
                raise ErrorMapper.map_anthropic_error(e)

            latency_ms = int((time.time() - start) * 1000)
            text = "".join(
                block.text for block in response.content
                if getattr(block, "type", None) == "text"
            )
            usage = UsageMetadata(latency_ms=latency_ms)
            if getattr(response, "usage", None) is not None:
                input_tokens = response.usage.input_tokens or 0
                output_tokens = response.usage.output_tokens or 0
                usage = UsageMetadata(
                    prompt_tokens=input_tokens,
                    completion_tokens=output_tokens,
                    total_tokens=input_tokens + output_tokens,
                    latency_ms=latency_ms,
                )
                logger.log_usage(usage.model_dump(), model, request_info["request_id"])

            return ProviderResponse(
                provider=self.provider_type,
                model=model,
                output=text,
                confidence=self.score_output(text),
                usage=usage,
            )
