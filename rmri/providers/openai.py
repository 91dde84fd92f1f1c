import os
import time
from typing import Any, Dict, List, Optional

from dotenv import load_dotenv
from openai import AsyncOpenAI

from ..config.providers import PROVIDER_SETTINGS
from ..models.generation import CallOptions, ProviderResponse, ProviderType, UsageMetadata
from ..observability.logging import ProviderLogger
from .base import ProviderAdapter, ProviderError
from .errors import ErrorMapper

# Load environment variables
load_dotenv()


class OpenAIProvider(ProviderAdapter):
    """OpenAI Chat Completions provider."""

    provider_type = ProviderType.OPENAI

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None):
        settings = PROVIDER_SETTINGS[self.provider_type]
        self._client: Optional[AsyncOpenAI] = None
        self._api_key = api_key or os.getenv(settings.api_key_env)
        self._base_url = base_url or settings.base_url
        self.logger = ProviderLogger(self.provider_type.value)
        # Allow overriding default timeout via env variable (seconds)
        try:
            self._timeout: float = float(os.getenv(settings.timeout_env or "", "60") or "60")
        except ValueError:
            self._timeout = 60.0

    @property
    def client(self) -> AsyncOpenAI:
        """Lazy initialization of the OpenAI client."""
        if self._client is None:
            if not self._api_key:
                raise ProviderError(
                    f"{self.provider_type.value} API key not found in environment variables",
                    provider=self.provider_type.value,
                )
            kwargs: Dict[str, Any] = {"api_key": self._api_key, "timeout": self._timeout}
            if self._base_url:
                kwargs["base_url"] = self._base_url
            self._client = AsyncOpenAI(**kwargs)
        return self._client

    def is_available(self) -> bool:
        return bool(self._api_key)

    def _build_messages(self, prompt: str, options: CallOptions) -> List[Dict[str, str]]:
        messages = []
        if options.system_prompt:
            messages.append({"role": "system", "content": options.system_prompt})
        messages.append({"role": "user", "content": prompt})
        return messages

    async def call(self, prompt: str, options: CallOptions) -> ProviderResponse:
        """Call the Chat Completions endpoint."""
        model = options.resolve_model(self.provider_type) or self.default_model()
        with self.logger.track_request("call", model) as request_info:
            start = time.time()
            try:
                response = await self.client.chat.completions.create(
                    model=model,
                    messages=self._build_messages(prompt, options),
                    temperature=options.temperature,
                    max_tokens=options.max_tokens,
                )
            except Exception as e:
                raise ErrorMapper.map_openai_error(e, self.provider_type.value)

            latency_ms = int((time.time() - start) * 1000)
            text = response.choices[0].message.content or ""
            usage = UsageMetadata(latency_ms=latency_ms)
            if getattr(response, "usage", None) is not None:
                usage = UsageMetadata(
                    prompt_tokens=response.usage.prompt_tokens or 0,
                    completion_tokens=response.usage.completion_tokens or 0,
                    total_tokens=response.usage.total_tokens or 0,
                    latency_ms=latency_ms,
                )
                self.logger.log_usage(usage.model_dump(), model, request_info["request_id"])

            return ProviderResponse(
                provider=self.provider_type,
                model=model,
                output=text,
                confidence=self.score_output(text),
                usage=usage,
            )
