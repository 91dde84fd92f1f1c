import os
import time
from typing import Any, Dict, Optional

import httpx
from dotenv import load_dotenv

from ..config.providers import PROVIDER_SETTINGS
from ..core.similarity import word_count
from ..models.generation import CallOptions, ProviderResponse, ProviderType, UsageMetadata
from ..observability.logging import ProviderLogger
from .base import ProviderAdapter, ProviderError
from .errors import ErrorMapper

# Load environment variables
load_dotenv()

logger = ProviderLogger("huggingface")


class HuggingFaceProvider(ProviderAdapter):
    """Hugging Face hosted Inference API provider."""

    provider_type = ProviderType.HUGGINGFACE

    def __init__(self, api_key: Optional[str] = None, client: Optional[httpx.AsyncClient] = None):
        settings = PROVIDER_SETTINGS[self.provider_type]
        self._api_key = api_key or os.getenv(settings.api_key_env)
        self._base_url = settings.base_url
        self._client = client
        try:
            self._timeout = float(os.getenv(settings.timeout_env or "", "60") or "60")
        except ValueError:
            self._timeout = 60.0

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    def is_available(self) -> bool:
        return bool(self._api_key)

    def _build_payload(self, prompt: str, options: CallOptions) -> Dict[str, Any]:
        inputs = f"{options.system_prompt}\n\n{prompt}" if options.system_prompt else prompt
        return {
            "inputs": inputs,
            "parameters": {
                "max_new_tokens": options.max_tokens,
                "temperature": max(options.temperature, 0.01),
                "top_p": 0.95,
                "do_sample": True,
                "return_full_text": False,
            },
            "options": {"wait_for_model": True, "use_cache": False},
        }

    @staticmethod
    def _extract_text(body: Any) -> str:
        if isinstance(body, list) and body:
            body = body[0]
        if isinstance(body, dict):
            return str(body.get("generated_text", ""))
        return ""

    async def call(self, prompt: str, options: CallOptions) -> ProviderResponse:
        """POST the prompt to the model's inference endpoint."""
        if not self._api_key:
            raise ProviderError(
                "HuggingFace API key not found in environment variables",
                provider="huggingface",
            )
        model = options.resolve_model(self.provider_type) or self.default_model()
        url = f"{self._base_url}/{model}"

        with logger.track_request("call", model):
            start = time.time()
            try:
                response = await self.client.post(
                    url,
                    json=self._build_payload(prompt, options),
                    headers={"Authorization": f"Bearer {self._api_key}"},
                )
                response.raise_for_status()
                body = response.json()
            except Exception as e:
                raise ErrorMapper.map_httpx_error(e, "huggingface")

            latency_ms = int((time.time() - start) * 1000)
            text = self._extract_text(body)
            # The inference API does not report usage; estimate from word counts.
            prompt_tokens = word_count(prompt)
            completion_tokens = word_count(text)
            return ProviderResponse(
                provider=self.provider_type,
                model=model,
                output=text,
                confidence=self.score_output(text),
                usage=UsageMetadata(
                    prompt_tokens=prompt_tokens,
                    completion_tokens=completion_tokens,
                    total_tokens=prompt_tokens + completion_tokens,
                    latency_ms=latency_ms,
                ),
            )
