"""
Error mapping utilities for provider adapters.

This module provides consistent error mapping across all providers,
converting SDK and transport exceptions to ``ProviderError`` or
``RateLimitError`` instances.
"""

import asyncio
from typing import Any, Dict, Optional

import httpx

from .base import ProviderError, RateLimitError

RATE_LIMIT_PHRASES = ("rate limit", "too many requests", "quota exceeded", "too_many_requests")


class ErrorMapper:
    """Maps provider-specific errors to standardized ProviderError."""

    # Common HTTP status codes that indicate retryable errors
    RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

    @staticmethod
    def get_status_code(error: Exception) -> Optional[int]:
        status_code = getattr(error, "status_code", None)
        if status_code is None:
            response = getattr(error, "response", None)
            status_code = getattr(response, "status_code", None)
        return status_code if isinstance(status_code, int) else None

    @staticmethod
    def is_rate_limit(error: Exception) -> bool:
        """True for HTTP 429, SDK ``RateLimitError`` types and rate-limit messages."""
        if ErrorMapper.get_status_code(error) == 429:
            return True
        if type(error).__name__ == "RateLimitError":
            return True
        error_msg = str(getattr(error, "message", None) or error).lower()
        return any(phrase in error_msg for phrase in RATE_LIMIT_PHRASES)

    @staticmethod
    def is_retryable(error: Exception) -> bool:
        """
        Determine if an error is retryable.

        Args:
            error: The exception to check

        Returns:
            bool: True if the error is retryable
        """
        status_code = ErrorMapper.get_status_code(error)
        if status_code is not None and status_code in ErrorMapper.RETRYABLE_STATUS_CODES:
            return True
        if isinstance(error, (httpx.TimeoutException, httpx.ConnectError, asyncio.TimeoutError)):
            return True
        type_name = type(error).__name__
        if type_name in ("APITimeoutError", "APIConnectionError"):
            return True
        return ErrorMapper.is_rate_limit(error)

    @staticmethod
    def get_retry_after(error: Exception) -> Optional[float]:
        """
        Extract retry-after value from error if available.

        Args:
            error: The exception to check

        Returns:
            Optional[float]: Seconds to wait before retry, or None
        """
        response = getattr(error, "response", None)
        headers = getattr(response, "headers", None)
        if headers:
            retry_after = headers.get("Retry-After") or headers.get("retry-after")
            if retry_after:
                try:
                    return float(retry_after)
                except ValueError:
                    pass

        retry_after = getattr(error, "retry_after", None)
        if isinstance(retry_after, (int, float)):
            return float(retry_after)
        return None

    @staticmethod
    def map_error(error: Exception, provider: str, label: Optional[str] = None) -> ProviderError:
        """
        Map any provider exception to ProviderError or RateLimitError.

        Args:
            error: The original exception
            provider: Provider name recorded on the mapped error
            label: Human-readable provider label used in the message

        Returns:
            ProviderError with appropriate metadata
        """
        if isinstance(error, ProviderError):
            return error

        label = label or provider
        status_code = ErrorMapper.get_status_code(error)
        retry_after = ErrorMapper.get_retry_after(error)
        detail = getattr(error, "message", None) or str(error) or type(error).__name__

        if ErrorMapper.is_rate_limit(error):
            mapped: ProviderError = RateLimitError(
                message=f"{label} rate limit exceeded: {detail}",
                provider=provider,
                status_code=status_code or 429,
                retry_after=retry_after,
            )
        else:
            mapped = ProviderError(
                message=f"{label} API error: {detail}",
                provider=provider,
                status_code=status_code,
                retry_after=retry_after,
            )
            mapped.is_retryable = ErrorMapper.is_retryable(error)

        mapped.original_error = error
        return mapped

    @staticmethod
    def map_openai_error(error: Exception, provider: str = "openai") -> ProviderError:
        """Map OpenAI SDK errors (also used for OpenAI-compatible endpoints)."""
        label = "OpenAI" if provider == "openai" else provider.capitalize()
        return ErrorMapper.map_error(error, provider, label)

    @staticmethod
    def map_anthropic_error(error: Exception) -> ProviderError:
        """Map Anthropic SDK errors."""
        return ErrorMapper.map_error(error, "anthropic", "Anthropic")

    @staticmethod
    def map_httpx_error(error: Exception, provider: str) -> ProviderError:
        """Map raw httpx transport and status errors."""
        if isinstance(error, httpx.HTTPStatusError):
            mapped = ErrorMapper.map_error(error, provider, provider.capitalize())
            try:
                body = error.response.json()
            except ValueError:
                body = None
            if isinstance(body, dict) and body.get("error"):
                mapped.message = f"{mapped.message} ({body['error']})"
                mapped.args = (mapped.message,)
            return mapped
        return ErrorMapper.map_error(error, provider, provider.capitalize())

    @staticmethod
    def get_error_classification(error: ProviderError) -> Dict[str, Any]:
        """Error details for logging."""
        return {
            "provider": error.provider,
            "status_code": error.status_code,
            "is_retryable": error.is_retryable,
            "rate_limited": isinstance(error, RateLimitError),
            "retry_after": error.retry_after,
            "error_type": type(error.original_error).__name__ if error.original_error else None,
        }
