"""
Shared OpenAI API client. Lazily initialized and reused across OCR, parsing and PO matching.
"""
from __future__ import annotations

from typing import Optional

from openai import OpenAI

from .config import get_settings
from .errors import ConfigurationError
from .log import get_logger

logger = get_logger("api_client")

_client: Optional[OpenAI] = None


def get_openai_client() -> OpenAI:
    """Return the shared OpenAI client. Raises ConfigurationError when no API key is set."""
    global _client
    if _client is not None:
        return _client
    settings = get_settings().openai
    if not settings.api_key:
        raise ConfigurationError("OPENAI_API_KEY environment variable is not set")
    kwargs = {"api_key": settings.api_key, "timeout": settings.timeout_seconds}
    if settings.base_url:
        kwargs["base_url"] = settings.base_url
    _client = OpenAI(**kwargs)
    logger.info(
        "OpenAI client initialized (model=%s, base_url=%s, timeout=%ss)",
        settings.model,
        settings.base_url or "default",
        settings.timeout_seconds,
    )
    return _client


def reset_openai_client() -> None:
    global _client
    _client = None


def completion_token_params(model: str, limit: int) -> dict:
    """gpt-4o and newer take max_completion_tokens; older models take max_tokens."""
    if "gpt-4o" in model or "gpt-5" in model:
        return {"max_completion_tokens": limit}
    return {"max_tokens": limit}


def temperature_params(model: str, temperature: float) -> dict:
    """gpt-5 only accepts its default temperature, so the parameter is omitted for it."""
    if "gpt-5" in model:
        return {}
    return {"temperature": temperature}
