"""
OCR2 settings: PDF rendering, image chunking, concurrency, OpenAI and Airtable options.
Defaults are committed here; every value can be overridden from the environment (or a .env file).
"""
from __future__ import annotations

import logging
import os
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .errors import ConfigurationError

load_dotenv()

OCRMode = Literal["native", "chunked"]

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "WARN", "ERROR")


class PDFSettings(BaseModel):
    dpi: int = 300
    max_pages_per_doc: int = 50


class ChunkingSettings(BaseModel):
    """Tuned for the Vision API "high" detail mode: 768px short side, 2048px frame."""
    short_side_px: int = 768
    long_side_max_px: int = 2048
    aspect_trigger: float = 2.7
    overlap_pct: float = 0.05


class ConcurrencySettings(BaseModel):
    max_parallel_vision_calls: int = 5


class OpenAISettings(BaseModel):
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    model: str = "gpt-4o"
    matching_model: str = "gpt-4o"
    timeout_seconds: float = 90
    max_retries: int = 1
    retry_backoff_seconds: float = 2


class AirtableSettings(BaseModel):
    pat: Optional[str] = None
    base_id: Optional[str] = None
    table_name: str = "Files"
    webhook_secret: Optional[str] = None


class OCR2Settings(BaseModel):
    pdf: PDFSettings = Field(default_factory=PDFSettings)
    chunking: ChunkingSettings = Field(default_factory=ChunkingSettings)
    concurrency: ConcurrencySettings = Field(default_factory=ConcurrencySettings)
    openai: OpenAISettings = Field(default_factory=OpenAISettings)
    airtable: AirtableSettings = Field(default_factory=AirtableSettings)
    log_level: str = "INFO"
    mode: str = "native"


def _env(name: str, default=None):
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value.strip()


def _env_int(name: str, default: int) -> int:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from e


def _env_float(name: str, default: float) -> float:
    raw = _env(name)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}") from e


def load_settings() -> OCR2Settings:
    """Build settings from defaults + environment. Does not validate."""
    matching_model = _env("OPENAI_MODEL", "gpt-4o")
    return OCR2Settings(
        pdf=PDFSettings(
            dpi=_env_int("OCR2_PDF_DPI", 300),
            max_pages_per_doc=_env_int("OCR2_MAX_PAGES_PER_DOC", 50),
        ),
        chunking=ChunkingSettings(
            short_side_px=_env_int("OCR2_SHORT_SIDE_PX", 768),
            long_side_max_px=_env_int("OCR2_LONG_SIDE_MAX_PX", 2048),
            aspect_trigger=_env_float("OCR2_ASPECT_TRIGGER", 2.7),
            overlap_pct=_env_float("OCR2_OVERLAP_PCT", 0.05),
        ),
        concurrency=ConcurrencySettings(
            max_parallel_vision_calls=_env_int("OCR2_MAX_PARALLEL_VISION_CALLS", 5),
        ),
        openai=OpenAISettings(
            api_key=_env("OPENAI_API_KEY"),
            base_url=_env("OPENAI_BASE_URL"),
            model=_env("OCR2_OPENAI_MODEL", "gpt-4o"),
            matching_model=matching_model,
            timeout_seconds=_env_float("OCR2_TIMEOUT_SECONDS", 90),
            max_retries=_env_int("OCR2_MAX_RETRIES", 1),
            retry_backoff_seconds=_env_float("OCR2_RETRY_BACKOFF_SECONDS", 2),
        ),
        airtable=AirtableSettings(
            pat=_env("AIRTABLE_PAT"),
            base_id=_env("AIRTABLE_BASE_ID") or _env("NEXT_PUBLIC_AIRTABLE_BASE_ID"),
            table_name=_env("OCR2_AIRTABLE_TABLE", "Files"),
            webhook_secret=_env("AIRTABLE_WEBHOOK_SECRET"),
        ),
        log_level=(_env("OCR2_LOG_LEVEL", "INFO") or "INFO").upper(),
        mode=(_env("OCR2_MODE", "native") or "native").lower(),
    )


_settings: Optional[OCR2Settings] = None


def get_settings() -> OCR2Settings:
    """Return shared settings, loading them from the environment on first use."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    global _settings
    _settings = None


def validate_settings(settings: OCR2Settings) -> None:
    """Raise ConfigurationError listing every problem found (not just the first)."""
    errors: list[str] = []

    if not settings.openai.api_key:
        errors.append("OPENAI_API_KEY is required")

    if not 72 <= settings.pdf.dpi <= 600:
        errors.append(f"pdf.dpi must be between 72 and 600 (got {settings.pdf.dpi})")
    if settings.pdf.max_pages_per_doc < 1:
        errors.append("pdf.max_pages_per_doc must be at least 1")

    ch = settings.chunking
    if ch.short_side_px <= 0 or ch.long_side_max_px <= 0:
        errors.append("chunking pixel sizes must be positive")
    elif ch.short_side_px > ch.long_side_max_px:
        errors.append("chunking.short_side_px cannot exceed chunking.long_side_max_px")
    if ch.aspect_trigger < 1.0:
        errors.append("chunking.aspect_trigger must be >= 1.0")
    if not 0.0 <= ch.overlap_pct < 0.5:
        errors.append("chunking.overlap_pct must be in [0, 0.5)")

    if settings.concurrency.max_parallel_vision_calls < 1:
        errors.append("concurrency.max_parallel_vision_calls must be at least 1")

    if settings.openai.timeout_seconds <= 0:
        errors.append("openai.timeout_seconds must be positive")
    if settings.openai.max_retries < 0:
        errors.append("openai.max_retries cannot be negative")
    if settings.openai.retry_backoff_seconds < 0:
        errors.append("openai.retry_backoff_seconds cannot be negative")

    if settings.log_level not in LOG_LEVELS:
        errors.append(f"log level must be one of {', '.join(LOG_LEVELS)}")
    if settings.mode not in ("native", "chunked"):
        errors.append(f"OCR2_MODE must be 'native' or 'chunked' (got {settings.mode!r})")

    if errors:
        raise ConfigurationError(
            "Invalid OCR2 configuration:\n" + "\n".join(errors),
            {"errors": errors},
        )


def validate_airtable_settings(settings: OCR2Settings) -> None:
    errors: list[str] = []
    if not settings.airtable.pat:
        errors.append("AIRTABLE_PAT is required")
    if not settings.airtable.base_id:
        errors.append("AIRTABLE_BASE_ID is required")
    if errors:
        raise ConfigurationError(
            "Invalid Airtable configuration:\n" + "\n".join(errors),
            {"errors": errors},
        )


def log_level_value(settings: OCR2Settings) -> int:
    name = "WARNING" if settings.log_level == "WARN" else settings.log_level
    return getattr(logging, name, logging.INFO)
