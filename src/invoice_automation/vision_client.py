"""
OpenAI Vision OCR: native PDF input via the Files API, or single image chunks.
"""
from __future__ import annotations

import base64
import time
from io import BytesIO
from typing import Any, Callable, Optional, TypeVar

import openai
from openai import OpenAI
from PIL import Image

from .api_client import completion_token_params, get_openai_client, temperature_params
from .config import OCR2Settings, get_settings
from .errors import ConfigurationError, VisionAPIError
from .log import get_logger, measure_performance
from .models import OCRResult, TokenUsage
from .pdf_processor import MAX_NATIVE_PAGES, MAX_SIZE_MB
from .prompts import OCR_IMAGE_INSTRUCTION, OCR_PDF_INSTRUCTION, PDF_SUPPORT_TEST_INSTRUCTION

logger = get_logger("vision_client")

T = TypeVar("T")

PDF_MAX_COMPLETION_TOKENS = 16000
IMAGE_MAX_COMPLETION_TOKENS = 4096
MIN_TEXT_LENGTH = 10

# One-page PDF used to probe whether the configured model accepts file inputs.
TEST_PDF_BASE64 = (
    "JVBERi0xLjQKJcOkw7zDtsOfCjIgMCBvYmoKPDwvTGVuZ3RoIDMgMCBSL0ZpbHRlci9GbGF0ZURlY29kZT4+CnN0cmVhbQp4nDPQM1Qo5ypUMABCQyMDAAuvAkQKZW5kc3RyZWFtCmVuZG9iagozIDAgb2JqCjIzCmVuZG9iago1IDAgb2JqCjw8L0xlbmd0aCA2IDAgUi9GaWx0ZXIvRmxhdGVEZWNvZGUvTGVuZ3RoMSA0NzY+PgpzdHJlYW0KeJxTVVBQUFAw0jM01LOsBABGlgK2CmVuZHN0cmVhbQplbmRvYmoKNiAwIG9iago0MAplbmRvYmoKNyAwIG9iago8PC9UeXBlL0ZvbnREZXNjcmlwdG9yL0ZvbnROYW1lL0JBQUFBQStIZWx2ZXRpY2EvRm9udEJCb3hbMCAwIDAgMF0vRmxhZ3MgNC9Bc2NlbnQgNzE5L0NhcEhlaWdodCA3MTkvRGVzY2VudCAtMTk1L0l0YWxpY0FuZ2xlIDAvU3RlbVYgODAvTWF4V2lkdGggMTU2My9Gb250RmlsZTIgNSAwIFI+PgplbmRvYmoKOCAwIG9iago8PC9UeXBlL0ZvbnQvRm9udERlc2NyaXB0b3IgNyAwIFIvQmFzZUZvbnQvQkFBQUFBK0hlbHZldGljYS9TdWJ0eXBlL0NJREZvbnRUeXBlMi9DSURUb0dJRE1hcC9JZGVudGl0eS9DSURTeXN0ZW1JbmZvPDwvUmVnaXN0cnkoQWRvYmUpL09yZGVyaW5nKElkZW50aXR5KS9TdXBwbGVtZW50IDA+Pi9XWzMvWzI1MF1dPj4KZW5kb2JqCjkgMCBvYmoKPDwvVHlwZS9Gb250L1N1YnR5cGUvVHlwZTAvQmFzZUZvbnQvQkFBQUFBK0hlbHZldGljYS9Ub1VuaWNvZGUgMiAwIFIvRGVzY2VuZGFudEZvbnRzWzggMCBSXT4+CmVuZG9iagoxMCAwIG9iago8PC9UeXBlL1BhZ2VzL0NvdW50IDEvS2lkc1sxMSAwIFJdPj4KZW5kb2JqCjExIDAgb2JqCjw8L1R5cGUvUGFnZS9QYXJlbnQgMTAgMCBSL01lZGlhQm94WzAgMCA2MTIgNzkyXS9Db250ZW50cyA5IDAgUj4+CmVuZG9iagoxIDAgb2JqCjw8L1R5cGUvQ2F0YWxvZy9QYWdlcyAxMCAwIFI+PgplbmRvYmoKeHJlZgowIDEyCjAwMDAwMDAwMDAgNjU1MzUgZiAKMDAwMDAwMTA4NCAwMDAwMCBuIAowMDAwMDAwMDE1IDAwMDAwIG4gCjAwMDAwMDAxMzQgMDAwMDAgbiAKMDAwMDAwMDAwMCAwMDAwMCBmIAowMDAwMDAwMTUzIDAwMDAwIG4gCjAwMDAwMDAyODEgMDAwMDAgbiAKMDAwMDAwMDMwMCAwMDAwMCBuIAowMDAwMDAwNTE1IDAwMDAwIG4gCjAwMDAwMDA3MjAgMDAwMDAgbiAKMDAwMDAwMDg0NiAwMDAwMCBuIAowMDAwMDAwOTAzIDAwMDAwIG4gCnRyYWlsZXIKPDwvU2l6ZSAxMi9Sb290IDEgMCBSL0lEIFs8ZGViODQ3ZDJmZGM4YjE0Nzk0MzI2NDVjOTNmY2FhOGE+PGRlYjg0N2QyZmRjOGIxNDc5NDMyNjQ1YzkzZmNhYThhPl0+PgpzdGFydHhyZWYKMTAwNAolJUVPRgo="
)


def classify_error(error: Exception) -> VisionAPIError:
    """Map an SDK/transport failure onto a VisionAPIError with a readable message."""
    if isinstance(error, VisionAPIError):
        return error
    msg = str(error)
    details: dict[str, Any] = {"original_error": error}

    if isinstance(error, openai.RateLimitError) or "rate_limit_exceeded" in msg:
        details["retry_after"] = 60
        return VisionAPIError("Rate limit exceeded. Please try again later.", details)
    if "context_length_exceeded" in msg:
        return VisionAPIError(
            "PDF is too large (exceeds token limit). Try reducing the number of pages.", details
        )
    if isinstance(error, openai.BadRequestError) or "invalid_request_error" in msg:
        return VisionAPIError(
            "Invalid request to Vision API. The PDF may be corrupted or too large.", details
        )
    if isinstance(error, openai.APITimeoutError) or any(
        s in msg.lower() for s in ("timeout", "timed out", "etimedout", "econnaborted")
    ):
        return VisionAPIError("Vision API request timed out. Try a smaller file.", details)
    if isinstance(error, openai.APIConnectionError) or any(
        s in msg for s in ("ECONNRESET", "ENOTFOUND", "EAI_AGAIN")
    ):
        return VisionAPIError(
            "Network error while calling OpenAI API. Check connectivity and try again.", details
        )
    if "aborted" in msg or "cancelled" in msg:
        return VisionAPIError("Request was aborted before the Vision API responded.", details)
    return VisionAPIError(f"OpenAI Vision API call failed: {msg or type(error).__name__}", details)


def _delete_file(client: OpenAI, file_id: str) -> None:
    try:
        client.files.delete(file_id)
        logger.info("Cleaned up uploaded file %s", file_id)
    except Exception as e:
        logger.warning("Failed to delete uploaded file %s: %s", file_id, e)


def _usage(response) -> TokenUsage:
    usage = getattr(response, "usage", None)
    if usage is None:
        return TokenUsage()
    return TokenUsage(
        input=getattr(usage, "prompt_tokens", 0) or 0,
        output=getattr(usage, "completion_tokens", 0) or 0,
        total=getattr(usage, "total_tokens", 0) or 0,
    )


def _response_text(response) -> str:
    if not response.choices:
        return ""
    return (response.choices[0].message.content or "").strip()


def _ocr_result(response, source: str) -> OCRResult:
    text = _response_text(response)
    if len(text) < MIN_TEXT_LENGTH:
        raise VisionAPIError(f"OpenAI returned empty or minimal text from {source}")
    result = OCRResult(text=text, tokens_used=_usage(response))
    logger.info(
        "Vision API response received (%d chars, %d tokens)",
        len(text),
        result.tokens_used.total,
    )
    return result


def _request_options(model: str, content: list[dict[str, Any]], max_tokens: int) -> dict[str, Any]:
    return {
        "model": model,
        "messages": [{"role": "user", "content": content}],
        **temperature_params(model, 0.1),
        **completion_token_params(model, max_tokens),
    }


def extract_text_from_pdf(
    pdf_bytes: bytes,
    client: Optional[OpenAI] = None,
    settings: Optional[OCR2Settings] = None,
) -> OCRResult:
    """
    OCR a whole PDF in one call: upload to the Files API, reference it from a chat completion,
    then delete the upload (also on failure).
    """
    settings = settings or get_settings()
    model = settings.openai.model

    def operation() -> OCRResult:
        api = client or get_openai_client()
        file_id: Optional[str] = None
        try:
            logger.info(
                "Uploading PDF to OpenAI Files API (%.2fMB, model=%s)",
                len(pdf_bytes) / (1024 * 1024),
                model,
            )
            uploaded = api.files.create(
                file=("document.pdf", pdf_bytes, "application/pdf"),
                purpose="assistants",
            )
            file_id = uploaded.id
            content = [
                {"type": "text", "text": OCR_PDF_INSTRUCTION},
                {"type": "file", "file": {"file_id": file_id}},
            ]
            response = api.chat.completions.create(
                **_request_options(model, content, PDF_MAX_COMPLETION_TOKENS)
            )
            return _ocr_result(response, "PDF")
        except (ConfigurationError, VisionAPIError):
            raise
        except Exception as e:
            logger.error("OpenAI Vision API call failed: %s (%s)", e, type(e).__name__)
            raise classify_error(e) from e
        finally:
            if file_id:
                _delete_file(api, file_id)

    result, ms = measure_performance(operation, "OpenAI native PDF processing", logger)
    result.processing_time_ms = ms
    return result


def encode_image_png(image: Image.Image) -> str:
    buf = BytesIO()
    image.save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode("ascii")


def extract_text_from_image(
    image: Image.Image,
    client: Optional[OpenAI] = None,
    settings: Optional[OCR2Settings] = None,
) -> OCRResult:
    """OCR one image chunk sent inline as a base64 PNG with detail=high."""
    settings = settings or get_settings()
    model = settings.openai.model

    def operation() -> OCRResult:
        api = client or get_openai_client()
        content = [
            {"type": "text", "text": OCR_IMAGE_INSTRUCTION},
            {
                "type": "image_url",
                "image_url": {
                    "url": f"data:image/png;base64,{encode_image_png(image)}",
                    "detail": "high",
                },
            },
        ]
        try:
            response = api.chat.completions.create(
                **_request_options(model, content, IMAGE_MAX_COMPLETION_TOKENS)
            )
            return _ocr_result(response, "image chunk")
        except VisionAPIError:
            raise
        except Exception as e:
            raise classify_error(e) from e

    result, ms = measure_performance(operation, "OpenAI image chunk OCR", logger)
    result.processing_time_ms = ms
    return result


def with_retry(
    operation: Callable[[], T],
    label: str,
    settings: Optional[OCR2Settings] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Run `operation` up to max_retries + 1 times with exponential backoff
    (retry_backoff_seconds * 2**(attempt-1)). Configuration errors are not retried.
    """
    settings = settings or get_settings()
    attempts = settings.openai.max_retries + 1
    last_error: Optional[Exception] = None

    for attempt in range(1, attempts + 1):
        try:
            logger.info("%s (attempt %d/%d)", label, attempt, attempts)
            return operation()
        except ConfigurationError:
            raise
        except Exception as e:
            last_error = e
            if attempt < attempts:
                delay = settings.openai.retry_backoff_seconds * 2 ** (attempt - 1)
                logger.warning(
                    "%s failed (attempt %d/%d), retrying in %.1fs: %s",
                    label, attempt, attempts, delay, e,
                )
                sleep(delay)
            else:
                logger.error("%s failed after all %d attempts: %s", label, attempts, e)

    raise VisionAPIError(
        f"{label} failed after {attempts} attempts: {last_error}",
        {"original_error": last_error, "attempts": attempts},
    ) from last_error


def extract_text_from_pdf_with_retry(
    pdf_bytes: bytes,
    client: Optional[OpenAI] = None,
    settings: Optional[OCR2Settings] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> OCRResult:
    return with_retry(
        lambda: extract_text_from_pdf(pdf_bytes, client, settings),
        "PDF processing",
        settings,
        sleep,
    )


def test_pdf_support(client: Optional[OpenAI] = None, settings: Optional[OCR2Settings] = None) -> bool:
    """True when the configured model reads the bundled one-page PDF. Never raises."""
    settings = settings or get_settings()
    model = settings.openai.model
    file_id: Optional[str] = None
    api: Optional[OpenAI] = None
    try:
        api = client or get_openai_client()
        uploaded = api.files.create(
            file=("test.pdf", base64.b64decode(TEST_PDF_BASE64), "application/pdf"),
            purpose="assistants",
        )
        file_id = uploaded.id
        response = api.chat.completions.create(
            model=model,
            messages=[{
                "role": "user",
                "content": [
                    {"type": "text", "text": PDF_SUPPORT_TEST_INSTRUCTION},
                    {"type": "file", "file": {"file_id": file_id}},
                ],
            }],
            **completion_token_params(model, 100),
        )
        ok = bool(response.choices and response.choices[0].message.content)
        logger.info("PDF support test completed (success=%s, model=%s)", ok, model)
        return ok
    except Exception as e:
        logger.error("PDF support test failed: %s", e)
        return False
    finally:
        if api is not None and file_id:
            _delete_file(api, file_id)


def get_api_usage_stats(settings: Optional[OCR2Settings] = None) -> dict[str, Any]:
    settings = settings or get_settings()
    return {
        "model": settings.openai.model,
        "timeout": settings.openai.timeout_seconds,
        "retries": settings.openai.max_retries,
        "native_pdf_support": True,
        "max_file_size": f"{MAX_SIZE_MB:.0f}MB",
        "max_pages": MAX_NATIVE_PAGES,
    }
