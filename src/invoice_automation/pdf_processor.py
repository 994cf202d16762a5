"""
PDF download and validation ahead of OCR.
Sources may be http(s) URLs or base64 data URIs; pdfplumber is used only to count pages.
"""
from __future__ import annotations

import base64
import binascii
from io import BytesIO
from typing import Optional

import pdfplumber
import requests

from .errors import PDFProcessingError
from .log import get_logger
from .models import PDFValidation

logger = get_logger("pdf_processor")

MAX_SIZE_MB = 32.0
MAX_NATIVE_PAGES = 100
DOWNLOAD_TIMEOUT_SECONDS = 60
USER_AGENT = "OCR2-PDF-Processor/2.0"


def short_url(url: str) -> str:
    return url[:50] + "..." if len(url) > 50 else url


def _size_mb(data: bytes) -> float:
    return len(data) / (1024 * 1024)


def is_pdf(data: bytes) -> bool:
    return data[:4] == b"%PDF"


def _decode_data_uri(url: str) -> bytes:
    header, _, payload = url.partition(",")
    if "application/pdf" not in header and "base64" not in header:
        raise PDFProcessingError("Invalid PDF data URI format")
    try:
        return base64.b64decode(payload, validate=False)
    except (binascii.Error, ValueError) as e:
        raise PDFProcessingError(f"Invalid base64 payload in data URI: {e}") from e


def download_pdf(url: str, session: Optional[requests.Session] = None) -> bytes:
    """Return the PDF bytes behind `url`. Raises PDFProcessingError for anything unusable."""
    try:
        logger.info("Downloading PDF from %s", short_url(url))
        if url.startswith("data:"):
            data = _decode_data_uri(url)
            logger.info("PDF loaded from data URI (%d bytes)", len(data))
        else:
            http = session or requests
            resp = http.get(
                url,
                headers={"User-Agent": USER_AGENT},
                timeout=DOWNLOAD_TIMEOUT_SECONDS,
            )
            if not resp.ok:
                raise PDFProcessingError(
                    f"Failed to download PDF: {resp.status_code} {resp.reason}"
                )
            data = resp.content
            logger.info("PDF downloaded (%d bytes)", len(data))

        if not is_pdf(data):
            raise PDFProcessingError("Downloaded file is not a valid PDF")

        size = _size_mb(data)
        if size > MAX_SIZE_MB:
            raise PDFProcessingError(
                f"PDF file is too large ({size:.2f}MB). Maximum size is {MAX_SIZE_MB:.0f}MB."
            )
        return data
    except PDFProcessingError:
        raise
    except Exception as e:
        raise PDFProcessingError(
            f"PDF download failed: {e}", {"original_error": e, "url": short_url(url)}
        ) from e


def get_pdf_page_count(data: bytes) -> int:
    """Number of pages, or 0 when the PDF cannot be opened. Never raises."""
    try:
        with pdfplumber.open(BytesIO(data)) as pdf:
            return len(pdf.pages)
    except Exception as e:
        logger.debug("Could not get PDF page count: %s", e)
        return 0


def validate_pdf(data: bytes, max_pages: Optional[int] = None) -> PDFValidation:
    """Check size, header and page count. `max_pages` adds the chunked-mode page cap."""
    errors: list[str] = []
    size = _size_mb(data)

    if size > MAX_SIZE_MB:
        errors.append(f"File too large: {size:.2f}MB (max {MAX_SIZE_MB:.0f}MB)")

    if not is_pdf(data):
        errors.append("Not a valid PDF file")
        return PDFValidation(is_valid=False, size_mb=size, errors=errors)

    page_count = get_pdf_page_count(data)
    if page_count > MAX_NATIVE_PAGES:
        errors.append(f"Too many pages: {page_count} (max {MAX_NATIVE_PAGES})")
    elif max_pages is not None and page_count > max_pages:
        errors.append(f"Too many pages: {page_count} (max {max_pages})")

    return PDFValidation(
        is_valid=not errors,
        page_count=page_count or None,
        size_mb=size,
        errors=errors,
    )
