"""
OCR2 pipeline: PDF URL -> download -> validate -> Vision OCR -> text.

Native mode sends the whole PDF in one (retried) call. Chunked mode rasterises pages,
tiles them and OCRs every chunk in parallel, capped at max_parallel_vision_calls.
"""
from __future__ import annotations

import platform
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from openai import OpenAI

from . import __version__
from .airtable import AirtableClient, get_airtable_client
from .airtable_schema import ERROR_OCR_FAILED, FILE_FIELDS, FILE_STATUS, PROCESSING_STATUS
from .chunking import chunk_image, render_pages
from .config import OCR2Settings, get_settings, validate_settings
from .errors import OCRError, PDFProcessingError, VisionAPIError
from .log import Timer, get_logger
from .models import OCRResult, PageProcessingResult, PDFProcessingResult, ProcessingSummary, TokenUsage
from .pdf_processor import MAX_NATIVE_PAGES, MAX_SIZE_MB, download_pdf, short_url, validate_pdf
from .vision_client import (
    extract_text_from_image,
    extract_text_from_pdf_with_retry,
    get_api_usage_stats,
    with_retry,
)

logger = get_logger("orchestrator")

PAGE_BREAK = "\n\n--- PAGE BREAK ---\n\n"


def _process_native(
    pdf_bytes: bytes,
    page_count: Optional[int],
    settings: OCR2Settings,
    client: Optional[OpenAI],
    sleep: Callable[[float], None],
    timer: Timer,
) -> PDFProcessingResult:
    ocr = extract_text_from_pdf_with_retry(pdf_bytes, client, settings, sleep)
    timer.checkpoint("Text extraction completed")
    ms = timer.finish()
    pages = page_count or 1
    return PDFProcessingResult(
        total_pages=pages,
        processed_pages=pages,
        extracted_text=ocr.text,
        processing_time_ms=ms,
        summary=ProcessingSummary(
            total_tokens_used=ocr.tokens_used.total,
            total_processing_time_ms=ms,
        ),
        mode="native",
    )


def _process_chunked(
    pdf_bytes: bytes,
    settings: OCR2Settings,
    client: Optional[OpenAI],
    sleep: Callable[[float], None],
    timer: Timer,
) -> PDFProcessingResult:
    images = render_pages(pdf_bytes, settings.pdf.dpi, settings.pdf.max_pages_per_doc)
    timer.checkpoint(f"Rendered {len(images)} page(s)")

    jobs: list[tuple[int, int, Any]] = []
    chunk_counts: list[int] = []
    for page_no, image in enumerate(images, start=1):
        crops = chunk_image(image, settings.chunking)
        chunk_counts.append(len(crops))
        jobs.extend((page_no, chunk.index, crop) for chunk, crop in crops)
    logger.info("OCR of %d chunk(s) across %d page(s)", len(jobs), len(images))

    results: dict[tuple[int, int], OCRResult] = {}
    failures: dict[tuple[int, int], str] = {}
    workers = max(1, min(settings.concurrency.max_parallel_vision_calls, len(jobs) or 1))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        future_to_key = {
            executor.submit(
                with_retry,
                lambda crop=crop: extract_text_from_image(crop, client, settings),
                f"Page {page_no} chunk {idx + 1}",
                settings,
                sleep,
            ): (page_no, idx)
            for page_no, idx, crop in jobs
        }
        for future in as_completed(future_to_key):
            key = future_to_key[future]
            try:
                results[key] = future.result()
            except Exception as e:
                failures[key] = str(e)
                logger.warning("Page %d chunk %d failed: %s", key[0], key[1] + 1, e)
    timer.checkpoint("Chunk OCR completed")

    if not results:
        raise VisionAPIError(
            "All image chunks failed OCR",
            {"errors": list(failures.values()), "chunks": len(jobs)},
        )

    pages_results: list[PageProcessingResult] = []
    page_texts: list[str] = []
    for page_no, count in enumerate(chunk_counts, start=1):
        texts: list[str] = []
        errors: list[str] = []
        tokens = TokenUsage()
        for idx in range(count):
            if (page_no, idx) in results:
                r = results[(page_no, idx)]
                texts.append(r.text)
                tokens = tokens + r.tokens_used
            else:
                errors.append(f"Chunk {idx + 1}: {failures.get((page_no, idx), 'unknown error')}")
        page_text = "\n".join(texts)
        if page_text:
            page_texts.append(page_text)
        pages_results.append(PageProcessingResult(
            page_number=page_no,
            chunk_count=count,
            successful_chunks=len(texts),
            text=page_text,
            tokens_used=tokens,
            errors=errors,
        ))

    ms = timer.finish()
    all_errors = [e for p in pages_results for e in p.errors]
    return PDFProcessingResult(
        total_pages=len(images),
        processed_pages=sum(1 for p in pages_results if p.successful_chunks),
        extracted_text=PAGE_BREAK.join(page_texts),
        processing_time_ms=ms,
        pages_results=pages_results,
        summary=ProcessingSummary(
            total_tokens_used=sum(p.tokens_used.total for p in pages_results),
            total_processing_time_ms=ms,
            average_chunks_per_page=round(len(jobs) / len(images), 2) if images else 0.0,
            success_rate=round(100.0 * len(results) / len(jobs), 2),
            errors=all_errors,
        ),
        mode="chunked",
    )


def process_pdf_bytes(
    pdf_bytes: bytes,
    mode: Optional[str] = None,
    settings: Optional[OCR2Settings] = None,
    client: Optional[OpenAI] = None,
    sleep: Callable[[float], None] = time.sleep,
    source: str = "<bytes>",
    timer: Optional[Timer] = None,
) -> PDFProcessingResult:
    """Validate and OCR PDF bytes already in memory."""
    settings = settings or get_settings()
    mode = (mode or settings.mode).lower()
    timer = timer or Timer("PDF processing", logger)

    try:
        max_pages = settings.pdf.max_pages_per_doc if mode == "chunked" else None
        validation = validate_pdf(pdf_bytes, max_pages=max_pages)
        if not validation.is_valid:
            raise PDFProcessingError(
                f"PDF validation failed: {', '.join(validation.errors)}",
                {"validation": validation.model_dump()},
            )
        logger.info(
            "PDF validated (%s pages, %.2fMB)",
            validation.page_count or "unknown",
            validation.size_mb,
        )
        timer.checkpoint("Validation completed")

        if mode == "chunked":
            result = _process_chunked(pdf_bytes, settings, client, sleep, timer)
        elif mode == "native":
            result = _process_native(pdf_bytes, validation.page_count, settings, client, sleep, timer)
        else:
            raise PDFProcessingError(f"Unknown OCR mode: {mode}")
    except OCRError as e:
        logger.error("PDF processing failed after %dms: %s", timer.elapsed_ms(), e)
        raise
    except Exception as e:
        ms = timer.elapsed_ms()
        logger.error("PDF processing failed after %dms: %s", ms, e)
        raise PDFProcessingError(
            f"PDF processing failed: {e}",
            {"original_error": e, "source": source, "processing_time_ms": ms},
        ) from e

    logger.info(
        "PDF processing completed: %d page(s), %d chars, %dms, %d tokens",
        result.total_pages,
        len(result.extracted_text),
        result.processing_time_ms,
        result.summary.total_tokens_used,
    )
    return result


def process_pdf_from_url(
    url: str,
    mode: Optional[str] = None,
    settings: Optional[OCR2Settings] = None,
    client: Optional[OpenAI] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> PDFProcessingResult:
    """Download, validate and OCR the PDF at `url` (http(s) or data URI)."""
    timer = Timer("PDF processing", logger)
    logger.info("Starting PDF processing for %s", short_url(url))
    try:
        pdf_bytes = download_pdf(url)
    except OCRError as e:
        logger.error("PDF processing failed after %dms: %s", timer.elapsed_ms(), e)
        raise
    timer.checkpoint("Download completed")
    return process_pdf_bytes(
        pdf_bytes,
        mode=mode,
        settings=settings,
        client=client,
        sleep=sleep,
        source=short_url(url),
        timer=timer,
    )


def process_pdf_for_raw_text(url: str, mode: Optional[str] = None, **kwargs) -> str:
    return process_pdf_from_url(url, mode=mode, **kwargs).extracted_text


def file_url_from_record(fields: dict[str, Any]) -> Optional[str]:
    """FileURL, else the first attachment's url."""
    url = fields.get(FILE_FIELDS.FILE_URL)
    if url:
        return url
    attachments = fields.get(FILE_FIELDS.ATTACHMENTS) or []
    if attachments and isinstance(attachments[0], dict):
        return attachments[0].get("url")
    return None


def process_file_record(
    record_id: str,
    airtable: Optional[AirtableClient] = None,
    mode: Optional[str] = None,
    settings: Optional[OCR2Settings] = None,
    **kwargs,
) -> PDFProcessingResult:
    """
    Run OCR for one Files record and store its Raw-Text.
    Moves Processing-Status DETINV -> PARSE; on failure marks the record Error/ERROR and re-raises.
    """
    airtable = airtable or get_airtable_client()
    settings = settings or get_settings()
    table = settings.airtable.table_name
    logger.info("OCR for Files record %s", record_id)

    try:
        airtable.update_record(table, record_id, {
            FILE_FIELDS.STATUS: FILE_STATUS.PROCESSING,
            FILE_FIELDS.PROCESSING_STATUS: PROCESSING_STATUS.DETINV,
        })
        record = airtable.get_record(table, record_id)
        if record is None:
            raise PDFProcessingError(f"Files record {record_id} not found")
        url = file_url_from_record(record.get("fields", {}))
        if not url:
            raise PDFProcessingError(f"Files record {record_id} has no FileURL or attachment")

        result = process_pdf_from_url(url, mode=mode, settings=settings, **kwargs)
        airtable.update_record(table, record_id, {
            FILE_FIELDS.RAW_TEXT: result.extracted_text,
            FILE_FIELDS.PROCESSING_STATUS: PROCESSING_STATUS.PARSE,
        })
        logger.info("Stored %d chars of raw text on %s", len(result.extracted_text), record_id)
        return result
    except Exception as e:
        mark_file_error(airtable, table, record_id, ERROR_OCR_FAILED, str(e))
        raise


def mark_file_error(
    airtable: AirtableClient,
    table: str,
    record_id: str,
    code: str,
    description: str,
) -> None:
    """Best-effort Error/ERROR update; a failing update is logged so the original error surfaces."""
    try:
        airtable.update_record(table, record_id, {
            FILE_FIELDS.STATUS: FILE_STATUS.ERROR,
            FILE_FIELDS.PROCESSING_STATUS: PROCESSING_STATUS.ERROR,
            FILE_FIELDS.ERROR_CODE: code,
            FILE_FIELDS.ERROR_DESCRIPTION: description[:1000],
        })
    except OCRError as update_error:
        logger.error("Could not record error on %s: %s", record_id, update_error)


def get_processing_stats() -> dict[str, Any]:
    return {
        "version": __version__,
        "max_file_size": f"{MAX_SIZE_MB:.0f}MB",
        "max_pages": MAX_NATIVE_PAGES,
        "supported_formats": ["PDF"],
        "modes": ["native", "chunked"],
        "features": [
            "Native PDF processing",
            "Chunked image OCR for scanned or oversized pages",
            "Automatic retry logic",
            "Full document text extraction",
        ],
    }


def get_health(settings: Optional[OCR2Settings] = None) -> dict[str, Any]:
    """Health payload for the HTTP endpoint and the `health` CLI command."""
    settings = settings or get_settings()
    health: dict[str, Any] = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": __version__,
        "python": platform.python_version(),
        "platform": platform.system(),
    }
    try:
        validate_settings(settings)
    except OCRError as e:
        health["status"] = "error"
        health["message"] = e.message
        return health
    health["configuration"] = {
        "mode": settings.mode,
        "model": settings.openai.model,
        "dpi": settings.pdf.dpi,
        "max_parallel_vision_calls": settings.concurrency.max_parallel_vision_calls,
    }
    health["stats"] = {**get_processing_stats(), "api": get_api_usage_stats(settings)}
    return health
