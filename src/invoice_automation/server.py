"""
HTTP service: pipeline triggers, the Airtable webhook receiver and debug endpoints.

Run with `python run.py serve` or `uvicorn invoice_automation.server:app`.
Route handlers are plain `def` so FastAPI runs the blocking pipeline calls in its threadpool.
"""
from __future__ import annotations

from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from . import __version__
from .airtable import get_airtable_client
from .config import get_settings, log_level_value
from .errors import (
    AirtableUpdateError,
    OCRError,
    PDFProcessingError,
    VisionAPIError,
)
from .log import configure_logging, get_logger
from .orchestrator import get_health, process_file_record
from .po_matching import match_invoice
from .post_ocr import process_post_ocr
from .webhooks import SIGNATURE_HEADER, handle_webhook

logger = get_logger("server")

configure_logging(log_level_value(get_settings()))

app = FastAPI(title="Invoice Automation", version=__version__)


class OCRProcessRequest(BaseModel):
    recordId: Optional[str] = None


class PostOCRRequest(BaseModel):
    fileRecordId: Optional[str] = None


class POMatchingRequest(BaseModel):
    invoiceId: Optional[str] = None


def error_response(message: str, status: int, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status, content={"error": {"message": message, "status": status, **extra}})


def status_for_error(error: OCRError) -> int:
    if isinstance(error, AirtableUpdateError):
        return 404 if error.status_code == 404 else 502
    if isinstance(error, PDFProcessingError):
        return 400
    if isinstance(error, VisionAPIError):
        return 502
    return 500


@app.exception_handler(OCRError)
def ocr_error_handler(request: Request, exc: OCRError) -> JSONResponse:
    logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return error_response(exc.message, status_for_error(exc), type=type(exc).__name__)


@app.exception_handler(RequestValidationError)
def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning("%s %s rejected: %s", request.method, request.url.path, exc.errors())
    return error_response("Request body must be a JSON object", 400)


@app.api_route("/api/ocr2/health", methods=["GET", "POST"])
def health() -> JSONResponse:
    payload = get_health()
    return JSONResponse(status_code=200 if payload["status"] == "healthy" else 503, content=payload)


@app.post("/api/ocr2/process")
def ocr_process(body: OCRProcessRequest) -> Any:
    if not body.recordId:
        return error_response("recordId is required", 400)
    result = process_file_record(body.recordId)
    return {
        "success": True,
        "recordId": body.recordId,
        "totalPages": result.total_pages,
        "textLength": len(result.extracted_text),
        "processingTimeMs": result.processing_time_ms,
        "mode": result.mode,
    }


@app.post("/api/post-ocr/process")
def post_ocr_process(body: PostOCRRequest) -> Any:
    if not body.fileRecordId:
        return error_response("fileRecordId is required", 400)
    result = process_post_ocr(body.fileRecordId)
    if not result.success:
        return error_response(result.error or "Post-OCR processing failed", 500, fileRecordId=body.fileRecordId)
    return result.model_dump()


@app.post("/api/po-matching")
def po_matching(body: POMatchingRequest) -> Any:
    if not body.invoiceId:
        return error_response("invoiceId is required", 400)
    summary = match_invoice(body.invoiceId)
    return {"success": True, "invoiceId": body.invoiceId, **summary.model_dump()}


@app.post("/api/airtable/webhooks")
async def airtable_webhook(request: Request) -> JSONResponse:
    body = await request.body()
    status, content = handle_webhook(
        body,
        request.headers.get(SIGNATURE_HEADER),
        get_settings().airtable.webhook_secret,
    )
    return JSONResponse(status_code=status, content=content)


@app.get("/api/debug/env-check")
def env_check() -> dict[str, Any]:
    """Which settings are present. Never returns the values themselves."""
    settings = get_settings()
    return {
        "openai_api_key": bool(settings.openai.api_key),
        "openai_base_url": bool(settings.openai.base_url),
        "airtable_pat": bool(settings.airtable.pat),
        "airtable_base_id": bool(settings.airtable.base_id),
        "airtable_webhook_secret": bool(settings.airtable.webhook_secret),
    }


@app.get("/api/debug/record/{table}/{record_id}")
def debug_record(table: str, record_id: str) -> Any:
    record = get_airtable_client().get_record(table, record_id)
    if record is None:
        return error_response(f"Record {record_id} not found in {table}", 404)
    return record
