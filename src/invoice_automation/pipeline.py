"""
End-to-end pipeline: Files record -> OCR -> documents -> PO matching.
Local mode runs OCR + parsing on PDFs from a folder and writes one JSON per file.
"""
from __future__ import annotations

import json
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Optional

from openai import OpenAI

from .airtable import AirtableClient, get_airtable_client
from .airtable_schema import (
    ERROR_MATCHING_FAILED,
    ERROR_PARSE_FAILED,
    FILE_FIELDS,
    FILE_STATUS,
    PROCESSING_STATUS,
    TABLE_NAMES,
)
from .config import OCR2Settings, get_settings
from .errors import OCRError
from .llm_parser import extract_single_document_text, parse_documents
from .log import Timer, get_logger
from .models import FileProcessingResult, LocalDocumentsResult
from .orchestrator import mark_file_error, process_file_record, process_pdf_bytes
from .po_matching import match_invoice
from .post_ocr import process_post_ocr

logger = get_logger("pipeline")


def _set_stage(airtable: AirtableClient, table: str, record_id: str, stage: str, status: Optional[str] = None) -> None:
    fields = {FILE_FIELDS.PROCESSING_STATUS: stage}
    if status:
        fields[FILE_FIELDS.STATUS] = status
    airtable.update_record(table, record_id, fields)


def process_file(
    record_id: str,
    airtable: Optional[AirtableClient] = None,
    client: Optional[OpenAI] = None,
    mode: Optional[str] = None,
    settings: Optional[OCR2Settings] = None,
) -> FileProcessingResult:
    """
    Run every stage for one Files record, moving Processing-Status
    DETINV -> PARSE -> RELINV -> MATCHING -> MATCHED and Status to Processed.
    Any failure leaves the record in Error/ERROR with Error-Code set, then raises.
    """
    airtable = airtable or get_airtable_client()
    settings = settings or get_settings()
    table = settings.airtable.table_name
    timer = Timer(f"File {record_id}", logger)

    ocr = process_file_record(record_id, airtable=airtable, mode=mode, settings=settings, client=client)
    timer.checkpoint("OCR")

    post = process_post_ocr(
        record_id,
        airtable=airtable,
        parser=lambda text: parse_documents(text, client),
        extractor=lambda text, doc: extract_single_document_text(text, doc, client),
        settings=settings,
    )
    if not post.success:
        mark_file_error(airtable, table, record_id, ERROR_PARSE_FAILED, post.error or "Parsing failed")
        raise OCRError(f"Post-OCR processing failed: {post.error}", {"file_record_id": record_id})
    timer.checkpoint("Post-OCR")

    invoice_ids = [d.id for d in post.document_ids if d.type == "invoice"]
    result = FileProcessingResult(
        file_record_id=record_id,
        total_pages=ocr.total_pages,
        text_length=len(ocr.extracted_text),
        documents_created=post.documents_created,
        details_created=post.details_created,
        invoice_ids=invoice_ids,
    )

    try:
        _set_stage(airtable, table, record_id, PROCESSING_STATUS.RELINV)
        _set_stage(airtable, table, record_id, PROCESSING_STATUS.MATCHING)
        for invoice_id in invoice_ids:
            summary = match_invoice(
                invoice_id, airtable=airtable, table=TABLE_NAMES.INVOICE_HEADERS, client=client
            )
            result.matching.append(summary)
        _set_stage(airtable, table, record_id, PROCESSING_STATUS.MATCHED, FILE_STATUS.PROCESSED)
    except Exception as e:
        mark_file_error(airtable, table, record_id, ERROR_MATCHING_FAILED, str(e))
        raise

    logger.info(
        "File %s processed in %dms: %d invoice(s), %d PO header(s)",
        record_id,
        timer.finish(),
        len(invoice_ids),
        sum(m.header_count for m in result.matching),
    )
    return result


def process_local_pdf(
    pdf_path: str | Path,
    client: Optional[OpenAI] = None,
    mode: Optional[str] = None,
) -> LocalDocumentsResult:
    """OCR and parse a PDF on disk. No Airtable access."""
    path = Path(pdf_path)
    ocr = process_pdf_bytes(path.read_bytes(), mode=mode, client=client, source=path.name)
    documents = parse_documents(ocr.extracted_text, client)
    return LocalDocumentsResult(
        source_file=path.name,
        total_pages=ocr.total_pages,
        mode=ocr.mode,
        raw_text=ocr.extracted_text,
        documents=documents,
    )


def _write_result(result: LocalDocumentsResult, output_path: Path, stem: str) -> None:
    out_file = output_path / f"{stem}_documents.json"
    with open(out_file, "w", encoding="utf-8") as f:
        json.dump(result.model_dump(), f, indent=2)


def _process_one(
    pdf_path: Path,
    output_path: Path,
    client: Optional[OpenAI],
    mode: Optional[str],
) -> LocalDocumentsResult:
    """Process a single PDF. Used by the parallel executor; failures become an error result."""
    try:
        result = process_local_pdf(pdf_path, client=client, mode=mode)
    except Exception as e:
        logger.error("Failed to process %s: %s", pdf_path.name, e)
        result = LocalDocumentsResult(source_file=pdf_path.name, error=str(e))
    _write_result(result, output_path, pdf_path.stem)
    return result


def run_on_folder(
    input_dir: str | Path,
    output_dir: str | Path,
    max_workers: int = 1,
    client: Optional[OpenAI] = None,
    mode: Optional[str] = None,
) -> list[LocalDocumentsResult]:
    """Process all PDFs in input_dir and write <stem>_documents.json per file to output_dir.
    When max_workers > 1, processes PDFs in parallel; results keep input order."""
    input_path = Path(input_dir)
    output_path = Path(output_dir)
    output_path.mkdir(parents=True, exist_ok=True)

    if not input_path.exists():
        input_path.mkdir(parents=True, exist_ok=True)
        return []

    pdfs = sorted(input_path.glob("*.pdf"))
    if not pdfs:
        return []

    if max_workers <= 1:
        return [_process_one(p, output_path, client, mode) for p in pdfs]

    results: list[Optional[LocalDocumentsResult]] = [None] * len(pdfs)
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        future_to_idx = {
            executor.submit(_process_one, p, output_path, client, mode): i
            for i, p in enumerate(pdfs)
        }
        for future in as_completed(future_to_idx):
            idx = future_to_idx[future]
            try:
                results[idx] = future.result()
            except Exception as e:
                results[idx] = LocalDocumentsResult(source_file=pdfs[idx].name, error=str(e))
    return [r for r in results if r is not None]
