"""
Post-OCR step: parse a Files record's raw text into InvoiceHeaders / InvoiceDetails records
and link them back to the file.
"""
from __future__ import annotations

from typing import Any, Callable, Optional

from .airtable import AirtableClient, get_airtable_client
from .airtable_schema import (
    FILE_FIELDS,
    FILES_RAW_TEXT_ALIASES,
    INVOICE_DETAIL_FIELDS,
    INVOICE_HEADER_FIELDS,
    INVOICE_STATUS,
    TABLE_NAMES,
)
from .config import OCR2Settings, get_settings
from .errors import OCRError
from .llm_parser import extract_single_document_text, parse_documents
from .log import get_logger
from .models import DocumentRef, ParsedDocument, ProcessFileResult

logger = get_logger("post_ocr")

Parser = Callable[[str], list[ParsedDocument]]
Extractor = Callable[[str, ParsedDocument], str]

LEGACY_DOCUMENT_TYPES = ("delivery_ticket", "store_receiver")


def get_raw_text(fields: dict[str, Any]) -> str:
    """Raw OCR text of a Files record, looked up by field name or field id."""
    for key in FILES_RAW_TEXT_ALIASES:
        value = fields.get(key)
        if isinstance(value, str) and value.strip():
            return value
    return ""


def _parse_amount(amount: Optional[str]) -> Optional[float]:
    if not amount:
        return None
    try:
        return float(str(amount).replace(",", "").replace("$", "").strip())
    except ValueError:
        return None


def build_invoice_header_fields(
    doc: ParsedDocument,
    file_record_id: str,
    document_raw_text: str,
) -> dict[str, Any]:
    """InvoiceHeaders fields for one parsed document. Unknown document types raise ValueError."""
    if doc.document_type in LEGACY_DOCUMENT_TYPES:
        logger.warning("%s documents are stored as invoices", doc.document_type)
    elif doc.document_type != "invoice":
        raise ValueError(f"Unknown document type: {doc.document_type}")

    fields: dict[str, Any] = {
        INVOICE_HEADER_FIELDS.FILES: [file_record_id],
        INVOICE_HEADER_FIELDS.DOCUMENT_RAW_TEXT: document_raw_text,
    }
    if doc.invoice_number:
        fields[INVOICE_HEADER_FIELDS.AP_INVOICE_NUMBER] = doc.invoice_number
    if doc.vendor_name:
        fields[INVOICE_HEADER_FIELDS.VENDOR_NAME] = doc.vendor_name
    if doc.invoice_date:
        fields[INVOICE_HEADER_FIELDS.INVOICE_DATE] = doc.invoice_date
    amount = _parse_amount(doc.amount)
    if amount is not None:
        fields[INVOICE_HEADER_FIELDS.TOTAL_INVOICE_AMOUNT] = amount
    if doc.team:
        logger.warning("Team field ignored (no Teams table): %s", doc.team)
    fields[INVOICE_HEADER_FIELDS.STATUS] = INVOICE_STATUS.PENDING
    return fields


def build_invoice_detail_fields(doc: ParsedDocument, invoice_header_id: str) -> list[dict[str, Any]]:
    """One InvoiceDetails field dict per line item, holding only non-null values."""
    rows: list[dict[str, Any]] = []
    for item in doc.line_items:
        fields: dict[str, Any] = {INVOICE_DETAIL_FIELDS.INVOICE_HEADERS: [invoice_header_id]}
        mapping = (
            (INVOICE_DETAIL_FIELDS.LINE_NUMBER, item.line_number),
            (INVOICE_DETAIL_FIELDS.ITEM_NO, item.item_no),
            (INVOICE_DETAIL_FIELDS.ITEM_DESCRIPTION, item.item_description),
            (INVOICE_DETAIL_FIELDS.QUANTITY_INVOICED, item.quantity_invoiced),
            (INVOICE_DETAIL_FIELDS.INVOICE_PRICE, item.invoice_price),
            (INVOICE_DETAIL_FIELDS.INVOICE_PRICING_QTY, item.quantity_invoiced),
            (INVOICE_DETAIL_FIELDS.LINE_AMOUNT, item.line_amount),
            (INVOICE_DETAIL_FIELDS.PO_NUMBER, item.po_number),
            (INVOICE_DETAIL_FIELDS.EXPACCT, item.expacct),
        )
        for name, value in mapping:
            if value is not None:
                fields[name] = value
        if doc.invoice_number:
            fields[INVOICE_DETAIL_FIELDS.AP_INVOICE_NUMBER] = doc.invoice_number
        rows.append(fields)
    return rows


def create_document_record(
    airtable: AirtableClient,
    doc: ParsedDocument,
    file_record_id: str,
    document_raw_text: str,
) -> str:
    fields = build_invoice_header_fields(doc, file_record_id, document_raw_text)
    created = airtable.create_records(TABLE_NAMES.INVOICE_HEADERS, [{"fields": fields}])
    if not created:
        raise OCRError(f"Airtable returned no record for {doc.document_type}")
    record_id = created[0]["id"]
    logger.info(
        "Created %s record %s (invoice=%s, vendor=%s)",
        doc.document_type, record_id, doc.invoice_number, doc.vendor_name,
    )
    return record_id


def create_invoice_details(airtable: AirtableClient, doc: ParsedDocument, invoice_header_id: str) -> list[str]:
    """Create one InvoiceDetails row per line item. A failing row is logged and skipped."""
    if doc.document_type != "invoice" or not doc.line_items:
        return []
    rows = build_invoice_detail_fields(doc, invoice_header_id)
    created_ids: list[str] = []
    for i, fields in enumerate(rows, start=1):
        try:
            created = airtable.create_records(TABLE_NAMES.INVOICE_DETAILS, [{"fields": fields}])
        except OCRError as e:
            logger.error("Failed to create detail %d/%d: %s", i, len(rows), e)
            continue
        if created:
            created_ids.append(created[0]["id"])
    logger.info("Created %d/%d invoice detail record(s)", len(created_ids), len(rows))
    return created_ids


def link_documents_to_file(
    airtable: AirtableClient,
    file_record_id: str,
    documents: list[DocumentRef],
    table: Optional[str] = None,
) -> None:
    invoice_ids = [d.id for d in documents if d.type == "invoice"]
    if not invoice_ids:
        logger.info("No invoice documents to link to %s", file_record_id)
        return
    airtable.update_record(
        table or get_settings().airtable.table_name,
        file_record_id,
        {FILE_FIELDS.INVOICE_HEADER_ID: invoice_ids},
    )
    logger.info("Linked %d invoice(s) to file %s", len(invoice_ids), file_record_id)


def process_post_ocr(
    file_record_id: str,
    airtable: Optional[AirtableClient] = None,
    parser: Optional[Parser] = None,
    extractor: Optional[Extractor] = None,
    settings: Optional[OCR2Settings] = None,
) -> ProcessFileResult:
    """
    Parse the raw text of a Files record and create its invoice records.
    Never raises: failures come back as success=False with the error message.
    """
    parser = parser or parse_documents
    extractor = extractor or extract_single_document_text
    logger.info("Starting post-OCR processing for file %s", file_record_id)

    try:
        airtable = airtable or get_airtable_client()
        table = (settings or get_settings()).airtable.table_name
        record = airtable.get_record(table, file_record_id)
        if record is None:
            raise OCRError(f"File record {file_record_id} not found")
        raw_text = get_raw_text(record.get("fields", {}))
        if not raw_text:
            raise OCRError("File record has no raw text - OCR may not have completed")

        documents = parser(raw_text)
        if not documents:
            raise OCRError("LLM did not extract any documents from the text")
        for i, doc in enumerate(documents, start=1):
            logger.info(
                "Document %d: type=%s vendor=%s invoice=%s amount=%s",
                i, doc.document_type, doc.vendor_name or "unknown",
                doc.invoice_number or "none", doc.amount or "unknown",
            )

        multiple = len(documents) > 1
        created: list[DocumentRef] = []
        details_created = 0
        for doc in documents:
            text = extractor(raw_text, doc) if multiple else raw_text
            record_id = create_document_record(airtable, doc, file_record_id, text)
            created.append(DocumentRef(type=doc.document_type, id=record_id))
            details_created += len(create_invoice_details(airtable, doc, record_id))

        link_documents_to_file(airtable, file_record_id, created, table=table)
    except Exception as e:
        logger.error("Post-OCR processing failed for %s: %s", file_record_id, e)
        return ProcessFileResult(success=False, file_record_id=file_record_id, error=str(e))

    logger.info(
        "Post-OCR completed for %s: %d document(s), %d detail(s)",
        file_record_id, len(created), details_created,
    )
    return ProcessFileResult(
        success=True,
        file_record_id=file_record_id,
        documents_created=len(created),
        document_ids=created,
        details_created=details_created,
        details={
            "documents": [
                {
                    "index": i + 1,
                    "type": doc.document_type,
                    "vendor": doc.vendor_name,
                    "invoice_number": doc.invoice_number,
                    "amount": doc.amount,
                    "record_id": created[i].id,
                    "line_items_count": len(doc.line_items),
                }
                for i, doc in enumerate(documents)
            ]
        },
    )
