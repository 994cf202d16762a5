"""
PO matching: ask the model to match invoice lines to PO receipts (MatchPayloadJSON),
then write POInvoiceHeaders / POInvoiceDetails records.

Record I/O is injected as callables so the flow can run against fakes:
  fetch_invoice(invoice_id) -> record dict or None
  create_records(table, records) -> list of created records (each with an "id")
  update_invoice(invoice_id, fields) -> anything
"""
from __future__ import annotations

import itertools
import json
from typing import Any, Callable, Optional

from openai import OpenAI
from pydantic import ValidationError

from .airtable import AirtableClient, get_airtable_client
from .airtable_schema import (
    INVOICE_FIELDS,
    PO_DETAIL_FIELDS,
    PO_HEADER_FIELDS,
    PO_HEADER_USER_ID,
    PO_HEADER_WRITABLE_FIELDS,
    RECEIPT_NUMERIC_FIELDS,
    RECEIPT_TEXT_FIELDS,
    TABLE_NAMES,
)
from .api_client import get_openai_client
from .config import get_settings
from .errors import OCRError, POMatchingError
from .llm_schemas import PO_MATCHING_SCHEMA, response_format
from .log import get_logger
from .models import CreatedRecordsSummary, GPTMatchingResponse, GPTMatchObject, GPTPOInvoiceHeader
from .prompts import PO_MATCHING_SYSTEM, create_po_matching_prompt

logger = get_logger("po_matching")

FetchInvoice = Callable[[str], Optional[dict[str, Any]]]
CreateRecords = Callable[[str, list[dict[str, Any]]], list[dict[str, Any]]]
UpdateInvoice = Callable[[str, dict[str, Any]], Any]


def filter_invoice_fields(fields: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in fields.items() if v is not None and v != ""}


def extract_match_payload(fields: dict[str, Any]) -> Any:
    """Pop MatchPayloadJSON from `fields` and parse it. Missing or invalid JSON gives {}."""
    raw = fields.pop(INVOICE_FIELDS.MATCH_PAYLOAD_JSON, None)
    if raw is None or raw == "":
        logger.warning("No MatchPayloadJSON found")
        return {}
    if isinstance(raw, (dict, list)):
        return raw
    try:
        return json.loads(raw)
    except (TypeError, ValueError) as e:
        logger.warning("Failed to parse MatchPayloadJSON, using empty object: %s", e)
        return {}


def generate_po_matches(
    invoice_data: dict[str, Any],
    match_payload: Any,
    client: Optional[OpenAI] = None,
) -> GPTMatchingResponse:
    """Structured-output call returning headers with nested match objects plus an error string."""
    client = client or get_openai_client()
    model = get_settings().openai.matching_model
    prompt = create_po_matching_prompt(invoice_data, match_payload)
    logger.info("Generating PO matches with %s (%d char prompt)", model, len(prompt))

    completion = client.chat.completions.create(
        model=model,
        messages=[
            {"role": "system", "content": PO_MATCHING_SYSTEM},
            {"role": "user", "content": prompt},
        ],
        response_format=response_format("POMatchingResponse", PO_MATCHING_SCHEMA),
    )
    message = completion.choices[0].message if completion.choices else None
    if message is None:
        raise POMatchingError("No message returned from OpenAI")
    refusal = getattr(message, "refusal", None)
    if refusal:
        raise POMatchingError(f"OpenAI refused to generate response: {refusal}")
    if not message.content:
        raise POMatchingError("No content returned from OpenAI")

    try:
        data = json.loads(message.content)
    except json.JSONDecodeError as e:
        raise POMatchingError(f"OpenAI returned invalid JSON: {e}") from e
    if not isinstance(data, dict) or not isinstance(data.get("headers"), list):
        raise POMatchingError("Invalid response: missing or invalid headers array")
    if not isinstance(data.get("error"), str):
        raise POMatchingError("Invalid response: missing or invalid error field")

    try:
        response = GPTMatchingResponse.model_validate(data)
    except ValidationError as e:
        raise POMatchingError(f"Invalid PO matching response: {e}") from e
    logger.info(
        "Generated %d header(s) with %d match object(s)",
        len(response.headers),
        response.total_matches(),
    )
    return response


def build_po_header_fields(header: GPTPOInvoiceHeader, invoice_id: str) -> dict[str, Any]:
    values = header.airtable_fields()
    fields: dict[str, Any] = {PO_HEADER_FIELDS.INVOICE: [invoice_id]}
    for name in PO_HEADER_WRITABLE_FIELDS:
        value = values.get(name)
        if value is not None and value != "":
            fields[name] = value
    fields[PO_HEADER_FIELDS.USER_ID] = PO_HEADER_USER_ID
    return fields


def build_po_detail_fields(
    match: GPTMatchObject,
    header_id: str,
    match_payload: Any,
) -> dict[str, Any]:
    """Detail row for one match object. An unknown receipt index leaves only the header link."""
    fields: dict[str, Any] = {PO_DETAIL_FIELDS.PO_INVOICE_HEADERS: [header_id]}
    payload = match_payload if isinstance(match_payload, dict) else {}
    receipts = payload.get("matchingReceipts") or []
    vendor = payload.get("vendor") or {}

    idx = match.match_object
    if not 0 <= idx < len(receipts) or not isinstance(receipts[idx], dict):
        logger.warning("No receipt found at index %d", idx)
        return fields
    receipt = receipts[idx]

    if match.invoice_price is not None:
        fields[PO_DETAIL_FIELDS.INVOICE_PRICE] = match.invoice_price
    if match.invoice_quantity is not None:
        fields[PO_DETAIL_FIELDS.QUANTITY_INVOICED] = match.invoice_quantity
    if match.invoice_amount is not None:
        fields[PO_DETAIL_FIELDS.LINE_AMOUNT] = match.invoice_amount

    for key, name in RECEIPT_TEXT_FIELDS.items():
        if receipt.get(key):
            fields[name] = receipt[key]
    for key, name in RECEIPT_NUMERIC_FIELDS.items():
        if receipt.get(key) is not None:
            fields[name] = receipt[key]

    if vendor.get("ppvVoucheredAcct"):
        fields[PO_DETAIL_FIELDS.PPV_VOUCHERED_ACCT] = vendor["ppvVoucheredAcct"]
    if vendor.get("ppvVoucheredSubAcct"):
        fields[PO_DETAIL_FIELDS.PPV_VOUCHERED_SUBACCT] = vendor["ppvVoucheredSubAcct"]
    return fields


def create_po_invoice_headers_and_details(
    headers: list[GPTPOInvoiceHeader],
    invoice_id: str,
    match_payload: Any,
    create_records: CreateRecords,
) -> tuple[list[str], list[str]]:
    """Create one POInvoiceHeaders row per header, then its POInvoiceDetails rows. Returns (header_ids, detail_ids)."""
    header_ids: list[str] = []
    detail_ids: list[str] = []
    if not headers:
        logger.info("No headers to create")
        return header_ids, detail_ids

    for i, header in enumerate(headers, start=1):
        created = create_records(
            TABLE_NAMES.PO_INVOICE_HEADERS,
            [{"fields": build_po_header_fields(header, invoice_id)}],
        )
        if not created:
            raise POMatchingError(f"No record returned for POInvoiceHeader {i}")
        header_id = created[0]["id"]
        header_ids.append(header_id)
        logger.info("Created header %d/%d: %s", i, len(headers), header_id)

        matches = [m for line in header.details for m in line]
        if not matches:
            continue
        rows = [{"fields": build_po_detail_fields(m, header_id, match_payload)} for m in matches]
        created_details = create_records(TABLE_NAMES.PO_INVOICE_DETAILS, rows)
        detail_ids.extend(r["id"] for r in created_details)
        logger.info("Created %d detail(s) for header %s", len(created_details), header_id)

    logger.info("Total created: %d header(s), %d detail(s)", len(header_ids), len(detail_ids))
    return header_ids, detail_ids


def process_po_matching(
    invoice_id: str,
    fetch_invoice: FetchInvoice,
    create_records: CreateRecords,
    update_invoice: Optional[UpdateInvoice] = None,
    client: Optional[OpenAI] = None,
) -> CreatedRecordsSummary:
    """Full matching flow for one invoice."""
    record = fetch_invoice(invoice_id)
    if not record or not record.get("fields"):
        raise POMatchingError(f"Invoice {invoice_id} not found or has no fields")

    fields = filter_invoice_fields(record["fields"])
    match_payload = extract_match_payload(fields)
    receipts = match_payload.get("matchingReceipts") if isinstance(match_payload, dict) else None
    logger.info(
        "Matching invoice %s (%d field(s), %d receipt(s))",
        invoice_id, len(fields), len(receipts or []),
    )

    response = generate_po_matches(fields, match_payload, client)
    header_ids, detail_ids = create_po_invoice_headers_and_details(
        response.headers, invoice_id, match_payload, create_records
    )

    if response.error.strip():
        logger.warning("Matcher reported unmatched lines for %s: %s", invoice_id, response.error)
        if update_invoice is not None:
            try:
                update_invoice(invoice_id, {INVOICE_FIELDS.ERROR_DESCRIPTION: response.error})
            except OCRError as e:
                logger.error("Could not record matcher error on invoice %s: %s", invoice_id, e)

    return CreatedRecordsSummary(
        header_ids=header_ids,
        detail_ids=detail_ids,
        header_count=len(header_ids),
        detail_count=len(detail_ids),
        error=response.error,
    )


def match_invoice(
    invoice_id: str,
    airtable: Optional[AirtableClient] = None,
    table: str = TABLE_NAMES.INVOICES,
    client: Optional[OpenAI] = None,
) -> CreatedRecordsSummary:
    """process_po_matching wired to Airtable: reads `table`, writes PO tables."""
    airtable = airtable or get_airtable_client()
    return process_po_matching(
        invoice_id,
        fetch_invoice=lambda rid: airtable.get_record(table, rid),
        create_records=airtable.create_records,
        update_invoice=lambda rid, fields: airtable.update_record(table, rid, fields),
        client=client,
    )


def create_mock_create_records(
    header_ids: Optional[list[str]] = None,
    detail_ids: Optional[list[str]] = None,
) -> tuple[CreateRecords, list[dict[str, Any]]]:
    """
    Fake create_records for tests and dry runs. Hands out `header_ids` / `detail_ids` in order,
    then recMockHeaderN / recMockDetailN. Returns (fn, calls) where calls logs every invocation.
    """
    pools = {
        TABLE_NAMES.PO_INVOICE_HEADERS: itertools.chain(
            header_ids or [], (f"recMockHeader{n}" for n in itertools.count(1))
        ),
        TABLE_NAMES.PO_INVOICE_DETAILS: itertools.chain(
            detail_ids or [], (f"recMockDetail{n}" for n in itertools.count(1))
        ),
    }
    calls: list[dict[str, Any]] = []

    def create_records(table: str, records: list[dict[str, Any]]) -> list[dict[str, Any]]:
        calls.append({"table": table, "records": records})
        pool = pools.get(table)
        if pool is None:
            return []
        return [{"id": next(pool), "fields": r.get("fields", {})} for r in records]

    return create_records, calls
