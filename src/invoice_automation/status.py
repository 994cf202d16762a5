"""
Status mapping between Airtable values (Files.Status, Processing-Status, invoice Status)
and the upload / document states shown in the dashboard.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from .airtable_schema import ERROR_DUPLICATE_FILE, FILE_FIELDS, FILE_STATUS, PROCESSING_STATUS, UX_STATUS_MAP
from .log import get_logger

logger = get_logger("status")

_PROCESSING_UI = {
    PROCESSING_STATUS.DETINV: "processing",
    PROCESSING_STATUS.PARSE: "processing",
    PROCESSING_STATUS.RELINV: "processing",
    PROCESSING_STATUS.MATCHING: "connecting",
    PROCESSING_STATUS.MATCHED: "success",
}

_STATUS_TEXT = {
    PROCESSING_STATUS.UPL: "Uploaded, waiting to start...",
    PROCESSING_STATUS.DETINV: "Detecting invoices (OCR)...",
    PROCESSING_STATUS.PARSE: "Parsing invoice data...",
    PROCESSING_STATUS.RELINV: "Finding related invoices...",
    PROCESSING_STATUS.MATCHING: "Matching with PO headers...",
    PROCESSING_STATUS.MATCHED: "Matching complete",
    PROCESSING_STATUS.ERROR: "Error occurred",
}

_PROGRESS = {
    PROCESSING_STATUS.UPL: 10,
    PROCESSING_STATUS.DETINV: 30,
    PROCESSING_STATUS.PARSE: 50,
    PROCESSING_STATUS.RELINV: 70,
    PROCESSING_STATUS.MATCHING: 90,
    PROCESSING_STATUS.MATCHED: 100,
}


def map_file_status_to_ui(status: Optional[str], processing_status: Optional[str] = None) -> str:
    """Files.Status + Processing-Status -> upload card status."""
    if status == FILE_STATUS.ERROR or processing_status == PROCESSING_STATUS.ERROR:
        return "error"
    if status == FILE_STATUS.QUEUED:
        return "queued"
    if status == FILE_STATUS.PROCESSING:
        return _PROCESSING_UI.get(processing_status or "", "processing")
    if status == FILE_STATUS.PROCESSED:
        return "success"
    logger.warning("Unknown status combination: %s / %s", status, processing_status)
    return "processing"


def get_processing_status_text(processing_status: Optional[str] = None) -> str:
    return _STATUS_TEXT.get(processing_status or "", "Processing...")


def get_processing_progress(processing_status: Optional[str] = None) -> int:
    return _PROGRESS.get(processing_status or "", 50)


_DOCUMENT_STATUS = {
    "queued": "queued",
    "pending": "open",
    "approved": "open",
    "matched": "open",
    "reviewed": "reviewed",
    "exported": "exported",
    "attention": "queued",
    "error": "rejected",
}

_AIRTABLE_STATUS = {
    "queued": "Queued",
    "open": "Pending",
    "pending": "Pending",
    "reviewed": "Reviewed",
    "exported": "Exported",
    "approved": "Approved",
    "rejected": "Error",
}


def map_airtable_status_to_document_status(airtable_status: Optional[str]) -> str:
    """Case-insensitive; unknown values map to "open"."""
    mapped = _DOCUMENT_STATUS.get((airtable_status or "").lower())
    if mapped is None:
        logger.warning("Unknown Airtable status: %s, defaulting to 'open'", airtable_status)
        return "open"
    return mapped


def map_document_status_to_airtable(document_status: Optional[str]) -> str:
    mapped = _AIRTABLE_STATUS.get(document_status or "")
    if mapped is None:
        logger.warning("Unknown document status: %s, defaulting to 'Pending'", document_status)
        return "Pending"
    return mapped


def is_processing_status(status: str) -> bool:
    return status in ("open", "pending", "reviewed", "approved")


def is_final_status(status: str) -> bool:
    return status in ("exported", "rejected")


def requires_attention(status: str) -> bool:
    return status in ("queued", "rejected")


def ux_status_for(invoice_status: Optional[str]) -> Optional[str]:
    """Invoice Status -> label shown to users (Pending -> Processing, ...). None when unmapped."""
    return UX_STATUS_MAP.get(invoice_status or "")


@dataclass(frozen=True)
class StateGroup:
    id: str
    label: str
    description: str
    priority: int
    statuses: tuple[str, ...]


STATE_GROUPS: tuple[StateGroup, ...] = (
    StateGroup("active", "In Progress", "Files currently being uploaded or processed", 100,
               ("uploading", "queued", "processing", "connecting")),
    StateGroup("needs-review", "Needs Review", "Matched with issues that need your attention", 90,
               ("success-with-caveats",)),
    StateGroup("ready", "Ready to Export", "Successfully processed and ready for export", 80,
               ("success",)),
    StateGroup("errors", "Errors", "Files that encountered problems", 70,
               ("error", "processing-error", "duplicate", "no-match")),
    StateGroup("completed", "Exported", "Successfully exported", 60,
               ("exported",)),
)


def group_for_upload_status(upload_status: str) -> Optional[StateGroup]:
    for group in sorted(STATE_GROUPS, key=lambda g: g.priority, reverse=True):
        if upload_status in group.statuses:
            return group
    return None


def upload_status_for_record(fields: dict[str, Any]) -> str:
    """Upload card status for a Files record, including the Attention cases."""
    status = fields.get(FILE_FIELDS.STATUS)
    if status == FILE_STATUS.ATTENTION:
        if fields.get(FILE_FIELDS.ERROR_CODE) == ERROR_DUPLICATE_FILE:
            return "duplicate"
        return "success-with-caveats"
    return map_file_status_to_ui(status, fields.get(FILE_FIELDS.PROCESSING_STATUS))


def summarize_file_record(record: dict[str, Any]) -> dict[str, Any]:
    fields = record.get("fields", {})
    processing_status = fields.get(FILE_FIELDS.PROCESSING_STATUS)
    return {
        "id": record.get("id"),
        "name": fields.get(FILE_FIELDS.FILE_NAME) or record.get("id"),
        "status": fields.get(FILE_FIELDS.STATUS),
        "processing_status": processing_status,
        "upload_status": upload_status_for_record(fields),
        "status_text": get_processing_status_text(processing_status),
        "progress": get_processing_progress(processing_status),
        "error": fields.get(FILE_FIELDS.ERROR_DESCRIPTION),
    }


def group_file_records(records: list[dict[str, Any]]) -> list[tuple[StateGroup, list[dict[str, Any]]]]:
    """Summaries grouped by state group, highest priority first. Empty groups are left out."""
    buckets: dict[str, list[dict[str, Any]]] = {}
    for record in records:
        summary = summarize_file_record(record)
        group = group_for_upload_status(summary["upload_status"])
        if group is None:
            logger.warning("No state group for upload status %s", summary["upload_status"])
            continue
        buckets.setdefault(group.id, []).append(summary)
    ordered = sorted(STATE_GROUPS, key=lambda g: g.priority, reverse=True)
    return [(g, buckets[g.id]) for g in ordered if g.id in buckets]
