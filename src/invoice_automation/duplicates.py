"""
Duplicate upload detection by SHA-256 file hash against the Files table.
"""
from __future__ import annotations

import hashlib
import re
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Optional

from .airtable import AirtableClient, get_airtable_client
from .airtable_schema import ERROR_DUPLICATE_FILE, FILE_FIELDS, FILE_STATUS
from .config import get_settings
from .errors import OCRError
from .log import get_logger
from .models import DuplicateDetectionResult, DuplicateRecord

logger = get_logger("duplicates")

BATCH_SIZE = 10
BATCH_PAUSE_SECONDS = 0.1

_HASH_RE = re.compile(r"^[0-9a-fA-F]{64}$")


def generate_file_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def is_valid_hash(file_hash: Optional[str]) -> bool:
    return bool(file_hash) and bool(_HASH_RE.fullmatch(file_hash))


def compare_hashes(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b:
        return False
    return a.lower() == b.lower()


def _hash_formula(file_hash: str) -> str:
    return f'AND({{{FILE_FIELDS.FILE_HASH}}} = "{file_hash}", NOT({{{FILE_FIELDS.CLEARED}}}))'


def _files_table() -> str:
    return get_settings().airtable.table_name


def check_file_hash_duplicate(
    file_hash: str,
    airtable: Optional[AirtableClient] = None,
) -> DuplicateDetectionResult:
    """Look for a non-cleared Files record with the same hash. Lookup errors are reported, not raised."""
    if not is_valid_hash(file_hash):
        return DuplicateDetectionResult(is_duplicate=False, reason="Invalid hash format provided")

    try:
        airtable = airtable or get_airtable_client()
        records = airtable.list_records(
            _files_table(),
            filter_by_formula=_hash_formula(file_hash),
            fields=[
                FILE_FIELDS.FILE_NAME,
                FILE_FIELDS.CREATED_AT,
                FILE_FIELDS.FILE_HASH,
                FILE_FIELDS.STATUS,
                FILE_FIELDS.UPLOADED_DATE,
                FILE_FIELDS.CLEARED,
            ],
            max_records=5,
        )
    except OCRError as e:
        logger.error("Error checking for hash duplicates: %s", e)
        return DuplicateDetectionResult(
            is_duplicate=False, reason=f"Error during duplicate check: {e.message}"
        )

    if not records:
        return DuplicateDetectionResult(is_duplicate=False, reason="No matching file hash found")

    first = records[0]
    fields = first.get("fields", {})
    name = fields.get(FILE_FIELDS.FILE_NAME) or "Unknown"
    return DuplicateDetectionResult(
        is_duplicate=True,
        duplicate_record=DuplicateRecord(
            id=first["id"],
            name=name,
            upload_date=fields.get(FILE_FIELDS.CREATED_AT) or fields.get(FILE_FIELDS.UPLOADED_DATE),
            created_time=first.get("createdTime"),
            file_hash=fields.get(FILE_FIELDS.FILE_HASH) or "",
        ),
        confidence=1.0,
        reason=f'Exact file hash match found. Original file: "{name}"',
    )


def mark_file_as_duplicate(
    record_id: str,
    duplicate_of_id: str,
    airtable: Optional[AirtableClient] = None,
) -> bool:
    """Flag a Files record as a duplicate. Returns False if the update fails."""
    try:
        airtable = airtable or get_airtable_client()
        airtable.update_record(_files_table(), record_id, {
            FILE_FIELDS.STATUS: FILE_STATUS.ATTENTION,
            FILE_FIELDS.ERROR_CODE: ERROR_DUPLICATE_FILE,
            FILE_FIELDS.ERROR_DESCRIPTION: f"This file is a duplicate of record {duplicate_of_id}",
            FILE_FIELDS.ERROR_LINK: f"https://airtable.com/{airtable.base_id}/{record_id}",
        })
    except OCRError as e:
        logger.error("Error marking file %s as duplicate: %s", record_id, e)
        return False
    return True


def get_files_by_hash(file_hash: str, airtable: Optional[AirtableClient] = None) -> list[dict[str, Any]]:
    if not is_valid_hash(file_hash):
        return []
    try:
        airtable = airtable or get_airtable_client()
        return airtable.list_records(
            _files_table(),
            filter_by_formula=_hash_formula(file_hash),
            sort=[{"field": FILE_FIELDS.CREATED_AT, "direction": "asc"}],
        )
    except OCRError as e:
        logger.error("Error getting files by hash: %s", e)
        return []


def batch_check_duplicates(
    file_hashes: list[str],
    airtable: Optional[AirtableClient] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> dict[str, DuplicateDetectionResult]:
    """Check hashes in concurrent batches of 10 with a short pause between batches."""
    results: dict[str, DuplicateDetectionResult] = {}
    for start in range(0, len(file_hashes), BATCH_SIZE):
        batch = file_hashes[start:start + BATCH_SIZE]
        with ThreadPoolExecutor(max_workers=len(batch)) as executor:
            checked = executor.map(lambda h: check_file_hash_duplicate(h, airtable), batch)
            results.update(zip(batch, checked))
        if start + BATCH_SIZE < len(file_hashes):
            sleep(BATCH_PAUSE_SECONDS)
    return results


def generate_duplicate_report(airtable: Optional[AirtableClient] = None) -> dict[str, Any]:
    """Group non-cleared Files by hash; only groups with more than one file are reported."""
    try:
        airtable = airtable or get_airtable_client()
        files = airtable.list_records(
            _files_table(),
            fields=[
                FILE_FIELDS.FILE_NAME,
                FILE_FIELDS.FILE_HASH,
                FILE_FIELDS.UPLOADED_DATE,
                FILE_FIELDS.STATUS,
                FILE_FIELDS.CLEARED,
            ],
            filter_by_formula=f'AND({{{FILE_FIELDS.FILE_HASH}}} != "", NOT({{{FILE_FIELDS.CLEARED}}}))',
        )
    except OCRError as e:
        logger.error("Error generating duplicate report: %s", e)
        return {"total_files": 0, "duplicate_groups": [], "duplicate_count": 0}

    groups: dict[str, list[dict[str, Any]]] = {}
    for f in files:
        file_hash = f.get("fields", {}).get(FILE_FIELDS.FILE_HASH)
        if file_hash:
            groups.setdefault(file_hash, []).append(f)

    duplicate_groups = sorted(
        ({"hash": h, "files": fs, "count": len(fs)} for h, fs in groups.items() if len(fs) > 1),
        key=lambda g: g["count"],
        reverse=True,
    )
    return {
        "total_files": len(files),
        "duplicate_groups": duplicate_groups,
        "duplicate_count": sum(g["count"] - 1 for g in duplicate_groups),
    }
