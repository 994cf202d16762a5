"""
Airtable webhook notifications: signature check and change dispatch.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
from typing import Any, Callable, Optional

from pydantic import BaseModel, Field, ValidationError

from .log import get_logger

logger = get_logger("webhooks")

SIGNATURE_HEADER = "x-airtable-content-mac"
SIGNATURE_PREFIX = "hmac-sha256="


class WebhookRef(BaseModel):
    id: str


class RecordChange(BaseModel):
    current: Optional[dict[str, Any]] = None
    previous: Optional[dict[str, Any]] = None


class TableChanges(BaseModel):
    changedRecordsById: dict[str, RecordChange] = Field(default_factory=dict)
    createdRecordsById: dict[str, dict[str, Any]] = Field(default_factory=dict)
    destroyedRecordIds: list[str] = Field(default_factory=list)


class WebhookPayload(BaseModel):
    base: WebhookRef
    webhook: WebhookRef
    timestamp: str
    changedTablesById: dict[str, TableChanges] = Field(default_factory=dict)


def verify_webhook_signature(
    body: bytes | str,
    signature: Optional[str],
    secret_b64: Optional[str],
) -> bool:
    """HMAC-SHA256 of the raw body keyed by the base64-decoded secret, compared in constant time."""
    if not signature or not secret_b64:
        return False
    if isinstance(body, str):
        body = body.encode("utf-8")
    if signature.startswith(SIGNATURE_PREFIX):
        signature = signature[len(SIGNATURE_PREFIX):]
    try:
        key = base64.b64decode(secret_b64, validate=True)
    except (binascii.Error, ValueError):
        logger.error("Webhook secret is not valid base64")
        return False
    expected = base64.b64encode(hmac.new(key, body, hashlib.sha256).digest()).decode("ascii")
    return hmac.compare_digest(signature.encode("utf-8"), expected.encode("ascii"))


def sign_payload(body: bytes | str, secret_b64: str) -> str:
    """Signature header value Airtable would send for `body` (used by tests and local tooling)."""
    if isinstance(body, str):
        body = body.encode("utf-8")
    digest = hmac.new(base64.b64decode(secret_b64), body, hashlib.sha256).digest()
    return SIGNATURE_PREFIX + base64.b64encode(digest).decode("ascii")


def _log_created(table_id: str, record_id: str, data: dict[str, Any]) -> None:
    logger.info("Record created in table %s: %s", table_id, record_id)


def _log_changed(table_id: str, record_id: str, change: RecordChange) -> None:
    logger.info("Record changed in table %s: %s", table_id, record_id)


def _log_destroyed(table_id: str, record_id: str) -> None:
    logger.info("Record destroyed in table %s: %s", table_id, record_id)


DEFAULT_HANDLERS: dict[str, Callable[..., Any]] = {
    "created": _log_created,
    "changed": _log_changed,
    "destroyed": _log_destroyed,
}


def process_webhook_changes(
    payload: WebhookPayload,
    handlers: Optional[dict[str, Callable[..., Any]]] = None,
) -> dict[str, int]:
    """
    Dispatch every change to `handlers` ("created", "changed", "destroyed"), table by table,
    created before changed before destroyed. Missing handlers fall back to logging.
    """
    handlers = {**DEFAULT_HANDLERS, **(handlers or {})}
    counts = {"tables": 0, "created": 0, "changed": 0, "destroyed": 0}
    logger.info(
        "Processing webhook %s for base %s (%d table(s) changed)",
        payload.webhook.id, payload.base.id, len(payload.changedTablesById),
    )

    for table_id, changes in payload.changedTablesById.items():
        counts["tables"] += 1
        for record_id, data in changes.createdRecordsById.items():
            handlers["created"](table_id, record_id, data)
            counts["created"] += 1
        for record_id, change in changes.changedRecordsById.items():
            handlers["changed"](table_id, record_id, change)
            counts["changed"] += 1
        for record_id in changes.destroyedRecordIds:
            handlers["destroyed"](table_id, record_id)
            counts["destroyed"] += 1
    return counts


def _error(message: str, status: int) -> tuple[int, dict[str, Any]]:
    return status, {"error": {"message": message, "status": status}}


def handle_webhook(
    body: bytes | str,
    signature: Optional[str],
    secret: Optional[str],
    handlers: Optional[dict[str, Callable[..., Any]]] = None,
) -> tuple[int, dict[str, Any]]:
    """Validate and process one notification. Returns (status_code, json_body)."""
    if not signature:
        return _error("Missing webhook signature", 401)
    if not secret:
        logger.error("AIRTABLE_WEBHOOK_SECRET not configured")
        return _error("Webhook secret not configured", 500)
    if not verify_webhook_signature(body, signature, secret):
        return _error("Invalid webhook signature", 401)

    try:
        payload = WebhookPayload.model_validate(json.loads(body))
    except (ValueError, ValidationError) as e:
        logger.error("Webhook payload rejected: %s", e)
        return _error(f"Invalid webhook payload: {e}", 500)

    counts = process_webhook_changes(payload, handlers)
    return 200, {"received": True, "counts": counts}
