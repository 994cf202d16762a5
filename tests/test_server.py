from __future__ import annotations

import base64
import json

import pytest
from fastapi.testclient import TestClient

from fakes import FakeAirtable
from invoice_automation import server
from invoice_automation.config import reset_settings
from invoice_automation.errors import AirtableUpdateError, PDFProcessingError, VisionAPIError
from invoice_automation.models import CreatedRecordsSummary, PDFProcessingResult, ProcessFileResult
from invoice_automation.webhooks import sign_payload

SECRET = base64.b64encode(b"server-webhook-secret").decode("ascii")


@pytest.fixture
def client():
    return TestClient(server.app)


def test_health_reports_configuration_problems(client):
    response = client.get("/api/ocr2/health")
    assert response.status_code == 503
    assert response.json()["status"] == "error"


def test_health_ok_for_get_and_post(client, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    reset_settings()
    assert client.get("/api/ocr2/health").json()["status"] == "healthy"
    assert client.post("/api/ocr2/health").status_code == 200


def test_ocr_process_requires_record_id(client):
    response = client.post("/api/ocr2/process", json={})
    assert response.status_code == 400
    assert response.json() == {"error": {"message": "recordId is required", "status": 400}}


@pytest.mark.parametrize("path", ["/api/ocr2/process", "/api/post-ocr/process", "/api/po-matching"])
def test_missing_or_malformed_body_is_a_json_400(client, path):
    for response in (
        client.post(path),
        client.post(path, content=b"{not json", headers={"Content-Type": "application/json"}),
    ):
        assert response.status_code == 400
        assert response.json() == {"error": {"message": "Request body must be a JSON object", "status": 400}}


def test_ocr_process(client, monkeypatch):
    monkeypatch.setattr(
        server, "process_file_record",
        lambda record_id: PDFProcessingResult(
            total_pages=3, processed_pages=3, extracted_text="x" * 40, processing_time_ms=99, mode="native"
        ),
    )
    body = client.post("/api/ocr2/process", json={"recordId": "recFile"}).json()
    assert body == {
        "success": True,
        "recordId": "recFile",
        "totalPages": 3,
        "textLength": 40,
        "processingTimeMs": 99,
        "mode": "native",
    }


@pytest.mark.parametrize(
    "error, status",
    [
        (PDFProcessingError("PDF validation failed: Not a valid PDF file"), 400),
        (VisionAPIError("Rate limit exceeded. Please try again later."), 502),
        (AirtableUpdateError("not found", status_code=404), 404),
    ],
)
def test_pipeline_errors_become_json(client, monkeypatch, error, status):
    def fail(record_id):
        raise error

    monkeypatch.setattr(server, "process_file_record", fail)
    response = client.post("/api/ocr2/process", json={"recordId": "recFile"})
    assert response.status_code == status
    payload = response.json()["error"]
    assert payload["message"] == error.message
    assert payload["status"] == status
    assert payload["type"] == type(error).__name__


def test_post_ocr(client, monkeypatch):
    monkeypatch.setattr(
        server, "process_post_ocr",
        lambda file_id: ProcessFileResult(success=True, file_record_id=file_id, documents_created=1),
    )
    assert client.post("/api/post-ocr/process", json={}).status_code == 400
    body = client.post("/api/post-ocr/process", json={"fileRecordId": "recFile"}).json()
    assert body["success"] is True
    assert body["documents_created"] == 1


def test_post_ocr_failure(client, monkeypatch):
    monkeypatch.setattr(
        server, "process_post_ocr",
        lambda file_id: ProcessFileResult(success=False, file_record_id=file_id, error="no raw text"),
    )
    response = client.post("/api/post-ocr/process", json={"fileRecordId": "recFile"})
    assert response.status_code == 500
    assert response.json()["error"]["message"] == "no raw text"


def test_po_matching(client, monkeypatch):
    monkeypatch.setattr(
        server, "match_invoice",
        lambda invoice_id: CreatedRecordsSummary(header_ids=["recH"], header_count=1),
    )
    assert client.post("/api/po-matching", json={}).status_code == 400
    body = client.post("/api/po-matching", json={"invoiceId": "recInv"}).json()
    assert body["success"] is True
    assert body["header_ids"] == ["recH"]


def test_webhook_signature_checked(client, monkeypatch):
    monkeypatch.setenv("AIRTABLE_WEBHOOK_SECRET", SECRET)
    reset_settings()
    body = json.dumps({
        "base": {"id": "appBASE"},
        "webhook": {"id": "achHOOK"},
        "timestamp": "2024-05-01T12:00:00.000Z",
    }).encode("utf-8")

    unsigned = client.post("/api/airtable/webhooks", content=body)
    assert unsigned.status_code == 401

    signed = client.post(
        "/api/airtable/webhooks",
        content=body,
        headers={"X-Airtable-Content-MAC": sign_payload(body, SECRET)},
    )
    assert signed.status_code == 200
    assert signed.json()["received"] is True


def test_webhook_without_secret_configured(client):
    body = b"{}"
    response = client.post(
        "/api/airtable/webhooks", content=body, headers={"X-Airtable-Content-MAC": sign_payload(body, SECRET)}
    )
    assert response.status_code == 500


def test_env_check_never_leaks_values(client, monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-very-secret")
    monkeypatch.setenv("AIRTABLE_PAT", "pat-very-secret")
    reset_settings()
    response = client.get("/api/debug/env-check")
    body = response.json()
    assert body["openai_api_key"] is True
    assert body["airtable_pat"] is True
    assert body["airtable_base_id"] is False
    assert all(isinstance(v, bool) for v in body.values())
    assert "very-secret" not in response.text


def test_debug_record(client, monkeypatch):
    airtable = FakeAirtable({"Files": {"recFile": {"FileName": "a.pdf"}}})
    monkeypatch.setattr(server, "get_airtable_client", lambda: airtable)
    assert client.get("/api/debug/record/Files/recFile").json()["fields"]["FileName"] == "a.pdf"
    missing = client.get("/api/debug/record/Files/recNope")
    assert missing.status_code == 404
    assert missing.json()["error"]["status"] == 404
