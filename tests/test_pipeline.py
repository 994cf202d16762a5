from __future__ import annotations

import json

import pytest

from fakes import FakeAirtable
from invoice_automation import pipeline
from invoice_automation.config import AirtableSettings, OCR2Settings
from invoice_automation.errors import OCRError, POMatchingError
from invoice_automation.models import (
    CreatedRecordsSummary,
    DocumentRef,
    LocalDocumentsResult,
    ParsedDocument,
    PDFProcessingResult,
    ProcessFileResult,
)
from invoice_automation.pipeline import process_file, process_local_pdf, run_on_folder

OCR_TEXT = "ACME SUPPLY\nInvoice INV-1\nTotal 25.00"


def _ocr_result(mode="native") -> PDFProcessingResult:
    return PDFProcessingResult(
        total_pages=1, processed_pages=1, extracted_text=OCR_TEXT, processing_time_ms=12, mode=mode
    )


@pytest.fixture
def files_airtable():
    return FakeAirtable({"Files": {"recFile": {"FileURL": "https://files.test/a.pdf"}}})


def test_process_local_pdf(tmp_path, monkeypatch):
    pdf = tmp_path / "march.pdf"
    pdf.write_bytes(b"%PDF-1.4 local")
    seen = {}

    def fake_ocr(pdf_bytes, mode=None, client=None, source=None):
        seen["bytes"] = pdf_bytes
        seen["source"] = source
        return _ocr_result(mode or "native")

    monkeypatch.setattr(pipeline, "process_pdf_bytes", fake_ocr)
    monkeypatch.setattr(
        pipeline, "parse_documents",
        lambda text, client=None: [ParsedDocument(document_type="invoice", invoice_number="INV-1")],
    )

    result = process_local_pdf(pdf, mode="chunked")
    assert seen == {"bytes": b"%PDF-1.4 local", "source": "march.pdf"}
    assert result.source_file == "march.pdf"
    assert result.mode == "chunked"
    assert result.raw_text == OCR_TEXT
    assert result.documents[0].invoice_number == "INV-1"
    assert result.error is None


def test_run_on_folder_writes_json_and_keeps_order(tmp_path, monkeypatch):
    input_dir = tmp_path / "input"
    output_dir = tmp_path / "output"
    input_dir.mkdir()
    for name in ("c.pdf", "a.pdf", "bad.pdf", "notes.txt"):
        (input_dir / name).write_bytes(b"%PDF-1.4")

    def fake_local(path, client=None, mode=None):
        if path.name == "bad.pdf":
            raise OCRError("Vision API request timed out. Try a smaller file.")
        return LocalDocumentsResult(source_file=path.name, total_pages=1, raw_text=OCR_TEXT)

    monkeypatch.setattr(pipeline, "process_local_pdf", fake_local)
    results = run_on_folder(input_dir, output_dir, max_workers=3)

    assert [r.source_file for r in results] == ["a.pdf", "bad.pdf", "c.pdf"]
    assert results[1].error == "Vision API request timed out. Try a smaller file."
    assert sorted(p.name for p in output_dir.iterdir()) == [
        "a_documents.json", "bad_documents.json", "c_documents.json",
    ]
    bad = json.loads((output_dir / "bad_documents.json").read_text(encoding="utf-8"))
    assert bad["error"].startswith("Vision API request timed out")
    good = json.loads((output_dir / "a_documents.json").read_text(encoding="utf-8"))
    assert good["raw_text"] == OCR_TEXT


def test_run_on_folder_sequential(tmp_path, monkeypatch):
    input_dir = tmp_path / "input"
    input_dir.mkdir()
    (input_dir / "only.pdf").write_bytes(b"%PDF-1.4")
    monkeypatch.setattr(
        pipeline, "process_local_pdf",
        lambda path, client=None, mode=None: LocalDocumentsResult(source_file=path.name),
    )
    results = run_on_folder(input_dir, tmp_path / "out")
    assert [r.source_file for r in results] == ["only.pdf"]


def test_run_on_folder_creates_missing_input(tmp_path):
    missing = tmp_path / "nope"
    assert run_on_folder(missing, tmp_path / "out") == []
    assert missing.is_dir()


def _wire_stages(monkeypatch, post_result, match=None):
    calls = {"match": []}

    monkeypatch.setattr(pipeline, "process_file_record", lambda record_id, **kwargs: _ocr_result())
    monkeypatch.setattr(pipeline, "process_post_ocr", lambda record_id, **kwargs: post_result)

    def fake_match(invoice_id, airtable=None, table=None, client=None):
        calls["match"].append((invoice_id, table))
        if match is not None:
            return match(invoice_id)
        return CreatedRecordsSummary(header_ids=["recH"], header_count=1, detail_count=2)

    monkeypatch.setattr(pipeline, "match_invoice", fake_match)
    return calls


def test_process_file_runs_every_stage(files_airtable, monkeypatch):
    post = ProcessFileResult(
        success=True,
        file_record_id="recFile",
        documents_created=2,
        details_created=3,
        document_ids=[DocumentRef(type="invoice", id="recInv1"), DocumentRef(type="delivery_ticket", id="recDT")],
    )
    calls = _wire_stages(monkeypatch, post)

    result = process_file("recFile", airtable=files_airtable)

    assert result.invoice_ids == ["recInv1"]
    assert result.documents_created == 2
    assert result.text_length == len(OCR_TEXT)
    assert calls["match"] == [("recInv1", "InvoiceHeaders")]
    assert [u[2].get("Processing-Status") for u in files_airtable.updates] == ["RELINV", "MATCHING", "MATCHED"]
    fields = files_airtable.fields("Files", "recFile")
    assert fields["Status"] == "Processed"
    assert fields["Processing-Status"] == "MATCHED"


def test_process_file_post_ocr_failure(files_airtable, monkeypatch):
    post = ProcessFileResult(success=False, file_record_id="recFile", error="LLM did not extract any documents")
    calls = _wire_stages(monkeypatch, post)

    with pytest.raises(OCRError, match="Post-OCR processing failed"):
        process_file("recFile", airtable=files_airtable)

    fields = files_airtable.fields("Files", "recFile")
    assert fields["Error-Code"] == "PARSE_FAILED"
    assert fields["Status"] == "Error"
    assert calls["match"] == []


def test_process_file_matching_failure(files_airtable, monkeypatch):
    post = ProcessFileResult(
        success=True, file_record_id="recFile", document_ids=[DocumentRef(type="invoice", id="recInv1")],
    )

    def failing_match(invoice_id):
        raise POMatchingError("No content returned from OpenAI")

    _wire_stages(monkeypatch, post, match=failing_match)
    with pytest.raises(POMatchingError):
        process_file("recFile", airtable=files_airtable)

    fields = files_airtable.fields("Files", "recFile")
    assert fields["Error-Code"] == "MATCHING_FAILED"
    assert fields["Processing-Status"] == "ERROR"
    assert fields["Error-Description"] == "No content returned from OpenAI"


def test_process_file_uses_passed_settings(monkeypatch):
    airtable = FakeAirtable({"Uploads": {"recFile": {"FileURL": "https://files.test/a.pdf"}}})
    settings = OCR2Settings(airtable=AirtableSettings(table_name="Uploads"))
    seen = {}

    def fake_ocr(record_id, **kwargs):
        seen["ocr"] = kwargs["settings"]
        return _ocr_result()

    def fake_post(record_id, **kwargs):
        seen["post"] = kwargs["settings"]
        return ProcessFileResult(success=True, file_record_id=record_id)

    monkeypatch.setattr(pipeline, "process_file_record", fake_ocr)
    monkeypatch.setattr(pipeline, "process_post_ocr", fake_post)

    process_file("recFile", airtable=airtable, settings=settings)

    assert seen == {"ocr": settings, "post": settings}
    assert airtable.fields("Uploads", "recFile")["Processing-Status"] == "MATCHED"
    assert "Files" not in airtable.tables
