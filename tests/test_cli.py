from __future__ import annotations

import json

import pytest

import run
from invoice_automation.errors import AirtableUpdateError
from invoice_automation.models import CreatedRecordsSummary, LocalDocumentsResult


def test_parser_knows_every_command():
    parser = run.build_parser()
    for argv in (
        ["ocr", "rec1", "--mode", "chunked"],
        ["post-ocr", "rec1"],
        ["match", "rec1", "--table", "InvoiceHeaders"],
        ["process", "rec1"],
        ["folder", "-i", "in", "-o", "out", "-j", "2"],
        ["schema"],
        ["duplicates", "--json"],
        ["health"],
        ["serve", "--port", "9000"],
    ):
        args = parser.parse_args(argv)
        assert args.command == argv[0]


def test_parser_rejects_unknown_mode():
    with pytest.raises(SystemExit):
        run.build_parser().parse_args(["ocr", "rec1", "--mode", "fast"])


def test_health_exit_code(monkeypatch, capsys):
    monkeypatch.setattr(run, "get_health", lambda: {"status": "error", "message": "OPENAI_API_KEY is required"})
    assert run.main(["health"]) == 1
    assert json.loads(capsys.readouterr().out)["status"] == "error"


def test_match_prints_summary(monkeypatch, capsys):
    seen = {}

    def fake_match(invoice_id, table):
        seen.update(invoice_id=invoice_id, table=table)
        return CreatedRecordsSummary(header_ids=["recH"], header_count=1)

    monkeypatch.setattr(run, "match_invoice", fake_match)
    assert run.main(["match", "recInv"]) == 0
    assert seen == {"invoice_id": "recInv", "table": "Invoices"}
    assert json.loads(capsys.readouterr().out)["header_count"] == 1


def test_folder_reports_failures(tmp_path, monkeypatch, capsys):
    (tmp_path / "in").mkdir()
    monkeypatch.setattr(
        run, "run_on_folder",
        lambda input_path, output_path, max_workers, mode: [
            LocalDocumentsResult(source_file="a.pdf", total_pages=2),
            LocalDocumentsResult(source_file="b.pdf", error="Not a valid PDF file"),
        ],
    )
    code = run.main(["folder", "-i", str(tmp_path / "in"), "-o", str(tmp_path / "out")])
    out = capsys.readouterr().out
    assert code == 1
    assert "a.pdf: 0 document(s), 2 page(s)" in out
    assert "b.pdf: ERROR Not a valid PDF file" in out


def test_folder_creates_missing_input(tmp_path, capsys):
    assert run.main(["folder", "-i", str(tmp_path / "new")]) == 0
    assert (tmp_path / "new").is_dir()
    assert "Add PDFs and run again" in capsys.readouterr().out


def test_library_errors_become_exit_code(monkeypatch, capsys):
    def fail():
        raise AirtableUpdateError("Airtable API error while fetching base schema: 403", status_code=403)

    class Client:
        get_base_schema = staticmethod(fail)

    monkeypatch.setattr(run, "get_airtable_client", lambda: Client())
    assert run.main(["schema"]) == 1
    assert "403" in capsys.readouterr().err


def test_duplicates_lists_file_names(monkeypatch, capsys):
    report = {
        "total_files": 3,
        "duplicate_count": 1,
        "duplicate_groups": [{
            "hash": "ab" * 32,
            "count": 2,
            "files": [{"id": "recA", "fields": {"FileName": "march.pdf"}}, {"id": "recB", "fields": {}}],
        }],
    }
    monkeypatch.setattr(run, "generate_duplicate_report", lambda: report)
    assert run.main(["duplicates"]) == 0
    out = capsys.readouterr().out
    assert "3 file(s) checked, 1 duplicate(s)" in out
    assert "abababababab... x2: march.pdf, recB" in out
