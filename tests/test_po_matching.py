from __future__ import annotations

import json

import pytest

from fakes import FakeAirtable, FakeOpenAI, completion
from invoice_automation.errors import AirtableUpdateError, POMatchingError
from invoice_automation.models import GPTMatchObject, GPTPOInvoiceHeader
from invoice_automation.po_matching import (
    build_po_detail_fields,
    build_po_header_fields,
    create_mock_create_records,
    create_po_invoice_headers_and_details,
    extract_match_payload,
    generate_po_matches,
    match_invoice,
    process_po_matching,
)

MATCH_PAYLOAD = {
    "vendor": {"ppvVoucheredAcct": "5100", "ppvVoucheredSubAcct": "01"},
    "matchingReceipts": [
        {
            "itemNo": "SKU-1",
            "itemDescription": "Widget",
            "poReleaseNumber": "R1",
            "quantityReceived": 10,
            "quantityAccepted": 0,
            "purchasePrice": 2.5,
            "uom": "EA",
            "expAcct": "",
        },
        {"itemNo": "SKU-2", "quantityReceived": 4},
    ],
}

MATCH_RESPONSE = {
    "headers": [
        {
            "Company-Code": "ACME",
            "VendId": "V100",
            "TermsId": "N30",
            "TermsDaysInt": 30,
            "PO-Number": "PO-77",
            "CuryId": "USD",
            "CuryRate": 1.0,
            "User-Id": "model-user",
            "details": [
                [{"match_object": 0, "invoice_price": 2.5, "invoice_quantity": 10, "invoice_amount": 25.0}],
                [
                    {"match_object": 1, "invoice_price": 1.0, "invoice_quantity": 2, "invoice_amount": 2.0},
                    {"match_object": 1, "invoice_price": 1.0, "invoice_quantity": 2, "invoice_amount": 2.0},
                ],
            ],
        }
    ],
    "error": "",
}


def _invoice_fields() -> dict:
    return {
        "AP-Invoice-Number": "INV-1",
        "Vendor Name": "Acme Supply",
        "Notes": "",
        "Memo": None,
        "MatchPayloadJSON": json.dumps(MATCH_PAYLOAD),
    }


def test_extract_match_payload_pops_and_parses():
    fields = _invoice_fields()
    payload = extract_match_payload(fields)
    assert payload == MATCH_PAYLOAD
    assert "MatchPayloadJSON" not in fields


def test_extract_match_payload_tolerates_bad_values():
    assert extract_match_payload({}) == {}
    assert extract_match_payload({"MatchPayloadJSON": "{broken"}) == {}
    assert extract_match_payload({"MatchPayloadJSON": {"a": 1}}) == {"a": 1}


def test_header_fields_force_user_id_and_skip_currency_direction():
    header = GPTPOInvoiceHeader.model_validate({
        "VendId": "V1",
        "PO-Number": "PO-1",
        "CuryMultDiv": "multiple",
        "User-Id": "someone",
        "TermsId": "",
        "details": [],
    })
    fields = build_po_header_fields(header, "recInv")
    assert fields["Invoice"] == ["recInv"]
    assert fields["VendId"] == "V1"
    assert fields["User-Id"] == "test-user"
    assert "CuryMultDiv" not in fields
    assert "TermsId" not in fields


def test_detail_fields_copy_receipt_and_vendor_values():
    match = GPTMatchObject(match_object=0, invoice_price=2.5, invoice_quantity=10, invoice_amount=25.0)
    fields = build_po_detail_fields(match, "recHdr", MATCH_PAYLOAD)
    assert fields["POInvoiceHeaders"] == ["recHdr"]
    assert fields["Invoice-Price"] == 2.5
    assert fields["Quantity-Invoiced"] == 10
    assert fields["Line-Amount"] == 25.0
    assert fields["Item-No"] == "SKU-1"
    assert fields["PO-UOM"] == "EA"
    assert fields["Quantity-Received"] == 10
    assert fields["Quantity-Accepted"] == 0
    assert "ExpAcct" not in fields
    assert fields["PPV-Vouchered-Acct"] == "5100"
    assert fields["PPV-Vouchered-SubAcct"] == "01"


def test_detail_fields_with_unknown_receipt_only_link_header():
    match = GPTMatchObject(match_object=9, invoice_price=1.0)
    assert build_po_detail_fields(match, "recHdr", MATCH_PAYLOAD) == {"POInvoiceHeaders": ["recHdr"]}
    assert build_po_detail_fields(match, "recHdr", []) == {"POInvoiceHeaders": ["recHdr"]}


def test_create_headers_and_details_uses_given_ids():
    create, calls = create_mock_create_records(header_ids=["recH1"], detail_ids=["recD1", "recD2"])
    headers = [GPTPOInvoiceHeader.model_validate(h) for h in MATCH_RESPONSE["headers"]]
    header_ids, detail_ids = create_po_invoice_headers_and_details(headers, "recInv", MATCH_PAYLOAD, create)
    assert header_ids == ["recH1"]
    assert detail_ids == ["recD1", "recD2", "recMockDetail1"]
    assert [c["table"] for c in calls] == ["POInvoiceHeaders", "POInvoiceDetails"]
    assert len(calls[1]["records"]) == 3


def test_create_headers_raises_when_nothing_is_returned():
    headers = [GPTPOInvoiceHeader.model_validate(MATCH_RESPONSE["headers"][0])]
    with pytest.raises(POMatchingError):
        create_po_invoice_headers_and_details(headers, "recInv", MATCH_PAYLOAD, lambda table, records: [])


def test_process_po_matching_end_to_end():
    client = FakeOpenAI(responses=[completion(json.dumps(MATCH_RESPONSE))])
    create, calls = create_mock_create_records()
    updates = []

    summary = process_po_matching(
        "recInv",
        fetch_invoice=lambda rid: {"id": rid, "fields": _invoice_fields()},
        create_records=create,
        update_invoice=lambda rid, fields: updates.append((rid, fields)),
        client=client,
    )

    assert summary.header_ids == ["recMockHeader1"]
    assert summary.header_count == 1
    assert summary.detail_count == 3
    assert updates == []

    request = client.completions.calls[0]
    assert request["response_format"]["json_schema"]["name"] == "POMatchingResponse"
    assert request["messages"][0]["role"] == "system"
    user_prompt = request["messages"][1]["content"]
    assert "Acme Supply" in user_prompt
    assert "SKU-1" in user_prompt


def test_process_po_matching_records_model_error_on_invoice():
    response = dict(MATCH_RESPONSE, error="Line 3 has no matching receipt")
    client = FakeOpenAI(responses=[completion(json.dumps(response))])
    create, _ = create_mock_create_records()
    updates = []

    summary = process_po_matching(
        "recInv",
        fetch_invoice=lambda rid: {"id": rid, "fields": _invoice_fields()},
        create_records=create,
        update_invoice=lambda rid, fields: updates.append((rid, fields)),
        client=client,
    )
    assert summary.error == "Line 3 has no matching receipt"
    assert updates == [("recInv", {"Error-Description": "Line 3 has no matching receipt"})]


def test_process_po_matching_requires_invoice():
    create, _ = create_mock_create_records()
    with pytest.raises(POMatchingError):
        process_po_matching("recMissing", lambda rid: None, create, client=FakeOpenAI())
    with pytest.raises(POMatchingError):
        process_po_matching("recEmpty", lambda rid: {"id": rid, "fields": {}}, create, client=FakeOpenAI())


@pytest.mark.parametrize(
    "response, message",
    [
        (completion(None, refusal="cannot help"), "refused"),
        (completion(None), "No content"),
        (completion("not json"), "invalid JSON"),
        (completion(json.dumps({"error": ""})), "headers"),
        (completion(json.dumps({"headers": []})), "error field"),
    ],
)
def test_generate_po_matches_rejects_bad_responses(response, message):
    with pytest.raises(POMatchingError, match=message):
        generate_po_matches({"a": 1}, {}, client=FakeOpenAI(responses=[response]))


def test_match_invoice_reads_requested_table():
    airtable = FakeAirtable({"InvoiceHeaders": {"recInv": _invoice_fields()}})
    client = FakeOpenAI(responses=[completion(json.dumps(MATCH_RESPONSE))])

    summary = match_invoice("recInv", airtable=airtable, table="InvoiceHeaders", client=client)

    assert summary.header_count == 1
    assert list(airtable.tables["POInvoiceHeaders"]) == ["recPOInvoiceHeaders1"]
    assert len(airtable.tables["POInvoiceDetails"]) == 3
    header = airtable.tables["POInvoiceHeaders"]["recPOInvoiceHeaders1"]
    assert header["Invoice"] == ["recInv"]
    assert header["User-Id"] == "test-user"


def test_match_invoice_writes_matcher_error_to_error_description():
    airtable = FakeAirtable({"Invoices": {"recInv": _invoice_fields()}})
    response = dict(MATCH_RESPONSE, error="Line 3 has no matching receipt")
    client = FakeOpenAI(responses=[completion(json.dumps(response))])

    match_invoice("recInv", airtable=airtable, client=client)

    assert airtable.fields("Invoices", "recInv")["Error-Description"] == "Line 3 has no matching receipt"


class RejectingInvoiceUpdates(FakeAirtable):
    def update_record(self, table, record_id, fields):
        raise AirtableUpdateError(f"UNKNOWN_FIELD_NAME {list(fields)}", status_code=422)


def test_failed_invoice_annotation_keeps_created_records():
    airtable = RejectingInvoiceUpdates({"Invoices": {"recInv": _invoice_fields()}})
    response = dict(MATCH_RESPONSE, error="Line 3 has no matching receipt")
    client = FakeOpenAI(responses=[completion(json.dumps(response))])

    summary = match_invoice("recInv", airtable=airtable, client=client)

    assert summary.header_ids == ["recPOInvoiceHeaders1"]
    assert summary.detail_count == 3
    assert summary.error == "Line 3 has no matching receipt"
