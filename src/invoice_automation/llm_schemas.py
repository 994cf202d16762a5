"""
Strict JSON schemas for OpenAI structured outputs.
"""
from __future__ import annotations

from typing import Any


def _nullable(kind: str, description: str) -> dict[str, Any]:
    return {"type": [kind, "null"], "description": description}


LINE_ITEM_FIELDS = (
    "line_number",
    "item_no",
    "item_description",
    "quantity_invoiced",
    "invoice_price",
    "line_amount",
    "po_number",
    "expacct",
)

LINE_ITEM_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "line_number": _nullable("string", "Line item number or sequence"),
        "item_no": _nullable("string", "Item SKU or product number"),
        "item_description": _nullable("string", "Description of the item"),
        "quantity_invoiced": _nullable("number", "Quantity invoiced"),
        "invoice_price": _nullable("number", "Unit price"),
        "line_amount": _nullable("number", "Total line amount (quantity * price)"),
        "po_number": _nullable("string", "Purchase order number if present"),
        "expacct": _nullable("string", "Expense account or GL account"),
    },
    "required": list(LINE_ITEM_FIELDS),
    "additionalProperties": False,
}

DOCUMENT_TYPES = ("invoice", "store_receiver", "delivery_ticket")

DOCUMENT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "amount": _nullable("string", "Total dollar amount as string, e.g. '1234.56'"),
        "invoice_date": _nullable("string", "Date in YYYY-MM-DD format"),
        "vendor_name": _nullable("string", "Name of the vendor/supplier"),
        "door_number": _nullable("string", "Door or location number if present"),
        "invoice_number": _nullable("string", "Invoice or document reference number"),
        "document_type": {
            "type": "string",
            "enum": list(DOCUMENT_TYPES),
            "description": "Type of document",
        },
        "document_name": _nullable("string", "Five-word summary of the document"),
        "team": _nullable("string", "Store number or team identifier"),
        "freight_charge": _nullable("number", "Freight charge amount as a number, e.g. 45.50"),
        "surcharge": _nullable("number", "Surcharge amount as a number, e.g. 12.25"),
        "po_numbers": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Purchase order numbers found on the invoice",
        },
        "line_items": {
            "type": "array",
            "items": LINE_ITEM_SCHEMA,
            "description": "Array of line items for invoices",
        },
    },
    "required": [
        "amount",
        "invoice_date",
        "vendor_name",
        "door_number",
        "invoice_number",
        "document_type",
        "document_name",
        "team",
        "freight_charge",
        "surcharge",
        "po_numbers",
        "line_items",
    ],
    "additionalProperties": False,
}

DOCUMENT_ARRAY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {"documents": {"type": "array", "items": DOCUMENT_SCHEMA}},
    "required": ["documents"],
    "additionalProperties": False,
}

# Header fields requested from the model (CuryMultDiv is never requested).
PO_HEADER_STRING_FIELDS = (
    "Company-Code",
    "VendId",
    "TermsId",
    "APAcct",
    "APSub",
    "Freight-Account",
    "Freight-Subaccount",
    "Misc-Charge-Account",
    "Misc-Charge-Subaccount",
    "PO-Number-Seq-Type",
    "PO-Number",
    "PO-Vendor",
    "CuryId",
    "CuryRateType",
    "User-Id",
    "Job-Project-Number",
)

MATCH_OBJECT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "required": ["match_object", "invoice_price", "invoice_quantity", "invoice_amount"],
    "properties": {
        "match_object": {
            "type": "integer",
            "description": "Index into the matchingReceipts array from MatchPayloadJSON",
        },
        "invoice_price": {"type": "number", "description": "Unit price from invoice line item"},
        "invoice_quantity": {"type": "number", "description": "Quantity from invoice line item"},
        "invoice_amount": {"type": "number", "description": "Extended line total from invoice line item"},
    },
}


def _po_header_properties() -> dict[str, Any]:
    props: dict[str, Any] = {name: {"type": "string"} for name in PO_HEADER_STRING_FIELDS}
    props["TermsDaysInt"] = {
        "type": "integer",
        "description": "Payment terms in days as integer (parse from TermsId)",
    }
    props["CuryRate"] = {"type": "number"}
    props["details"] = {
        "type": "array",
        "description": "One entry per invoice line, each a list of match objects linking to PO receipts.",
        "items": {"type": "array", "items": MATCH_OBJECT_SCHEMA},
    }
    return props


PO_HEADER_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": _po_header_properties(),
    "required": ["details", *PO_HEADER_STRING_FIELDS, "TermsDaysInt", "CuryRate"],
    "additionalProperties": False,
}

PO_MATCHING_SCHEMA: dict[str, Any] = {
    "type": "object",
    "properties": {
        "headers": {
            "type": "array",
            "description": "Purchase order invoice headers, each containing match objects.",
            "items": PO_HEADER_SCHEMA,
        },
        "error": {
            "type": "string",
            "description": "Empty string if all invoice lines matched; otherwise explain each unmatched line.",
        },
    },
    "required": ["headers", "error"],
    "additionalProperties": False,
}


def response_format(name: str, schema: dict[str, Any]) -> dict[str, Any]:
    """`response_format` argument for chat.completions with a strict json_schema."""
    return {
        "type": "json_schema",
        "json_schema": {"name": name, "schema": schema, "strict": True},
    }
