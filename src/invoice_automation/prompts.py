"""
Prompts for OCR, document parsing and PO matching.
"""
from __future__ import annotations

import json
from typing import Any

from .models import ParsedDocument

OCR_PDF_INSTRUCTION = """Extract ALL text from this PDF document. Preserve the original formatting, spacing, and layout as much as possible.

Instructions:
- Include all visible text from every page
- Preserve tables, lists, headers, and footers
- Maintain paragraph breaks and section divisions
- Include page numbers if visible
- If a page break is detected, indicate it with "--- PAGE BREAK ---"
- Do not add any commentary or explanations
- Return only the extracted text

Return the complete text extraction."""

OCR_IMAGE_INSTRUCTION = """Extract ALL text from this image, which is one section of a scanned document page.
Preserve the original layout, tables and line order. Do not add commentary, do not summarize,
and do not describe the image. Return only the extracted text."""

PDF_SUPPORT_TEST_INSTRUCTION = "Extract any text from this PDF."

PO_MATCHING_SYSTEM = (
    "You are an expert at matching invoices to purchase orders and generating structured ERP import data."
)


def create_parse_prompt(raw_text: str) -> str:
    """Prompt for splitting OCR text into structured documents (used with DOCUMENT_ARRAY_SCHEMA)."""
    return f"""You are an expert at parsing OCR text from back-of-house restaurant documents.

Your task: Analyze the OCR text and extract all documents present. Return a JSON object with a "documents" array.

Rules:
1. Identify each separate document in the text (invoice, store receiver, or delivery ticket)
2. Extract relevant fields for each document
3. If you cannot determine a field value, use null
4. document_type MUST be one of: "invoice", "store_receiver", "delivery_ticket"
5. document_name should be a 5-word summary (e.g., "Sysco Invoice for Store 123")
6. team is the store number or location code - look for patterns like:
   - "Crest Foods #9" -> team should be "9"
   - "Store 5" -> team should be "5"
   - "Location 12" -> team should be "12"
   - Extract just the number, not the full text
7. invoice_date must be in YYYY-MM-DD format if present
8. amount should be a string with the numeric value (e.g., "1234.56")
9. freight_charge should be a numeric value for freight/shipping charges (e.g., 45.50). Look for terms like "Freight", "Freight Charge", "Shipping", "Delivery Charge", etc.
10. surcharge should be a numeric value for surcharges or additional fees (e.g., 12.25). Look for terms like "Surcharge", "Fuel Surcharge", "Service Charge", "Handling Fee", etc.
11. po_numbers should be an array of all purchase order numbers found on the invoice. Look for terms like "PO", "P.O.", "Purchase Order", "PO Number", etc. Extract all unique PO numbers from the invoice header, footer, or line items. If no PO numbers are found, use an empty array [].
12. Do not invent information - only extract what is clearly present

Line Items Extraction (for invoices):
13. Extract ALL line items from the invoice into the line_items array
14. Each line item should include:
    - line_number: Line number or sequence (e.g., "1", "2", "3")
    - item_no: Item SKU or product number (e.g., "12345", "ABC-123")
    - item_description: Description of the item/product
    - quantity_invoiced: Quantity ordered/invoiced (numeric)
    - invoice_price: Unit price per item (numeric)
    - line_amount: Total amount for the line (quantity * price, numeric)
    - po_number: Purchase order number if present on the line
    - expacct: GL account or expense account code if present
15. For non-invoice documents (store_receiver, delivery_ticket), line_items should be an empty array []
16. Line amounts should be numeric values, not strings (e.g., 123.45, not "123.45")

Document type identification:
- "invoice": Standard vendor invoice with amount due
- "store_receiver": Store receiving document (goods receipt)
- "delivery_ticket": Delivery or takeout ticket

OCR Text:
{raw_text}

Output the JSON object with a "documents" array now."""


def create_extract_doc_text_prompt(raw_text: str, doc: ParsedDocument) -> str:
    """Prompt for cutting one document's text out of a multi-document OCR block."""
    return f"""You are extracting the OCR text that belongs to ONE specific document from a larger text block.

The target document has these identifying fields:
- Type: {doc.document_type}
- Invoice Number: {doc.invoice_number or 'unknown'}
- Vendor: {doc.vendor_name or 'unknown'}
- Date: {doc.invoice_date or 'unknown'}
- Amount: {doc.amount or 'unknown'}

Task: Extract ONLY the text that belongs to this specific document. Include:
- Header information
- Line items
- Totals
- Any relevant footer text

Return ONLY the plain text. No JSON. No commentary. No additional formatting.

Full OCR Text:
{raw_text}

Extracted text for the target document:"""


def create_po_matching_prompt(invoice_data: dict[str, Any], match_payload: Any) -> str:
    return f"""You match supplier invoices to PO receipt lines. Use only the provided JSON. Do not invent data. Output valid JSON matching the exact schema below. No extra text.

## INVOICE DATA
{json.dumps(invoice_data, indent=2, default=str)}

## PO MATCH CANDIDATES
{json.dumps(match_payload, indent=2, default=str)}

# RULES
- Match each invoice line to exactly one `matchingReceipts` entry.
- Primary key: exact item number equality (`invoice.itemNo == receipt.itemNo`). Some variations in format (i.e. hyphens and spaces are fine, but the item number should be the same)
- Item description can also be used for matching if item number matching is vague.
- Quantities, unit pricing, and total pricings should be close
- Matches should ensure that date invoiced (on invoice) should be prior to date received (on PO receipt)
- Never split one invoice line across multiple receipts.
- If any invoice line fails item match, add a concise message to `error`. Still return matches for other lines if any. If no matches, return an empty header.

# VENDOR FIELD MAPPING
Populate header fields from the vendor object in matchPayload as follows:
- APAcct: use vendor.apAcct (NOT apapAcct)
- APSub: use vendor.apSub (NOT apapSub)
- Freight-Account: use vendor.freightAccount
- Freight-Subaccount: use vendor.freightSubAccount
- Misc-Charge-Account: use vendor.miscChargeAccount
- Misc-Charge-Subaccount: use vendor.miscChargeSubAccount

# Output formatting
- JSON only. No comments. No trailing commas. Keep numbers as numbers, not strings.
- TermsDaysInt is TermsId converted to an integer number of days.
- Each entry of `details` is one invoice line: a list holding its match object
  (`match_object` is the index into `matchingReceipts`, plus the invoice line's
  unit price, quantity and line total).
- `error` is empty if all lines matched; otherwise explain each unmatched invoice line succinctly."""
