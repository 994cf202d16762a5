"""
Names of the Airtable base used by the pipeline: tables, fields and status vocabularies.
"""
from __future__ import annotations


class TABLE_NAMES:
    FILES = "Files"
    SUBFILES = "SubFiles"
    INVOICES = "Invoices"
    INVOICE_HEADERS = "InvoiceHeaders"
    INVOICE_DETAILS = "InvoiceDetails"
    PO_INVOICE_HEADERS = "POInvoiceHeaders"
    PO_INVOICE_DETAILS = "POInvoiceDetails"
    JOBS = "Jobs"
    LOGS = "Logs"


class FILE_FIELDS:
    FILE_ID = "FileID"
    FILE_URL = "FileURL"
    FILE_HASH = "FileHash"
    FILE_NAME = "FileName"
    PAGES = "Pages"
    UPLOADED_DATE = "UploadedDate"
    STATUS = "Status"
    PARSED_AT = "ParsedAt"
    ATTACHMENTS = "Attachments"
    RAW_TEXT = "Raw-Text"
    ERROR_CODE = "Error-Code"
    ERROR_DESCRIPTION = "Error-Description"
    ERROR_LINK = "Error-Link"
    CREATED_AT = "Created-At"
    MODIFIED_AT = "Modified-At"
    INVOICE_HEADER_ID = "InvoiceHeaderID"
    PROCESSING_STATUS = "Processing-Status"
    CLEARED = "Cleared"


# Raw text is sometimes returned keyed by field id instead of name.
FILES_RAW_TEXT_FIELD_ID = "fldGeuHck13u4BmDY"
FILES_RAW_TEXT_ALIASES = ("Raw-Text", "Raw Text", FILES_RAW_TEXT_FIELD_ID)


class INVOICE_FIELDS:
    MATCH_PAYLOAD_JSON = "MatchPayloadJSON"
    ERROR_DESCRIPTION = "Error-Description"
    STATUS = "Status"


class INVOICE_HEADER_FIELDS:
    FILES = "Files"
    DOCUMENT_RAW_TEXT = "Document Raw Text"
    AP_INVOICE_NUMBER = "AP-Invoice-Number"
    VENDOR_NAME = "Vendor Name"
    INVOICE_DATE = "Invoice-Date"
    TOTAL_INVOICE_AMOUNT = "Total-Invoice-Amount"
    STATUS = "Status"


class INVOICE_DETAIL_FIELDS:
    INVOICE_HEADERS = "InvoiceHeaders"
    LINE_NUMBER = "Line-Number"
    ITEM_NO = "Item-No"
    ITEM_DESCRIPTION = "Item-Description"
    QUANTITY_INVOICED = "Quantity-Invoiced"
    INVOICE_PRICE = "Invoice-Price"
    INVOICE_PRICING_QTY = "Invoice-Pricing-Qty"
    LINE_AMOUNT = "Line-Amount"
    PO_NUMBER = "PO-Number"
    EXPACCT = "Expacct"
    AP_INVOICE_NUMBER = "AP-Invoice-Number"


class PO_HEADER_FIELDS:
    INVOICE = "Invoice"
    USER_ID = "User-Id"
    CURY_MULT_DIV = "CuryMultDiv"


# Header fields copied from the matcher output; User-Id is always overwritten.
PO_HEADER_WRITABLE_FIELDS = (
    "Company-Code",
    "VendId",
    "TermsId",
    "TermsDaysInt",
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
    "CuryRate",
    "CuryRateType",
    "Job-Project-Number",
)

PO_HEADER_USER_ID = "test-user"


class PO_DETAIL_FIELDS:
    PO_INVOICE_HEADERS = "POInvoiceHeaders"
    INVOICE_PRICE = "Invoice-Price"
    QUANTITY_INVOICED = "Quantity-Invoiced"
    LINE_AMOUNT = "Line-Amount"
    PPV_VOUCHERED_ACCT = "PPV-Vouchered-Acct"
    PPV_VOUCHERED_SUBACCT = "PPV-Vouchered-SubAcct"


# matchingReceipts[] key -> POInvoiceDetails field. Text keys are copied when truthy,
# numeric keys whenever present.
RECEIPT_TEXT_FIELDS = {
    "itemNo": "Item-No",
    "itemDescription": "Item-Description",
    "step": "Step",
    "poReleaseNumber": "PO-Release-Number",
    "poLineNumber": "PO-Line-Number",
    "vendorShipNumber": "Vendor-Ship-Number",
    "dateReceived": "Date-Received",
    "expAcct": "ExpAcct",
    "expSub": "ExpSub",
    "uom": "PO-UOM",
}

RECEIPT_NUMERIC_FIELDS = {
    "quantityReceived": "Quantity-Received",
    "quantityAccepted": "Quantity-Accepted",
    "purchasePrice": "Purchase-Price",
    "pricingQuantity": "Pricing-Quantity",
    "standardCost": "Standard-Cost",
    "surcharge": "Surcharge",
}


class FILE_STATUS:
    QUEUED = "Queued"
    PROCESSING = "Processing"
    PROCESSED = "Processed"
    ERROR = "Error"
    ATTENTION = "Attention"


class PROCESSING_STATUS:
    """Sub-status of a file: which pipeline stage is currently running."""
    UPL = "UPL"            # uploaded
    DETINV = "DETINV"      # detecting invoices (OCR)
    PARSE = "PARSE"        # parsing invoice data
    RELINV = "RELINV"      # relating invoices
    MATCHING = "MATCHING"  # matching with PO headers
    MATCHED = "MATCHED"
    ERROR = "ERROR"


class INVOICE_STATUS:
    PENDING = "Pending"
    OPEN = "Matched"
    REVIEWED = "Reviewed"
    QUEUED = "Queued"
    APPROVED = "Approved"
    EXPORTED = "Exported"
    REJECTED = "Error"


UX_STATUS_MAP = {
    "Pending": "Processing",
    "Matched": "Processed",
    "Error": "Attention",
    "Exported": "Exported",
    "Queued": "Exporting",
}

# Error codes written to Files.Error-Code
ERROR_OCR_FAILED = "OCR_FAILED"
ERROR_PARSE_FAILED = "PARSE_FAILED"
ERROR_MATCHING_FAILED = "MATCHING_FAILED"
ERROR_DUPLICATE_FILE = "DUPLICATE_FILE"
