"""
Pydantic models for OCR results, parsed documents and PO matching output.
"""
from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

DocumentType = Literal["invoice", "store_receiver", "delivery_ticket"]


# --- OCR ---

class TokenUsage(BaseModel):
    input: int = 0
    output: int = 0
    total: int = 0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            input=self.input + other.input,
            output=self.output + other.output,
            total=self.total + other.total,
        )


class OCRResult(BaseModel):
    """Text extracted by one Vision API call (a whole PDF or one image chunk)."""
    text: str
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    processing_time_ms: int = 0
    tokens_used: TokenUsage = Field(default_factory=TokenUsage)


class PDFValidation(BaseModel):
    is_valid: bool
    page_count: Optional[int] = None
    size_mb: float
    errors: list[str] = Field(default_factory=list)


class PageProcessingResult(BaseModel):
    page_number: int
    chunk_count: int
    successful_chunks: int
    text: str = ""
    tokens_used: TokenUsage = Field(default_factory=TokenUsage)
    errors: list[str] = Field(default_factory=list)


class ProcessingSummary(BaseModel):
    total_tokens_used: int = 0
    total_processing_time_ms: int = 0
    average_chunks_per_page: float = 0.0
    success_rate: float = 100.0
    errors: list[str] = Field(default_factory=list)


class PDFProcessingResult(BaseModel):
    total_pages: int
    processed_pages: int
    extracted_text: str
    processing_time_ms: int
    pages_results: list[PageProcessingResult] = Field(default_factory=list)
    summary: ProcessingSummary = Field(default_factory=ProcessingSummary)
    mode: str = "native"


# --- LLM document parsing ---

class ParsedLineItem(BaseModel):
    line_number: Optional[str] = None
    item_no: Optional[str] = None
    item_description: Optional[str] = None
    quantity_invoiced: Optional[float] = None
    invoice_price: Optional[float] = None
    line_amount: Optional[float] = None
    po_number: Optional[str] = None
    expacct: Optional[str] = None


class ParsedDocument(BaseModel):
    """One document found in a file's OCR text."""
    document_type: DocumentType
    amount: Optional[str] = None
    invoice_date: Optional[str] = None
    vendor_name: Optional[str] = None
    door_number: Optional[str] = None
    invoice_number: Optional[str] = None
    document_name: Optional[str] = None
    team: Optional[str] = None
    freight_charge: Optional[float] = None
    surcharge: Optional[float] = None
    po_numbers: list[str] = Field(default_factory=list)
    line_items: list[ParsedLineItem] = Field(default_factory=list)


class DocumentRef(BaseModel):
    type: str
    id: str


class ProcessFileResult(BaseModel):
    """Outcome of the post-OCR step for one Files record."""
    success: bool
    file_record_id: str
    documents_created: int = 0
    document_ids: list[DocumentRef] = Field(default_factory=list)
    details_created: int = 0
    error: Optional[str] = None
    details: dict[str, Any] = Field(default_factory=dict)


# --- PO matching ---

class GPTMatchObject(BaseModel):
    """Links one invoice line to matchingReceipts[match_object]."""
    match_object: int
    invoice_price: Optional[float] = None
    invoice_quantity: Optional[float] = None
    invoice_amount: Optional[float] = None


class GPTPOInvoiceHeader(BaseModel):
    """Header fields use the Airtable (hyphenated) names as aliases."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    company_code: Optional[str] = Field(default=None, alias="Company-Code")
    vend_id: Optional[str] = Field(default=None, alias="VendId")
    terms_id: Optional[str] = Field(default=None, alias="TermsId")
    terms_days_int: Optional[int] = Field(default=None, alias="TermsDaysInt")
    ap_acct: Optional[str] = Field(default=None, alias="APAcct")
    ap_sub: Optional[str] = Field(default=None, alias="APSub")
    freight_account: Optional[str] = Field(default=None, alias="Freight-Account")
    freight_subaccount: Optional[str] = Field(default=None, alias="Freight-Subaccount")
    misc_charge_account: Optional[str] = Field(default=None, alias="Misc-Charge-Account")
    misc_charge_subaccount: Optional[str] = Field(default=None, alias="Misc-Charge-Subaccount")
    po_number_seq_type: Optional[str] = Field(default=None, alias="PO-Number-Seq-Type")
    po_number: Optional[str] = Field(default=None, alias="PO-Number")
    po_vendor: Optional[str] = Field(default=None, alias="PO-Vendor")
    cury_id: Optional[str] = Field(default=None, alias="CuryId")
    cury_mult_div: Optional[Literal["multiple", "divide"]] = Field(default=None, alias="CuryMultDiv")
    cury_rate: Optional[float] = Field(default=None, alias="CuryRate")
    cury_rate_type: Optional[str] = Field(default=None, alias="CuryRateType")
    user_id: Optional[str] = Field(default=None, alias="User-Id")
    job_project_number: Optional[str] = Field(default=None, alias="Job-Project-Number")
    details: list[list[GPTMatchObject]] = Field(default_factory=list)

    def airtable_fields(self) -> dict[str, Any]:
        """Header values keyed by Airtable field name, without `details`."""
        return self.model_dump(by_alias=True, exclude={"details"})

    def match_count(self) -> int:
        return sum(len(line) for line in self.details)


class GPTMatchingResponse(BaseModel):
    headers: list[GPTPOInvoiceHeader] = Field(default_factory=list)
    error: str = ""

    def total_matches(self) -> int:
        return sum(h.match_count() for h in self.headers)


class CreatedRecordsSummary(BaseModel):
    header_ids: list[str] = Field(default_factory=list)
    detail_ids: list[str] = Field(default_factory=list)
    header_count: int = 0
    detail_count: int = 0
    error: str = ""


# --- duplicate detection ---

class DuplicateRecord(BaseModel):
    id: str
    name: str
    upload_date: Optional[str] = None
    created_time: Optional[str] = None
    file_hash: str = ""


class DuplicateDetectionResult(BaseModel):
    is_duplicate: bool
    duplicate_record: Optional[DuplicateRecord] = None
    confidence: float = 0.0
    reason: str = ""


# --- pipeline ---

class FileProcessingResult(BaseModel):
    """End-to-end outcome for one Files record."""
    file_record_id: str
    total_pages: int = 0
    text_length: int = 0
    documents_created: int = 0
    details_created: int = 0
    invoice_ids: list[str] = Field(default_factory=list)
    matching: list[CreatedRecordsSummary] = Field(default_factory=list)


class LocalDocumentsResult(BaseModel):
    """OCR + parse output for a PDF on disk, written as <stem>_documents.json."""
    source_file: str
    total_pages: int = 0
    mode: str = "native"
    raw_text: str = ""
    documents: list[ParsedDocument] = Field(default_factory=list)
    error: Optional[str] = None
