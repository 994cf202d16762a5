"""
Invoice automation: PDF OCR via the Vision API -> document parsing -> Airtable records -> PO matching.
"""

__version__ = "2.0.0"

from .errors import (
    AirtableUpdateError,
    ConfigurationError,
    OCRError,
    PDFProcessingError,
    POMatchingError,
    VisionAPIError,
)
from .orchestrator import process_file_record, process_pdf_bytes, process_pdf_from_url
from .pipeline import process_file, process_local_pdf, run_on_folder
from .post_ocr import process_post_ocr
from .po_matching import match_invoice, process_po_matching

__all__ = [
    "__version__",
    "AirtableUpdateError",
    "ConfigurationError",
    "OCRError",
    "PDFProcessingError",
    "POMatchingError",
    "VisionAPIError",
    "process_file",
    "process_file_record",
    "process_local_pdf",
    "process_pdf_bytes",
    "process_pdf_from_url",
    "process_post_ocr",
    "match_invoice",
    "process_po_matching",
    "run_on_folder",
]
