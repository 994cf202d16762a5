"""
Exception hierarchy for the OCR, parsing and PO matching stages.
Library code raises these; the CLI and HTTP layers turn them into exit codes and JSON errors.
"""
from __future__ import annotations

from typing import Any, Optional


class OCRError(Exception):
    """Base error. `details` carries diagnostic context (original error, url, attempts...)."""

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": type(self).__name__,
            "message": self.message,
            "details": {k: str(v) for k, v in self.details.items()},
        }


class ConfigurationError(OCRError):
    pass


class PDFProcessingError(OCRError):
    pass


class VisionAPIError(OCRError):
    pass


class AirtableUpdateError(OCRError):
    """Raised for non-2xx Airtable responses; `status_code` is None for transport failures."""

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, details)
        self.status_code = status_code


class POMatchingError(OCRError):
    pass
