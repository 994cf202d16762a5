"""
Turn OCR text into structured documents with OpenAI structured outputs.
"""
from __future__ import annotations

import json
from typing import Optional

from openai import OpenAI
from pydantic import ValidationError

from .api_client import get_openai_client
from .config import get_settings
from .errors import OCRError
from .llm_schemas import DOCUMENT_ARRAY_SCHEMA, response_format
from .log import get_logger
from .models import ParsedDocument
from .prompts import create_extract_doc_text_prompt, create_parse_prompt

logger = get_logger("llm_parser")


def parse_documents(raw_text: str, client: Optional[OpenAI] = None) -> list[ParsedDocument]:
    """Split `raw_text` into the documents it contains (invoices, receivers, tickets)."""
    if not raw_text or not raw_text.strip():
        raise ValueError("Raw text is empty or missing")

    client = client or get_openai_client()
    model = get_settings().openai.matching_model
    logger.info("Parsing OCR text with %s (%d chars)", model, len(raw_text))

    completion = client.chat.completions.create(
        model=model,
        messages=[{"role": "user", "content": create_parse_prompt(raw_text)}],
        response_format=response_format("DocumentArray", DOCUMENT_ARRAY_SCHEMA),
    )
    content = completion.choices[0].message.content if completion.choices else None
    if not content:
        raise OCRError("No content returned from OpenAI")
    logger.debug("Parse response: %s", content[:200])

    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise OCRError(f"OpenAI returned invalid JSON: {e}") from e

    documents = data.get("documents") if isinstance(data, dict) else None
    if not isinstance(documents, list):
        raise OCRError("Invalid response structure: missing documents array")

    try:
        parsed = [ParsedDocument.model_validate(d) for d in documents]
    except ValidationError as e:
        raise OCRError(f"Invalid document in response: {e}") from e
    logger.info("Parsed %d document(s)", len(parsed))
    return parsed


def extract_single_document_text(
    raw_text: str,
    doc: ParsedDocument,
    client: Optional[OpenAI] = None,
) -> str:
    """Cut the text of one document out of a multi-document OCR block."""
    if not raw_text or not raw_text.strip():
        raise ValueError("Raw text is empty or missing")

    client = client or get_openai_client()
    logger.info(
        "Extracting text for %s %s",
        doc.document_type,
        doc.invoice_number or "(no number)",
    )
    completion = client.chat.completions.create(
        model=get_settings().openai.matching_model,
        messages=[{"role": "user", "content": create_extract_doc_text_prompt(raw_text, doc)}],
    )
    text = (completion.choices[0].message.content or "") if completion.choices else ""
    return text.strip()
