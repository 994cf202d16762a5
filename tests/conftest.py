from __future__ import annotations

import os

import pytest

from invoice_automation.airtable import reset_airtable_client
from invoice_automation.api_client import reset_openai_client
from invoice_automation.config import reset_settings

_ENV_PREFIXES = ("OCR2_", "OPENAI_", "AIRTABLE_", "NEXT_PUBLIC_AIRTABLE_")


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """Each test starts from default settings with no credentials from the host environment."""
    for name in list(os.environ):
        if name.startswith(_ENV_PREFIXES):
            monkeypatch.delenv(name, raising=False)
    reset_settings()
    reset_openai_client()
    reset_airtable_client()
    yield
    reset_settings()
    reset_openai_client()
    reset_airtable_client()


@pytest.fixture
def no_sleep():
    calls: list[float] = []

    def sleep(seconds: float) -> None:
        calls.append(seconds)

    sleep.calls = calls
    return sleep
