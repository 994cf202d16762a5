"""
Thin Airtable REST client (records + Meta API) on top of requests.
"""
from __future__ import annotations

import time
from typing import Any, Iterable, Optional
from urllib.parse import quote

import requests

from .config import get_settings, validate_airtable_settings
from .errors import AirtableUpdateError
from .log import get_logger

logger = get_logger("airtable")

API_URL = "https://api.airtable.com/v0"
BATCH_SIZE = 10
MAX_RATE_LIMIT_RETRIES = 3
RATE_LIMIT_BACKOFF_SECONDS = 30.0


def _batches(items: list, size: int = BATCH_SIZE) -> Iterable[list]:
    for i in range(0, len(items), size):
        yield items[i:i + size]


class AirtableClient:
    """Records API for one base. Non-2xx responses raise AirtableUpdateError."""

    def __init__(
        self,
        pat: str,
        base_id: str,
        session: Optional[requests.Session] = None,
        timeout: float = 30.0,
        sleep=time.sleep,
    ):
        self.base_id = base_id
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {pat}",
            "Content-Type": "application/json",
        })
        self._sleep = sleep

    def _table_url(self, table: str) -> str:
        return f"{API_URL}/{self.base_id}/{quote(table, safe='')}"

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        for attempt in range(MAX_RATE_LIMIT_RETRIES + 1):
            try:
                resp = self.session.request(method, url, timeout=self.timeout, **kwargs)
            except requests.RequestException as e:
                raise AirtableUpdateError(
                    f"Airtable request failed: {e}", {"method": method, "url": url}
                ) from e
            if resp.status_code != 429 or attempt == MAX_RATE_LIMIT_RETRIES:
                return resp
            delay = min(RATE_LIMIT_BACKOFF_SECONDS, 2 ** attempt)
            logger.warning("Airtable rate limit hit, retrying in %.0fs", delay)
            self._sleep(delay)
        return resp

    @staticmethod
    def _check(resp: requests.Response, action: str) -> dict[str, Any]:
        if not resp.ok:
            raise AirtableUpdateError(
                f"Airtable API error while {action}: {resp.status_code} - {resp.text}",
                {"body": resp.text},
                status_code=resp.status_code,
            )
        return resp.json()

    def get_record(self, table: str, record_id: str) -> Optional[dict[str, Any]]:
        """Fetch one record; None when it does not exist."""
        resp = self._request("GET", f"{self._table_url(table)}/{record_id}")
        if resp.status_code == 404:
            return None
        return self._check(resp, f"fetching {table}/{record_id}")

    def list_records(
        self,
        table: str,
        filter_by_formula: Optional[str] = None,
        fields: Optional[list[str]] = None,
        sort: Optional[list[dict[str, str]]] = None,
        max_records: Optional[int] = None,
    ) -> list[dict[str, Any]]:
        """List records following `offset` pagination."""
        params: list[tuple[str, Any]] = []
        if filter_by_formula:
            params.append(("filterByFormula", filter_by_formula))
        for f in fields or []:
            params.append(("fields[]", f))
        for i, s in enumerate(sort or []):
            params.append((f"sort[{i}][field]", s["field"]))
            params.append((f"sort[{i}][direction]", s.get("direction", "asc")))
        if max_records:
            params.append(("maxRecords", max_records))

        records: list[dict[str, Any]] = []
        offset: Optional[str] = None
        while True:
            page_params = list(params)
            if offset:
                page_params.append(("offset", offset))
            resp = self._request("GET", self._table_url(table), params=page_params)
            data = self._check(resp, f"listing {table}")
            records.extend(data.get("records", []))
            offset = data.get("offset")
            if not offset or (max_records and len(records) >= max_records):
                break
        return records[:max_records] if max_records else records

    def create_records(self, table: str, records: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """Create records in batches of 10. `records` are {"fields": {...}} dicts."""
        created: list[dict[str, Any]] = []
        for batch in _batches(records):
            resp = self._request("POST", self._table_url(table), json={"records": batch})
            created.extend(self._check(resp, f"creating records in {table}").get("records", []))
        logger.debug("Created %d record(s) in %s", len(created), table)
        return created

    def update_records(self, table: str, records: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """PATCH records in batches of 10. `records` are {"id": ..., "fields": {...}} dicts."""
        updated: list[dict[str, Any]] = []
        for batch in _batches(records):
            resp = self._request("PATCH", self._table_url(table), json={"records": batch})
            updated.extend(self._check(resp, f"updating records in {table}").get("records", []))
        return updated

    def update_record(self, table: str, record_id: str, fields: dict[str, Any]) -> dict[str, Any]:
        updated = self.update_records(table, [{"id": record_id, "fields": fields}])
        return updated[0] if updated else {}

    def get_base_schema(self) -> dict[str, Any]:
        """Tables and fields of the base, from the Meta API."""
        resp = self._request("GET", f"{API_URL}/meta/bases/{self.base_id}/tables")
        return self._check(resp, "fetching base schema")


_client: Optional[AirtableClient] = None


def get_airtable_client() -> AirtableClient:
    """Shared client built from settings (AIRTABLE_PAT / AIRTABLE_BASE_ID)."""
    global _client
    if _client is None:
        settings = get_settings()
        validate_airtable_settings(settings)
        _client = AirtableClient(settings.airtable.pat, settings.airtable.base_id)
    return _client


def reset_airtable_client() -> None:
    global _client
    _client = None
