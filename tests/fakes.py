"""
In-memory stand-ins for the OpenAI SDK client and the Airtable client.
"""
from __future__ import annotations

import copy
import threading
from types import SimpleNamespace
from typing import Any, Callable, Optional


def completion(content: Optional[str], prompt_tokens: int = 100, completion_tokens: int = 50, refusal=None):
    """Shape of openai ChatCompletion that the code reads."""
    message = SimpleNamespace(content=content, refusal=refusal)
    return SimpleNamespace(
        choices=[SimpleNamespace(message=message)],
        usage=SimpleNamespace(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        ),
    )


class FakeCompletions:
    """
    Returns queued responses in order, then `default`. Exceptions are raised.
    `responder(**kwargs)` overrides both when given.
    """

    def __init__(self, responses=None, default=None, responder: Optional[Callable[..., Any]] = None):
        self.responses = list(responses or [])
        self.default = default
        self.responder = responder
        self.calls: list[dict[str, Any]] = []
        self._lock = threading.Lock()

    def create(self, **kwargs):
        with self._lock:
            self.calls.append(kwargs)
            if self.responder is not None:
                response = self.responder(**kwargs)
            elif self.responses:
                response = self.responses.pop(0)
            else:
                response = self.default
        if isinstance(response, Exception):
            raise response
        return response


class FakeFiles:
    def __init__(self, file_id: str = "file-abc123", fail_create: Optional[Exception] = None):
        self.file_id = file_id
        self.fail_create = fail_create
        self.created: list[dict[str, Any]] = []
        self.deleted: list[str] = []

    def create(self, **kwargs):
        if self.fail_create is not None:
            raise self.fail_create
        self.created.append(kwargs)
        return SimpleNamespace(id=self.file_id)

    def delete(self, file_id: str):
        self.deleted.append(file_id)
        return SimpleNamespace(id=file_id, deleted=True)


class FakeOpenAI:
    def __init__(self, responses=None, default=None, responder=None, files: Optional[FakeFiles] = None):
        self.completions = FakeCompletions(responses, default, responder)
        self.chat = SimpleNamespace(completions=self.completions)
        self.files = files or FakeFiles()


class FakeAirtable:
    """Tables are {table: {record_id: fields}}. list_records ignores formulas and sorting."""

    def __init__(self, tables: Optional[dict[str, dict[str, dict[str, Any]]]] = None, base_id: str = "appTEST"):
        self.base_id = base_id
        self.tables: dict[str, dict[str, dict[str, Any]]] = copy.deepcopy(tables or {})
        self.updates: list[tuple[str, str, dict[str, Any]]] = []
        self.created: list[tuple[str, dict[str, Any]]] = []
        self.list_calls: list[dict[str, Any]] = []
        self._counters: dict[str, int] = {}

    def get_record(self, table: str, record_id: str):
        fields = self.tables.get(table, {}).get(record_id)
        if fields is None:
            return None
        return {"id": record_id, "fields": copy.deepcopy(fields)}

    def list_records(self, table, filter_by_formula=None, fields=None, sort=None, max_records=None):
        self.list_calls.append({
            "table": table,
            "filter_by_formula": filter_by_formula,
            "fields": fields,
            "sort": sort,
            "max_records": max_records,
        })
        records = [{"id": rid, "fields": copy.deepcopy(f)} for rid, f in self.tables.get(table, {}).items()]
        return records[:max_records] if max_records else records

    def create_records(self, table: str, records: list[dict[str, Any]]):
        created = []
        for r in records:
            n = self._counters.get(table, 0) + 1
            self._counters[table] = n
            record_id = f"rec{table}{n}"
            self.tables.setdefault(table, {})[record_id] = copy.deepcopy(r["fields"])
            self.created.append((table, r["fields"]))
            created.append({"id": record_id, "fields": r["fields"]})
        return created

    def update_record(self, table: str, record_id: str, fields: dict[str, Any]):
        self.updates.append((table, record_id, copy.deepcopy(fields)))
        self.tables.setdefault(table, {}).setdefault(record_id, {}).update(fields)
        return {"id": record_id, "fields": self.tables[table][record_id]}

    def get_base_schema(self):
        return {"tables": [{"name": t} for t in self.tables]}

    def fields(self, table: str, record_id: str) -> dict[str, Any]:
        return self.tables[table][record_id]
