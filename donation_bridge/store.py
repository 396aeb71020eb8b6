"""Record store used by the reconciler.

Two implementations share one small interface (``find``, ``get``, ``patch``):
``SupabaseRecordStore`` talks to the Postgres tables through the supabase
client, ``MemoryRecordStore`` keeps rows in process for local runs and tests.

Negated predicates follow document-store semantics: a NULL or missing column
matches ``not_equals`` and ``not_within``.
"""

import copy
import logging
import threading
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from supabase import Client

logger = logging.getLogger(__name__)

# PostgREST caps each response; unpaginated queries walk the table in pages.
SUPABASE_PAGE_SIZE = 1000


class RecordStoreError(Exception):
    """A read or write against the record store failed."""


class RecordNotFoundError(RecordStoreError):
    """The record to patch does not exist."""

    def __init__(self, table: str, record_id: str):
        super().__init__(f"{table} record {record_id} not found")
        self.table = table
        self.record_id = record_id


class RecordQuery(BaseModel):
    """Filter for ``RecordStore.find``. ``limit=None`` means unpaginated."""
    equals: Dict[str, Any] = Field(default_factory=dict)
    not_equals: Dict[str, Any] = Field(default_factory=dict)
    within: Dict[str, List[Any]] = Field(default_factory=dict)
    not_within: Dict[str, List[Any]] = Field(default_factory=dict)
    limit: Optional[int] = Field(default=None, ge=0)

    def matches(self, record: dict) -> bool:
        for column, value in self.equals.items():
            if record.get(column) != value:
                return False
        for column, value in self.not_equals.items():
            if record.get(column) == value:
                return False
        for column, values in self.within.items():
            if record.get(column) not in values:
                return False
        for column, values in self.not_within.items():
            if record.get(column) in values:
                return False
        return True


class RecordStore:
    """Interface shared by the store implementations."""

    def find(self, table: str, query: RecordQuery) -> List[dict]:
        raise NotImplementedError

    def get(self, table: str, record_id: str) -> Optional[dict]:
        raise NotImplementedError

    def patch(self, table: str, record_id: str, fields: dict) -> dict:
        raise NotImplementedError


class SupabaseRecordStore(RecordStore):
    """Record store backed by Supabase tables."""

    def __init__(self, client: Client, page_size: int = SUPABASE_PAGE_SIZE):
        self.client = client
        self.page_size = page_size

    def _filtered(self, table: str, query: RecordQuery):
        builder = self.client.table(table).select("*")

        for column, value in query.equals.items():
            builder = builder.eq(column, value)
        for column, values in query.within.items():
            builder = builder.in_(column, values)
        # SQL comparisons drop NULLs, so negations are spelled out with "is.null"
        for column, value in query.not_equals.items():
            builder = builder.or_(f"{column}.is.null,{column}.neq.{value}")
        for column, values in query.not_within.items():
            joined = ",".join(str(v) for v in values)
            builder = builder.or_(f"{column}.is.null,{column}.not.in.({joined})")

        return builder

    def find(self, table: str, query: RecordQuery) -> List[dict]:
        if query.limit is not None:
            result = self._filtered(table, query).limit(query.limit).execute()
            return result.data or []

        rows: List[dict] = []
        offset = 0
        while True:
            result = self._filtered(table, query).order("id").range(
                offset, offset + self.page_size - 1
            ).execute()
            page = result.data or []
            rows.extend(page)
            if len(page) < self.page_size:
                return rows
            offset += self.page_size

    def get(self, table: str, record_id: str) -> Optional[dict]:
        result = self.client.table(table).select("*").eq(
            "id", record_id
        ).limit(1).execute()

        if not result.data:
            return None
        return result.data[0]

    def patch(self, table: str, record_id: str, fields: dict) -> dict:
        result = self.client.table(table).update(fields).eq(
            "id", record_id
        ).execute()

        if not result.data:
            raise RecordNotFoundError(table, record_id)
        return result.data[0]


class MemoryRecordStore(RecordStore):
    """In-process record store, keyed by table then by record id."""

    def __init__(self, tables: Optional[Dict[str, List[dict]]] = None):
        self._lock = threading.Lock()
        self._tables: Dict[str, Dict[str, dict]] = {}
        for table, rows in (tables or {}).items():
            for row in rows:
                self.insert(table, row)

    def insert(self, table: str, record: dict) -> dict:
        with self._lock:
            rows = self._tables.setdefault(table, {})
            rows[str(record["id"])] = copy.deepcopy(record)
            return copy.deepcopy(record)

    def find(self, table: str, query: RecordQuery) -> List[dict]:
        with self._lock:
            rows = [
                copy.deepcopy(r)
                for r in self._tables.get(table, {}).values()
                if query.matches(r)
            ]
        if query.limit is not None:
            rows = rows[:query.limit]
        return rows

    def get(self, table: str, record_id: str) -> Optional[dict]:
        with self._lock:
            row = self._tables.get(table, {}).get(str(record_id))
            return copy.deepcopy(row) if row is not None else None

    def patch(self, table: str, record_id: str, fields: dict) -> dict:
        with self._lock:
            row = self._tables.get(table, {}).get(str(record_id))
            if row is None:
                raise RecordNotFoundError(table, record_id)
            row.update(copy.deepcopy(fields))
            logger.debug("Patched %s %s with %s", table, record_id, sorted(fields))
            return copy.deepcopy(row)
