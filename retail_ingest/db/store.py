from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol

from ..errors import PersistenceError
from ..models.ingest_result import UploadManifest
from ..models.records import UploadType

"""Persistence collaborator interface + in-memory implementation.

The orchestrator talks to storage only through IngestStore. A store writes
each record as its own short transaction: a failure must leave earlier
records committed and raise PersistenceError for the one that failed.

InMemoryStore はテスト / DISABLE_DB_CONNECT=1 (dry-run) 用。一意制約は
composite key で模擬し、重複 insert は PersistenceError とする。
"""

__all__ = [
    "IngestStore",
    "InMemoryStore",
]


class IngestStore(Protocol):
    def exists(self, kind: UploadType, keys: Sequence[tuple[Any, ...]]) -> set[tuple[Any, ...]]:
        """Return the subset of ``keys`` already persisted for ``kind``."""
        ...

    def insert(self, kind: UploadType, record: Any) -> None:
        ...

    def upsert(self, kind: UploadType, record: Any) -> bool:
        """Insert or update on the natural key.

        Returns False when nothing was written: a sales line has no non-key
        columns, so an existing identical line is left as is.
        """
        ...

    def record_manifest(self, manifest: UploadManifest) -> None:
        ...


class InMemoryStore:
    """Dict-backed store keyed by each record's composite key."""

    def __init__(self) -> None:
        self.records: dict[UploadType, dict[tuple[Any, ...], Any]] = {t: {} for t in UploadType}
        self.manifests: list[UploadManifest] = []

    def exists(self, kind: UploadType, keys: Sequence[tuple[Any, ...]]) -> set[tuple[Any, ...]]:
        table = self.records[kind]
        return {k for k in keys if k in table}

    def insert(self, kind: UploadType, record: Any) -> None:
        table = self.records[kind]
        key = record.key
        if key in table:
            raise PersistenceError(f"duplicate key value violates unique constraint: {key}")
        table[key] = record

    def upsert(self, kind: UploadType, record: Any) -> bool:
        table = self.records[kind]
        if kind is UploadType.SALES_TRANSACTIONS and record.key in table:
            return False
        table[record.key] = record
        return True

    def record_manifest(self, manifest: UploadManifest) -> None:
        self.manifests.append(manifest)

    def count(self, kind: UploadType) -> int:
        return len(self.records[kind])

    def all(self, kind: UploadType) -> list[Any]:
        return list(self.records[kind].values())
