from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ..models.ingest_result import SkipReason
from ..models.records import UploadType

if TYPE_CHECKING:
    from ..db.store import IngestStore

"""Deduplication engine.

Two independent checks, in this order:
1. already_in_database: key 既存 (compute_existing の結果集合に含まれる)
2. duplicate_in_file : 同一ファイル内で先に同じ key が出現済み

seen 集合は「初出時点」で追加する (DB 既存でスキップされた key も含む)。
そのため DB 既存 key の 2 回目以降も reason は already_in_database のまま。
"""

__all__ = [
    "Candidate",
    "DedupPartition",
    "compute_existing",
    "partition",
]

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 500


@dataclass(frozen=True)
class Candidate:
    """A validated record plus where it came from."""
    record: Any  # ItemListRecord | SalesTransactionRecord | ReceivingVoucherRecord
    row_number: int
    sheet: str = ""

    @property
    def key(self) -> tuple[Any, ...]:
        return self.record.key


@dataclass
class DedupPartition:
    to_insert: list[Candidate] = field(default_factory=list)
    skipped: list[tuple[Candidate, str]] = field(default_factory=list)  # (candidate, SkipReason.*)


def _chunks(items: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


def compute_existing(
    store: IngestStore,
    kind: UploadType,
    candidates: Iterable[Candidate],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> set[tuple[Any, ...]]:
    """Ask the store which candidate keys are already persisted.

    Keys are de-duplicated (order kept) and sent in chunks of ``chunk_size``;
    the per-chunk answers are unioned.
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive: {chunk_size}")
    unique_keys = list(dict.fromkeys(c.key for c in candidates))
    existing: set[tuple[Any, ...]] = set()
    for chunk in _chunks(unique_keys, chunk_size):
        existing |= store.exists(kind, chunk)
    logger.debug("kind=%s keys=%d existing=%d", kind.value, len(unique_keys), len(existing))
    return existing


def partition(
    candidates: Iterable[Candidate],
    existing: set[tuple[Any, ...]],
) -> DedupPartition:
    """Split candidates into records to write and skipped records with reasons."""
    result = DedupPartition()
    seen: set[tuple[Any, ...]] = set()
    for cand in candidates:
        key = cand.key
        first_sight = key not in seen
        seen.add(key)
        if key in existing:
            result.skipped.append((cand, SkipReason.ALREADY_IN_DATABASE))
        elif not first_sight:
            result.skipped.append((cand, SkipReason.DUPLICATE_IN_FILE))
        else:
            result.to_insert.append(cand)
    return result
