from __future__ import annotations

import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

import psycopg2
from psycopg2.extras import execute_values

"""Multi-row INSERT helper on top of psycopg2.extras.execute_values.

PostgresStore uses it for voucher line items (one statement per voucher) and
for existence lookups; it never commits: the caller owns the transaction.
"""

__all__ = [
    "BatchInsertError",
    "BatchMetrics",
    "InsertResult",
    "batch_insert",
]


class BatchInsertError(Exception):
    pass


@dataclass(frozen=True)
class BatchMetrics:
    """Timing of a single execute_values call."""
    batch_size: int
    elapsed_seconds: float


@dataclass(frozen=True)
class InsertResult:
    inserted_rows: int
    returned_values: list[tuple[Any, ...]] | None = None


def batch_insert(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    returning: Sequence[str] | None = None,
    on_conflict: str | None = None,
    page_size: int = 1000,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> InsertResult:
    """Perform batched INSERT using psycopg2.extras.execute_values.

    Parameters
    ----------
    cursor: psycopg2 cursor
    table: 対象テーブル名 (固定値のみ。ユーザー入力は渡さない)
    columns: 挿入列
    rows: 行シーケンス
    returning: RETURNING 列 (None なら RETURNING なし)
    on_conflict: "ON CONFLICT ..." 句 (そのまま付与)
    page_size: execute_values の page_size
    metrics_callback: execute_values 1 回ごとの計測値を受け取る (rows が空なら呼ばれない)
    """
    rows_list = [tuple(r) for r in rows]
    if not rows_list:
        return InsertResult(inserted_rows=0, returned_values=[] if returning else None)

    cols_sql = ",".join(f'"{c}"' for c in columns)
    sql = f"INSERT INTO {table} ({cols_sql}) VALUES %s"
    if on_conflict:
        sql += f" {on_conflict}"
    if returning:
        sql += " RETURNING " + ",".join(f'"{c}"' for c in returning)

    start = time.perf_counter()
    try:
        returned = execute_values(
            cursor, sql, rows_list, page_size=page_size, fetch=bool(returning)
        )
    except psycopg2.Error as e:
        raise BatchInsertError(str(e).strip()) from e
    finally:
        if metrics_callback is not None:
            metrics_callback(BatchMetrics(len(rows_list), time.perf_counter() - start))

    return InsertResult(
        inserted_rows=len(rows_list),
        returned_values=[tuple(r) for r in returned] if returning else None,
    )
