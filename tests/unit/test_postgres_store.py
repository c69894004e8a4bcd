from __future__ import annotations

from datetime import date
from decimal import Decimal

import psycopg2
import pytest

from retail_ingest.db.postgres import SCHEMA_SQL, PostgresStore
from retail_ingest.errors import PersistenceError
from retail_ingest.models.ingest_result import UploadManifest
from retail_ingest.models.records import (
    ItemListRecord,
    ReceivingLineRecord,
    ReceivingVoucherRecord,
    SalesTransactionRecord,
    UploadType,
    VoucherType,
)


class FakeCursor:
    rowcount = -1

    def __init__(self, conn: FakeConn) -> None:
        self.conn = conn

    def __enter__(self) -> FakeCursor:
        return self

    def __exit__(self, *exc) -> None:
        return None

    def execute(self, sql, params=None):
        self.conn.executed.append((sql, params))


class FakeConn:
    def __init__(self) -> None:
        self.executed: list[tuple] = []
        self.commits = 0
        self.rollbacks = 0

    def cursor(self) -> FakeCursor:
        return FakeCursor(self)

    def commit(self) -> None:
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1


@pytest.fixture()
def calls(monkeypatch):
    import retail_ingest.db.batch_insert as bi
    import retail_ingest.db.postgres as pg

    recorded: list[dict] = []
    state = {"fetch_rows": [], "fail": None, "rowcount": 1}

    def fake_execute_values(cursor, sql, rows, template=None, page_size=100, fetch=False):
        if state["fail"] is not None:
            raise state["fail"]
        recorded.append({"sql": sql, "rows": rows, "template": template})
        cursor.rowcount = state["rowcount"]
        if fetch:
            return state["fetch_rows"] or [(7,)]
        return None

    monkeypatch.setattr(bi, "execute_values", fake_execute_values)
    monkeypatch.setattr(pg, "execute_values", fake_execute_values)
    return recorded, state


def _voucher() -> ReceivingVoucherRecord:
    return ReceivingVoucherRecord(
        voucher_number="V1",
        date=date(2024, 3, 1),
        store="StoreA",
        vendor="Acme",
        type=VoucherType.RECEIVING,
        qb_total=Decimal("100.00"),
        corrected_total=Decimal("80.00"),
        total_qty=5,
        lines=(
            ReceivingLineRecord("A1", "Tee", 2, Decimal("10.00")),
            ReceivingLineRecord("A2", "Cap", 3, Decimal("20.00")),
        ),
    )


def test_schema_has_null_safe_sales_constraint() -> None:
    """Sales uniqueness treats NULL store types as equal."""
    assert "UNIQUE NULLS NOT DISTINCT" in SCHEMA_SQL
    assert "ON DELETE CASCADE" in SCHEMA_SQL
    conn = FakeConn()
    PostgresStore(conn).ensure_schema()
    assert conn.executed[0][0] == SCHEMA_SQL
    assert conn.commits == 1


def test_exists_uses_is_not_distinct_from(calls) -> None:
    """Existence checks join a VALUES list NULL-safely."""
    recorded, state = calls
    state["fetch_rows"] = [(date(2024, 1, 5), "StoreA", "R1", "SKU1", "Tee", None, Decimal("9.990"), "S")]
    conn = FakeConn()
    keys = [(date(2024, 1, 5), "StoreA", "R1", "SKU1", "Tee", None, Decimal("9.99"), "S")]
    found = PostgresStore(conn).exists(UploadType.SALES_TRANSACTIONS, keys)
    assert found == {keys[0]}
    sql = recorded[0]["sql"]
    assert 't."transaction_store_type" IS NOT DISTINCT FROM v.k5' in sql
    assert "(VALUES %s)" in sql
    assert recorded[0]["template"].startswith("(%s::date, %s::text")


def test_exists_with_no_keys_skips_query(calls) -> None:
    recorded, _ = calls
    assert PostgresStore(FakeConn()).exists(UploadType.ITEM_LIST, []) == set()
    assert recorded == []


def test_insert_commits_per_record(calls) -> None:
    """Each insert is its own transaction."""
    recorded, _ = calls
    conn = FakeConn()
    store = PostgresStore(conn)
    store.insert(UploadType.ITEM_LIST, ItemListRecord(item_number="A1", vendor_name="Acme", item_name="Tee"))
    assert conn.commits == 1
    assert recorded[0]["sql"].startswith('INSERT INTO item_list ("item_number"')
    assert "ON CONFLICT" not in recorded[0]["sql"]


def test_upsert_updates_non_key_columns(calls) -> None:
    """Upsert rewrites every non-key column from EXCLUDED."""
    recorded, _ = calls
    store = PostgresStore(FakeConn())
    store.upsert(UploadType.ITEM_LIST, ItemListRecord(item_number="A1", vendor_name="Acme", item_name="Tee"))
    sql = recorded[0]["sql"]
    assert "ON CONFLICT ON CONSTRAINT item_list_item_number_key DO UPDATE SET" in sql
    assert '"item_name" = EXCLUDED."item_name"' in sql
    assert '"item_number" = EXCLUDED' not in sql


def test_sales_upsert_is_do_nothing(calls) -> None:
    recorded, _ = calls
    record = SalesTransactionRecord(date(2024, 1, 5), "StoreA", "R1", "SKU1", "Tee", None, Decimal("1"), "S")
    PostgresStore(FakeConn()).upsert(UploadType.SALES_TRANSACTIONS, record)
    assert recorded[0]["sql"].endswith("DO NOTHING")


def test_sales_upsert_conflict_reports_nothing_written(calls) -> None:
    """A DO NOTHING conflict (rowcount 0) is reported as not written."""
    _, state = calls
    record = SalesTransactionRecord(date(2024, 1, 5), "StoreA", "R1", "SKU1", "Tee", None, Decimal("1"), "S")
    store = PostgresStore(FakeConn())
    assert store.upsert(UploadType.SALES_TRANSACTIONS, record) is True
    state["rowcount"] = 0
    assert store.upsert(UploadType.SALES_TRANSACTIONS, record) is False


def test_voucher_insert_writes_lines(calls) -> None:
    """Voucher lines are written under the returned voucher id."""
    recorded, _ = calls
    conn = FakeConn()
    PostgresStore(conn).insert(UploadType.RECEIVING_VOUCHER, _voucher())
    assert recorded[0]["sql"].startswith("INSERT INTO receiving_vouchers")
    assert recorded[0]["rows"][0][4] == "Receiving"
    assert conn.executed == [("DELETE FROM receiving_lines WHERE voucher_id = %s", (7,))]
    assert recorded[1]["rows"] == [(7, "A1", "Tee", 2, Decimal("10.00")), (7, "A2", "Cap", 3, Decimal("20.00"))]
    assert conn.commits == 1


def test_failed_write_rolls_back_and_raises(calls) -> None:
    """A rejected write rolls back and raises PersistenceError."""
    _, state = calls
    state["fail"] = psycopg2.IntegrityError("duplicate key value violates unique constraint")
    conn = FakeConn()
    with pytest.raises(PersistenceError, match="duplicate key"):
        PostgresStore(conn).insert(UploadType.ITEM_LIST, ItemListRecord("A1", "Acme", "Tee"))
    assert conn.rollbacks == 1
    assert conn.commits == 0


def test_record_manifest(calls) -> None:
    recorded, _ = calls
    manifest = UploadManifest("f.xlsx", "item-list", "initial", 3, 2, 1, 0, "[]")
    PostgresStore(FakeConn()).record_manifest(manifest)
    assert recorded[0]["sql"].startswith("INSERT INTO upload_history")
    assert recorded[0]["rows"] == [("f.xlsx", "item-list", "initial", 3, 2, 1, 0, "[]")]
