from __future__ import annotations

import dataclasses
import json
import logging
import threading

import pytest
from conftest import item_rows

from retail_ingest.db.store import InMemoryStore
from retail_ingest.errors import PersistenceError, StructuralError
from retail_ingest.logging.error_log import ErrorLogBuffer
from retail_ingest.models.config_models import IngestConfig
from retail_ingest.models.records import UploadType
from retail_ingest.services.control import ControlToken
from retail_ingest.services.orchestrator import ingest_file


def _config(**overrides) -> IngestConfig:
    return dataclasses.replace(IngestConfig.defaults(), **overrides)


class FlakyStore(InMemoryStore):
    """Rejects the listed item numbers the way a database constraint would."""

    def __init__(self, reject: set[str], message: str = "value too long for type character varying") -> None:
        super().__init__()
        self.reject = reject
        self.message = message

    def insert(self, kind, record):
        if record.item_number in self.reject:
            raise PersistenceError(self.message)
        super().insert(kind, record)


class BrokenManifestStore(InMemoryStore):
    def record_manifest(self, manifest):
        raise PersistenceError("upload_history is read-only")


def test_item_list_happy_path(make_xlsx) -> None:
    """Three clean items are stored with the file name and one manifest."""
    path = make_xlsx("items.xlsx", {"Items": item_rows(3)})
    store = InMemoryStore()
    result = ingest_file(path, "item-list", store=store)
    assert (result.total, result.uploaded, result.skipped, result.failed) == (3, 3, 0, 0)
    record = store.all(UploadType.ITEM_LIST)[0]
    assert record.item_number == "ITM0001"
    assert record.file_name == "items.xlsx"
    assert record.avail_qty == 1
    assert len(store.manifests) == 1
    assert store.manifests[0].successful_records == 3
    assert result.elapsed_seconds >= 0


def test_persistence_failure_counts_and_continues(make_xlsx, tmp_path) -> None:
    """A rejected record is counted and the rest are still written."""
    path = make_xlsx("items.xlsx", {"Items": item_rows(5)})
    store = FlakyStore({"ITM0002"})
    log = ErrorLogBuffer(logs_dir=tmp_path / "logs")
    result = ingest_file(path, UploadType.ITEM_LIST, store=store, error_log=log)
    assert result.uploaded == 4
    assert result.failed == 1
    assert result.errors == ["Row 2: value too long for type character varying"]
    assert store.count(UploadType.ITEM_LIST) == 4
    [record] = log.records
    assert record.error_type == "PERSISTENCE_ERROR"
    assert record.row == 2 and record.sheet == "Items"


def test_error_messages_are_bounded_and_sampled(make_xlsx) -> None:
    """Messages are truncated and sample sizes respect the config."""
    path = make_xlsx("items.xlsx", {"Items": item_rows(8)})
    store = FlakyStore({f"ITM{i:04d}" for i in range(1, 9)}, message="x" * 500)
    cfg = _config(message_max_length=40, error_sample_size=2, manifest_error_limit=3)
    result = ingest_file(path, "item-list", store=store, config=cfg)
    assert result.failed == 8
    assert len(result.errors) == 2
    assert all(len(m) <= 40 for m in result.errors)
    assert result.errors[0].endswith("...")
    assert len(json.loads(store.manifests[0].errors)) == 3


def test_manifest_failure_is_logged_not_raised(make_xlsx, caplog) -> None:
    """A manifest write failure does not discard the result."""
    path = make_xlsx("items.xlsx", {"Items": item_rows(2)})
    with caplog.at_level(logging.ERROR):
        result = ingest_file(path, "item-list", store=BrokenManifestStore())
    assert result.uploaded == 2
    assert "manifest write failed" in caplog.text


def test_progress_callback_per_batch(make_xlsx) -> None:
    """Progress is reported before, every batch_size records, and at the end."""
    path = make_xlsx("items.xlsx", {"Items": item_rows(25)})
    snapshots = []
    ingest_file(path, "item-list", store=InMemoryStore(), config=_config(batch_size=10), progress=snapshots.append)
    assert [s.processed for s in snapshots] == [0, 10, 20, 25]
    assert snapshots[-1].total == 25
    assert snapshots[-1].percent == 100


def test_stop_returns_partial_result(make_xlsx) -> None:
    """stop() ends the run with committed records kept."""
    path = make_xlsx("items.xlsx", {"Items": item_rows(30)})
    token = ControlToken()
    store = InMemoryStore()

    def on_progress(snapshot):
        if snapshot.processed >= 10:
            token.stop()

    result = ingest_file(
        path, "item-list", store=store, config=_config(batch_size=10), control=token, progress=on_progress
    )
    assert result.stopped is True
    assert result.uploaded == 10
    assert store.count(UploadType.ITEM_LIST) == 10
    assert store.manifests[0].successful_records == 10


def test_pause_blocks_until_resume(make_xlsx) -> None:
    """A paused run continues once resumed."""
    path = make_xlsx("items.xlsx", {"Items": item_rows(5)})
    token = ControlToken()
    token.pause()
    timer = threading.Timer(0.1, token.resume)
    timer.start()
    try:
        result = ingest_file(path, "item-list", store=InMemoryStore(), control=token)
    finally:
        timer.cancel()
    assert result.uploaded == 5
    assert result.stopped is False


def test_missing_expected_columns_is_structural(make_xlsx, tmp_path) -> None:
    """Missing required columns abort the file and are logged with row -1."""
    path = make_xlsx("items.xlsx", {"Items": [["Item #", "Item Name"], ["A1", "Tee"]]})
    log = ErrorLogBuffer(logs_dir=tmp_path / "logs")
    with pytest.raises(StructuralError, match="vendor_name"):
        ingest_file(path, "item-list", store=InMemoryStore(), error_log=log)
    [record] = log.records
    assert record.row == -1
    assert record.error_type == "STRUCTURAL_ERROR"


def test_sales_without_detail_sheet_is_structural(make_xlsx) -> None:
    path = make_xlsx("sales.xlsx", {"Summary": [["Date", "Store", "Receipt #", "Price"]]})
    with pytest.raises(StructuralError, match="Sales Detail"):
        ingest_file(path, "sales-transactions", store=InMemoryStore())


def test_unknown_upload_type_rejected(make_xlsx) -> None:
    path = make_xlsx("items.xlsx", {"Items": item_rows(1)})
    with pytest.raises(ValueError):
        ingest_file(path, "customer-list", store=InMemoryStore())


def test_bytes_source_uses_given_file_name(make_xlsx) -> None:
    """Raw bytes are recorded under the supplied file name."""
    path = make_xlsx("items.xlsx", {"Items": item_rows(2)})
    store = InMemoryStore()
    result = ingest_file(path.read_bytes(), "item-list", store=store, file_name="upload-42.xlsx")
    assert result.file_name == "upload-42.xlsx"
    assert store.manifests[0].file_name == "upload-42.xlsx"


def test_result_to_dict_is_json_friendly(make_xlsx) -> None:
    """to_dict() survives a JSON round trip."""
    rows = item_rows(3)
    rows.append(list(rows[1]))
    result = ingest_file(make_xlsx("items.xlsx", {"Items": rows}), "item-list", store=InMemoryStore())
    payload = json.loads(json.dumps(result.to_dict()))
    assert payload["success"] is True
    assert (payload["total"], payload["uploaded"], payload["skipped"]) == (4, 3, 1)
    assert payload["duplicates"] == ["Items row 4: duplicate within this file"]
