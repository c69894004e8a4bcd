from __future__ import annotations

import re

import pytest
from conftest import item_rows, write_workbook

from retail_ingest.cli.__main__ import main as cli_main

"""SUMMARY 行フォーマット契約テスト.

1 行・key=value・固定順。ファイル名の空白は '_' に置換される。
"""

SUMMARY_PATTERN = re.compile(
    r"^SUMMARY file=(\S+) type=(item-list|sales-transactions|receiving-voucher) "
    r"mode=(initial|weekly_update) total=([0-9]+) uploaded=([0-9]+) skipped=([0-9]+) "
    r"failed=([0-9]+) mismatches=([0-9]+) stopped=([01]) elapsed_sec=([0-9]+\.?[0-9]*)$"
)


def test_summary_pattern_example_lines() -> None:
    """Documented example lines match the SUMMARY pattern."""
    for line in (
        "SUMMARY file=items.xlsx type=item-list mode=initial total=4 uploaded=4 skipped=0 "
        "failed=0 mismatches=0 stopped=0 elapsed_sec=0.84",
        "SUMMARY file=rv_week_12.xlsx type=receiving-voucher mode=weekly_update total=10 uploaded=7 "
        "skipped=2 failed=1 mismatches=3 stopped=1 elapsed_sec=2",
    ):
        assert SUMMARY_PATTERN.match(line), line


def _summary_line(out: str) -> str:
    lines = [ln for ln in out.splitlines() if ln.startswith("SUMMARY ")]
    assert len(lines) == 1
    return lines[0]


@pytest.mark.parametrize("missing_at, failed", [(None, 0), (2, 1)])
def test_cli_emits_one_contract_summary_line(temp_workdir, monkeypatch, capsys, missing_at, failed) -> None:
    """The CLI prints exactly one SUMMARY line whose counts add up."""
    monkeypatch.setenv("DISABLE_DB_CONNECT", "1")
    path = write_workbook(temp_workdir / "data" / "week 12.xlsx", {"Items": item_rows(5, missing_vendor_at=missing_at)})
    cli_main([str(path), "--type", "item-list"])
    m = SUMMARY_PATTERN.match(_summary_line(capsys.readouterr().out))
    assert m
    assert m.group(1) == "week_12.xlsx"
    total, uploaded, skipped, failed_count = (int(m.group(i)) for i in (4, 5, 6, 7))
    assert total == 5
    assert failed_count == failed
    assert uploaded + skipped + failed_count == total
