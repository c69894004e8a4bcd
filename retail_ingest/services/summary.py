from __future__ import annotations

from ..models.ingest_result import IngestBatchResult

"""SUMMARY line rendering.

Format:
SUMMARY file={name} type={upload_type} mode={mode} total={n} uploaded={n}
skipped={n} failed={n} mismatches={n} stopped={0|1} elapsed_sec={sec}
(one line, single spaces)
"""

__all__ = [
    "render_summary_line",
    "format_elapsed",
]


def format_elapsed(seconds: float) -> str:
    """Render seconds without scientific notation or a trailing ``.0``."""
    if seconds <= 0:
        return "0"
    if seconds == int(seconds):
        return str(int(seconds))
    return f"{seconds:.3f}".rstrip("0").rstrip(".") or "0"


def render_summary_line(result: IngestBatchResult) -> str:
    """Render the SUMMARY line for one ingestion run.

    >>> r = IngestBatchResult(file_name="a.xlsx", upload_type="item-list", mode="initial",
    ...                       total=3, uploaded=2, failed=1, elapsed_seconds=1.5)
    >>> render_summary_line(r)
    'SUMMARY file=a.xlsx type=item-list mode=initial total=3 uploaded=2 skipped=0 failed=1 mismatches=0 stopped=0 elapsed_sec=1.5'
    """
    # ファイル名の空白は 1 トークンに保つため置換
    name = (result.file_name or "-").replace(" ", "_")
    return (
        f"SUMMARY file={name} "
        f"type={result.upload_type} "
        f"mode={result.mode} "
        f"total={result.total} "
        f"uploaded={result.uploaded} "
        f"skipped={result.skipped} "
        f"failed={result.failed} "
        f"mismatches={result.mismatches} "
        f"stopped={int(result.stopped)} "
        f"elapsed_sec={format_elapsed(result.elapsed_seconds)}"
    )
