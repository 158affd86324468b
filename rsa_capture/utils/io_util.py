# utils/io_util.py
"""
I/O and timing utilities.

1. **Atomic write**: replace a file in a single filesystem operation so a
   crash never leaves it half written (used by the log rotator).
2. **DpxCsvWriter**: CSV sink for DPX spectrum traces, one row per frame.
3. **ElapsedTimer**: non-blocking countdown used by the polling loops.
"""

from __future__ import annotations
from pathlib import Path
from datetime import datetime
from typing import Iterable, Optional
import csv
import logging
import os
import tempfile
import time

log = logging.getLogger(__name__)

#: Format of the timestamp column, as announced in the CSV header
CSV_TIMESTAMP_FMT = "%Y-%m-%d %H:%M:%S.%f"
CSV_TIMESTAMP_HEADER = "timestamp(yyyy-MM-dd HH:mm:ss.ffffff)"


def atomic_write_bytes(target_path: Path, data: bytes) -> None:
    """
    Write `data` to `target_path` atomically.

    The data goes to a temporary file in the same directory first, which then
    replaces the target in a single OS operation.

    Args:
        target_path (Path): Final file path.
        data (bytes): Binary content.

    Raises:
        Exception: If writing, syncing or replacing fails.
    """
    target_dir = target_path.parent
    target_dir.mkdir(parents=True, exist_ok=True)

    tmp_name: Optional[Path] = None
    try:
        # Same directory, so replace() stays on one filesystem
        with tempfile.NamedTemporaryFile(dir=str(target_dir), delete=False) as tmpf:
            tmp_name = Path(tmpf.name)
            tmpf.write(data)
            tmpf.flush()
            os.fsync(tmpf.fileno())

        if tmp_name:
            tmp_name.replace(target_path)

    except Exception as e:
        if tmp_name and tmp_name.exists():
            try:
                tmp_name.unlink(missing_ok=True)
            except Exception:
                log.warning("Failed to clean temp file %s: %s", tmp_name, e)
        raise


class DpxCsvWriter:
    """
    CSV sink for DPX traces.

    Layout::

        timestamp(yyyy-MM-dd HH:mm:ss.ffffff),<freq1 Hz>,<freq2 Hz>,...
        2026-01-01 12:00:00.000001,<level1 dBm>,<level2 dBm>,...

    Frequencies are written as integers, levels with 6 decimals. Each row is
    flushed as soon as it is written so a crash keeps every completed frame.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self.rows_written = 0
        self.header_written = False
        self._fh = None
        self._writer = None

    def open(self) -> "DpxCsvWriter":
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._fh = self.path.open("w", encoding="utf-8", newline="")
        self._writer = csv.writer(self._fh, lineterminator="\n")
        return self

    def write_header(self, freqs_hz: Iterable[float]) -> None:
        self._ensure_open()
        self._writer.writerow([CSV_TIMESTAMP_HEADER] + [str(int(f)) for f in freqs_hz])
        self._fh.flush()
        self.header_written = True

    def write_frame(self, levels_dbm: Iterable[float], timestamp: Optional[datetime] = None) -> None:
        self._ensure_open()
        ts = (timestamp or datetime.now()).strftime(CSV_TIMESTAMP_FMT)
        self._writer.writerow([ts] + [f"{float(v):.6f}" for v in levels_dbm])
        self._fh.flush()
        self.rows_written += 1

    def close(self) -> None:
        if self._fh is not None:
            self._fh.close()
            self._fh = None
            self._writer = None

    def _ensure_open(self) -> None:
        if self._fh is None:
            raise ValueError(f"CSV file not open: {self.path}")

    def __enter__(self) -> "DpxCsvWriter":
        return self.open()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class ElapsedTimer:
    """
    Simple countdown timer.

    Lets a polling loop check whether an interval has passed without
    blocking.
    """
    def __init__(self):
        self.end_time = 0.0

    def init_count(self, seconds: float):
        """
        Start the countdown.

        Args:
            seconds (float): Seconds to wait from now.
        """
        self.end_time = time.time() + seconds

    def time_elapsed(self) -> bool:
        """
        Returns:
            bool: True once the current time reached the target time.
        """
        return time.time() >= self.end_time
