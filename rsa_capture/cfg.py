#!/usr/bin/env python3
# cfg.py

"""
Configuration and logging module.

Centralizes constants, paths and process tooling for the RSA capture tools.
Values come from the environment (optionally a `.env` file in the working
directory). Logging is split per destination: the console shows progress,
the rotated log files under LOGS_DIR keep warnings (everything when DEBUG).
"""

from __future__ import annotations
import logging
import pathlib
import time
import sys
import traceback
import os
from datetime import datetime
from typing import Callable, Dict, Optional
from contextlib import redirect_stderr
from dotenv import load_dotenv

from rsa_capture.utils.io_util import atomic_write_bytes

load_dotenv()

# =============================
# 1. CONFIGURATION (instrument)
# =============================

#: Directory holding libRSA_API.so (and libcyusb_shared.so)
RSA_API_DIR = pathlib.Path(os.getenv("RSA_API_DIR", "/opt/rsa_api"))
#: Console shows DEBUG records too
VERBOSE = os.getenv("VERBOSE", "false").lower() == "true"
#: Log files keep INFO records instead of only WARNING and above
DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# DPX polling
DPX_WAIT_TIMEOUT_MS = int(os.getenv("DPX_WAIT_TIMEOUT_MS", "1000"))
DPX_MAX_TIMEOUTS = int(os.getenv("DPX_MAX_TIMEOUTS", "3"))

# IQ streaming polling
IQ_POLL_INTERVAL_S = float(os.getenv("IQ_POLL_INTERVAL_S", "0.1"))
STAGNATION_MIN_S = float(os.getenv("STAGNATION_MIN_S", "5.0"))

# =============================
# 2. PATHS AND LOG ROTATION
# =============================

OUTPUT_DIR = pathlib.Path(os.getenv("OUTPUT_DIR", ".")).resolve()
LOGS_DIR = pathlib.Path(os.getenv("LOGS_DIR", "Logs")).resolve()

LOG_FILES_NUM = int(os.getenv("LOG_FILES_NUM", "10"))
LOG_ROTATION_LINES = int(os.getenv("LOG_ROTATION_LINES", "1000"))

# =============================
# 3. HELPERS
# =============================

def get_time_ms() -> int:
    """Current time in milliseconds since epoch."""
    return int(time.time() * 1000)

# =============================
# 4. LOGGING
# =============================

class _CurrentStreamProxy:
    """
    A file-like proxy that always delegates to the *current*
    sys.stdout or sys.stderr.
    """
    def __init__(self, stream_name: str):
        if stream_name not in ('stdout', 'stderr'):
            raise ValueError("Stream name must be 'stdout' or 'stderr'")
        self._stream_name = stream_name

    def write(self, data):
        return getattr(sys, self._stream_name).write(data)

    def flush(self):
        return getattr(sys, self._stream_name).flush()


class AtomicRotator:
    def __init__(self, module_name: str, max_lines: int, max_files: int,
                 logs_dir: Optional[pathlib.Path] = None):
        self.module_name = module_name
        self.max_lines = max_lines
        self.max_files = max_files
        self.logs_dir = pathlib.Path(logs_dir) if logs_dir is not None else LOGS_DIR
        self.current_lines = 0
        self.current_file = self._generate_path()

    def _generate_path(self) -> pathlib.Path:
        """DD-MM-YYYY_HH:MM:SS_module.log"""
        timestamp_str = datetime.fromtimestamp(get_time_ms() / 1000).strftime('%d-%m-%Y_%H:%M:%S')
        return self.logs_dir / f"{timestamp_str}_{self.module_name}.log"

    def _cleanup(self):
        try:
            logs = sorted(self.logs_dir.glob("*.log"), key=lambda x: x.stat().st_mtime)
            while len(logs) >= self.max_files:
                logs.pop(0).unlink(missing_ok=True)
        except OSError:
            pass

    def write(self, data: str):
        if not data:
            return
        self.current_lines += data.count('\n')
        if self.current_lines >= self.max_lines:
            self._cleanup()
            self.current_file = self._generate_path()
            self.current_lines = 0
        try:
            content = self.current_file.read_bytes() if self.current_file.exists() else b""
            atomic_write_bytes(self.current_file, content + data.encode('utf-8'))
        except OSError:
            pass

    def flush(self):
        pass


class Tee:
    def __init__(self, primary, manager: Optional[AtomicRotator]):
        self.primary = primary
        self.manager = manager

    def write(self, data):
        self.primary.write(data)
        if self.manager:
            self.manager.write(data)

    def flush(self):
        self.primary.flush()


class SimpleFormatter(logging.Formatter):
    def format(self, record):
        if record.exc_info:
            record.levelname = "EXCEPTION"
        record.levelname = f"{record.levelname:<9}"
        return super().format(record)


_FORMATTER = SimpleFormatter("%(asctime)s[%(name)s]%(levelname)s %(message)s", "%d-%b-%y(%H:%M:%S)")
_LOGGERS: Dict[str, logging.Logger] = {}
_ROTATOR: Optional[AtomicRotator] = None


def _attach_rotator(logger: logging.Logger, rotator: AtomicRotator) -> None:
    if any(getattr(h, "is_rotator", False) for h in logger.handlers):
        return
    f_handler = logging.StreamHandler(rotator)
    f_handler.is_rotator = True
    f_handler.setLevel(logging.INFO if DEBUG else logging.WARNING)
    f_handler.setFormatter(_FORMATTER)
    logger.addHandler(f_handler)


def set_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Logger named after the calling module (upper-case file stem).

    Console handler: INFO, or DEBUG when VERBOSE. Once run_and_capture has
    started, a file handler writing through the rotator is attached as well.
    """
    if name is None:
        try:
            name = pathlib.Path(sys._getframe(1).f_code.co_filename).stem.upper()
        except (AttributeError, ValueError):
            name = "RSA"

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)

    if not any(getattr(h, "is_console", False) for h in logger.handlers):
        c_handler = logging.StreamHandler(_CurrentStreamProxy('stdout'))
        c_handler.is_console = True
        c_handler.setLevel(logging.DEBUG if VERBOSE else logging.INFO)
        c_handler.setFormatter(_FORMATTER)
        logger.addHandler(c_handler)

    if _ROTATOR is not None:
        _attach_rotator(logger, _ROTATOR)

    _LOGGERS[name] = logger
    return logger

# =============================
# 5. EXECUTION CAPTURE
# =============================

def run_and_capture(func: Callable[[], Optional[int]], num_files: int = LOG_FILES_NUM) -> int:
    """
    Run a tool entry point with log capture.

    Every logger created through set_logger gets a rotated file handler and
    stderr is teed into the same file. SystemExit codes are passed through,
    Ctrl+C maps to 130 and unexpected exceptions to 1.
    """
    global _ROTATOR
    try:
        module = pathlib.Path(sys.argv[0]).stem
    except (IndexError, TypeError):
        module = "rsa_capture"

    _ROTATOR = AtomicRotator(module, LOG_ROTATION_LINES, num_files)
    for logger in _LOGGERS.values():
        _attach_rotator(logger, _ROTATOR)

    orig_err = sys.stderr
    rc = 1

    try:
        with redirect_stderr(Tee(orig_err, _ROTATOR)):
            rc = func()
    except KeyboardInterrupt:
        rc = 130
    except SystemExit as e:
        rc = e.code if isinstance(e.code, int) else 1
    except Exception:
        traceback.print_exc()
        rc = 1

    return int(rc if rc is not None else 0)


if __name__ == "__main__":
    log = set_logger()
    log.info("--- cfg.py debug ---")
    log.info(f"RSA_API_DIR: {RSA_API_DIR}")
    log.info(f"OUTPUT_DIR:  {OUTPUT_DIR}")
    log.info(f"LOGS_DIR:    {LOGS_DIR}")
