import logging
import os
import sys
from pathlib import Path

import pytest

from rsa_capture import cfg
from rsa_capture.cfg import AtomicRotator, run_and_capture, set_logger


@pytest.fixture
def logs_dir(tmp_path: Path, monkeypatch) -> Path:
    d = tmp_path / "Logs"
    monkeypatch.setattr(cfg, "LOGS_DIR", d)
    monkeypatch.setattr(cfg, "_ROTATOR", None)
    yield d
    for logger in cfg._LOGGERS.values():
        for h in [h for h in logger.handlers if getattr(h, "is_rotator", False)]:
            logger.removeHandler(h)


# =========================================================================
# 1. LOG ROTATION
# =========================================================================

def test_rotator_appends_lines(tmp_path: Path):
    rotator = AtomicRotator("unit", max_lines=100, max_files=3, logs_dir=tmp_path)
    rotator.write("first\n")
    rotator.write("second\n")
    rotator.write("")

    assert rotator.current_file.read_text() == "first\nsecond\n"
    assert rotator.current_file.name.endswith("_unit.log")


def test_rotator_cleans_old_files(tmp_path: Path, mocker):
    clock = mocker.patch("rsa_capture.cfg.get_time_ms", return_value=1_700_000_000_000)
    for i, name in enumerate(("a.log", "b.log", "c.log")):
        p = tmp_path / name
        p.write_text("old\n")
        # distinct mtimes, oldest first
        os.utime(p, (1000 + i, 1000 + i))

    rotator = AtomicRotator("unit", max_lines=1, max_files=3, logs_dir=tmp_path)
    clock.return_value += 60_000
    rotator.write("rotate\n")

    remaining = sorted(p.name for p in tmp_path.glob("*.log"))
    assert "a.log" not in remaining
    assert rotator.current_file.read_text() == "rotate\n"


# =========================================================================
# 2. LOGGERS
# =========================================================================

def test_set_logger_named_after_caller():
    logger = set_logger()
    assert logger.name == "TEST_CFG"
    assert sum(getattr(h, "is_console", False) for h in logger.handlers) == 1

    # idempotent
    set_logger()
    assert sum(getattr(h, "is_console", False) for h in logger.handlers) == 1


def test_console_follows_current_stdout(capsys):
    logger = set_logger("CFG_CONSOLE")
    logger.info("to the console")

    assert "[CFG_CONSOLE]INFO      to the console" in capsys.readouterr().out


# =========================================================================
# 3. EXECUTION CAPTURE
# =========================================================================

def test_run_and_capture_return_value(logs_dir):
    assert run_and_capture(lambda: 0) == 0
    assert run_and_capture(lambda: None) == 0
    assert run_and_capture(lambda: 3) == 3


def test_run_and_capture_exit_codes(logs_dir):
    def exits():
        sys.exit(2)

    def interrupted():
        raise KeyboardInterrupt

    def fails():
        raise RuntimeError("boom")

    assert run_and_capture(exits) == 2
    assert run_and_capture(interrupted) == 130
    assert run_and_capture(fails) == 1


def test_run_and_capture_writes_warnings_to_file(logs_dir, monkeypatch):
    monkeypatch.setattr(cfg, "DEBUG", False)
    logger = set_logger("CFG_CAPTURE")

    def job():
        logger.info("progress only on console")
        logger.warning("kept in the log file")
        return 0

    assert run_and_capture(job) == 0

    text = "".join(p.read_text() for p in logs_dir.glob("*.log"))
    assert "kept in the log file" in text
    assert "progress only on console" not in text
    assert logging.getLogger("CFG_CAPTURE") is logger
