import logging
import os
from pathlib import Path

from shared.logging.logger import get_logger, set_level


def test_loggers_are_cached_and_share_runtime_handlers():
    first = get_logger("tests.one", runtime="chatweave-test")
    again = get_logger("tests.one", runtime="chatweave-test")
    second = get_logger("tests.two", runtime="chatweave-test")

    assert first is again
    assert first.handlers == second.handlers
    assert not first.propagate

    files = [h for h in first.handlers if isinstance(h, logging.FileHandler)]
    assert len(files) == 1
    log_path = Path(files[0].baseFilename)
    assert str(log_path.parent) == os.path.abspath(os.environ["CHATWEAVE_LOG_DIR"])
    assert log_path.name.startswith("chatweave-test-")


def test_set_level_applies_to_existing_loggers():
    logger = get_logger("tests.level", runtime="chatweave-test")
    original = logger.level
    try:
        set_level(logging.ERROR)
        assert logger.level == logging.ERROR
    finally:
        set_level(original)


def test_log_file_is_created_on_first_record(tmp_path, monkeypatch):
    log_dir = tmp_path / "lazy-logs"
    monkeypatch.setenv("CHATWEAVE_LOG_DIR", str(log_dir))

    logger = get_logger("tests.lazy", runtime="chatweave-lazy")
    assert not log_dir.exists()

    logger.error("first record")
    for handler in logger.handlers:
        handler.flush()

    files = list(log_dir.glob("chatweave-lazy-*.log"))
    assert len(files) == 1
    assert "first record" in files[0].read_text(encoding="utf-8")

    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler):
            handler.close()
