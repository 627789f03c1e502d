import json
import logging
from pathlib import Path

import pytest

from refreshstore.utils.logging import JsonFormatter, configure_logging, get_logger


@pytest.fixture()
def package_logger():
    logger = logging.getLogger("refreshstore")
    saved = (list(logger.handlers), logger.level, logger.propagate)
    yield logger
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    handlers, level, propagate = saved
    for handler in handlers:
        logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = propagate


def test_json_formatter_includes_context_fields() -> None:
    record = logging.LogRecord("refreshstore.test", logging.WARNING, __file__, 1, "retrying %s", ("key",), None)
    record.key = "db_password"
    record.attempt = 2
    payload = json.loads(JsonFormatter().format(record))
    assert payload["message"] == "retrying key"
    assert payload["level"] == "WARNING"
    assert payload["key"] == "db_password"
    assert payload["attempt"] == 2
    assert "resolver" not in payload


def test_configure_logging_writes_json_file(tmp_path: Path, package_logger: logging.Logger) -> None:
    configure_logging(level="DEBUG", log_dir=tmp_path, rich=False)
    get_logger("refreshstore.test").info("hello", extra={"key": "region"})
    for handler in package_logger.handlers:
        handler.flush()
    lines = (tmp_path / "refreshstore.log").read_text(encoding="utf-8").splitlines()
    entry = json.loads(lines[-1])
    assert entry["message"] == "hello"
    assert entry["key"] == "region"
    assert not package_logger.propagate


def test_configure_logging_console_only(
    monkeypatch: pytest.MonkeyPatch, package_logger: logging.Logger
) -> None:
    monkeypatch.delenv("REFRESHSTORE_LOG_DIR", raising=False)
    root_handlers = list(logging.getLogger().handlers)
    configure_logging()
    assert [type(handler).__name__ for handler in package_logger.handlers] == ["RichHandler"]
    assert package_logger.level == logging.INFO
    assert logging.getLogger().handlers == root_handlers
