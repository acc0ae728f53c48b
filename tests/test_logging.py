from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from mailstream.core.logging import CorrelationIdFilter, configure_logging, get_logger


@pytest.fixture()
def root_logger():
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        yield root
    finally:
        for handler in list(root.handlers):
            if handler not in saved_handlers:
                root.removeHandler(handler)
                handler.close()
        for handler in saved_handlers:
            if handler not in root.handlers:
                root.addHandler(handler)
        root.setLevel(saved_level)


def test_filter_tags_untagged_records(test_logger, caplog) -> None:  # noqa: ANN001
    test_logger.addFilter(CorrelationIdFilter("abc"))

    with caplog.at_level(logging.INFO):
        test_logger.info("plain")
        test_logger.info("tagged", extra={"correlation_id": "xyz"})

    assert [record.correlation_id for record in caplog.records] == ["abc", "xyz"]


def test_get_logger_carries_correlation_id(test_logger, caplog) -> None:  # noqa: ANN001
    adapter = get_logger("mailstream-test", "run-1")
    assert adapter.logger is test_logger

    with caplog.at_level(logging.INFO):
        adapter.info("started")

    assert caplog.records[-1].correlation_id == "run-1"


def test_configure_logging_writes_text_and_json(root_logger, tmp_path: Path) -> None:  # noqa: ANN001
    paths = configure_logging(tmp_path / "logs", correlation_id="run-2", console=False)

    logging.getLogger("mailstream.test").info("hello %s", "world")
    for handler in root_logger.handlers:
        handler.flush()

    text_path, json_path = paths
    assert text_path.name.startswith("mailstream-") and text_path.suffix == ".log"
    assert "[run-2] mailstream.test: hello world" in text_path.read_text(encoding="utf-8")

    record = json.loads(json_path.read_text(encoding="utf-8").splitlines()[-1])
    assert record["correlation_id"] == "run-2"
    assert record["message"] == "hello world"
    assert all(isinstance(handler, logging.FileHandler) for handler in root_logger.handlers)
