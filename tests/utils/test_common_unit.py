#!/usr/bin/env python3

from __future__ import annotations

import logging

import pytest


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    level = root.level
    yield
    # Only the plain handlers installed by setup_logging; pytest's own are subclasses
    for handler in list(root.handlers):
        if type(handler) in (logging.StreamHandler, logging.FileHandler):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


def test_setup_logging_creates_log_file(tmp_path):
    from vulngate.utils.common import setup_logging

    log_file = tmp_path / "logs" / "test.log"
    setup_logging("DEBUG", str(log_file))
    logging.getLogger("vulngate.test").debug("hello")
    for handler in logging.getLogger().handlers:
        handler.flush()
    assert log_file.exists()
    assert "[DEBUG] hello" in log_file.read_text()
    assert logging.getLogger().level == logging.DEBUG


def test_setup_logging_console_only_on_empty_path():
    from vulngate.utils.common import setup_logging

    setup_logging(logging.WARNING, "")
    handlers = logging.getLogger().handlers
    assert not any(isinstance(h, logging.FileHandler) for h in handlers)
