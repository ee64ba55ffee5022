import logging
import os
import sys

from storyforge.utils import configure_logging


def test_configure_logging_idempotent(tmp_path, monkeypatch):
    log_file = tmp_path / "app.log"
    monkeypatch.setenv("SF_LOG_LEVEL", "INFO")
    monkeypatch.setenv("SF_LOG_FILE", str(log_file))

    root = logging.getLogger()
    original_handlers = list(root.handlers)
    original_level = root.level
    try:
        root.handlers = []
        configure_logging("storyforge.worker")
        configure_logging("storyforge.worker")

        stdout_handlers = [
            handler
            for handler in root.handlers
            if isinstance(handler, logging.StreamHandler) and handler.stream is sys.stdout
        ]
        file_handlers = [
            handler for handler in root.handlers if isinstance(handler, logging.FileHandler)
        ]

        assert len(stdout_handlers) == 1
        assert len(file_handlers) == 1
        assert os.path.abspath(file_handlers[0].baseFilename) == os.path.abspath(
            str(log_file)
        )
    finally:
        root.handlers = original_handlers
        root.setLevel(original_level)


def test_log_level_overrides(monkeypatch):
    monkeypatch.setenv("SF_LOG_LEVELS", "storyforge.queue=DEBUG, bogus")
    root = logging.getLogger()
    original_handlers = list(root.handlers)
    try:
        configure_logging("storyforge")
        assert logging.getLogger("storyforge.queue").level == logging.DEBUG
    finally:
        root.handlers = original_handlers
        logging.getLogger("storyforge.queue").setLevel(logging.NOTSET)
