"""
Tests for logging setup
"""

import logging
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from utils.logger import LOGGER_NAME, setup_file_logging


def _file_handlers(path):
    root = logging.getLogger(LOGGER_NAME)
    return [h for h in root.handlers
            if isinstance(h, logging.FileHandler) and h.baseFilename == os.path.abspath(path)]


class TestSetupFileLogging:

    def test_repeated_setup_keeps_one_handler(self, tmp_path):
        log_file = str(tmp_path / "engagement.log")
        try:
            setup_file_logging(log_file, logging.INFO)
            setup_file_logging(log_file, logging.DEBUG)

            handlers = _file_handlers(log_file)
            assert len(handlers) == 1
            assert handlers[0].level == logging.DEBUG

            logging.getLogger(f"{LOGGER_NAME}.tests").warning("written once")
            handlers[0].flush()
            with open(log_file, encoding="utf-8") as f:
                assert f.read().count("written once") == 1
        finally:
            for handler in _file_handlers(log_file):
                logging.getLogger(LOGGER_NAME).removeHandler(handler)
                handler.close()

    def test_no_file(self):
        root = setup_file_logging(None, logging.WARNING)

        assert root.level == logging.WARNING
