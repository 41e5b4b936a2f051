import logging
import tempfile
import unittest
from pathlib import Path

from cadence.logging_setup import setup_logging
from cadence.models import LoggingConfig


class LoggingSetupTests(unittest.TestCase):
    def setUp(self) -> None:
        self.root = logging.getLogger()
        self.saved_handlers = list(self.root.handlers)
        self.saved_level = self.root.level

    def tearDown(self) -> None:
        for handler in list(self.root.handlers):
            self.root.removeHandler(handler)
            handler.close()
        for handler in self.saved_handlers:
            self.root.addHandler(handler)
        self.root.setLevel(self.saved_level)
        logging.captureWarnings(False)

    def test_console_only_by_default(self) -> None:
        setup_logging(LoggingConfig(level="WARNING"))
        self.assertEqual(len(self.root.handlers), 1)
        self.assertEqual(self.root.level, logging.WARNING)

    def test_file_handler_when_log_dir_set(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            setup_logging(LoggingConfig(level="INFO", log_dir=temp_dir))
            logging.getLogger("cadence.series").debug("series rebuilt")
            for handler in self.root.handlers:
                handler.flush()
            log_text = (Path(temp_dir) / "cadence.log").read_text(encoding="utf-8")
            self.assertIn("series rebuilt", log_text)
            for handler in list(self.root.handlers):
                self.root.removeHandler(handler)
                handler.close()

    def test_unknown_level_falls_back_to_info(self) -> None:
        setup_logging(LoggingConfig(level="CHATTY"))
        self.assertEqual(self.root.level, logging.INFO)


if __name__ == "__main__":
    unittest.main()
