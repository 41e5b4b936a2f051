from __future__ import annotations

import logging
import sys
from pathlib import Path

from cadence.models import LoggingConfig


class _ThirdPartyNoiseFilter(logging.Filter):
    """Keep cadence logs; let other libraries through only at WARNING+."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name == "cadence" or record.name.startswith("cadence."):
            return True
        return record.levelno >= logging.WARNING


def setup_logging(config: LoggingConfig | None = None) -> None:
    """Configure the root logger once, before the app starts serving.

    Console output always; a ``cadence.log`` file as well when ``log_dir`` is set.
    """
    config = config or LoggingConfig()
    level = logging.getLevelName(config.level)
    if not isinstance(level, int):
        level = logging.INFO

    root = logging.getLogger()
    root.setLevel(logging.DEBUG if config.log_dir else level)

    # Remove pre-existing handlers to avoid duplicates on reload.
    for handler in list(root.handlers):
        root.removeHandler(handler)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)
    console.setFormatter(fmt)
    console.addFilter(_ThirdPartyNoiseFilter())
    root.addHandler(console)

    if config.log_dir:
        log_dir = Path(config.log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(str(log_dir / "cadence.log"), encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(fmt)
        root.addHandler(file_handler)

    logging.captureWarnings(True)
