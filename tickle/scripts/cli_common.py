from __future__ import annotations

import argparse
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from tickle.data.paths import ASSETS_DIR, DATA_DIR, LOG_DIR

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def setup_logging(level: str, log_file: str | None) -> None:
    root = logging.getLogger("tickle")
    root.handlers.clear()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.propagate = False
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S")

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            filename=str(path),
            maxBytes=5_000_000,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)


def add_common_args(p: argparse.ArgumentParser, log_name: str) -> argparse.ArgumentParser:
    p.add_argument("--data-dir", default=str(DATA_DIR))
    p.add_argument("--assets-dir", default=str(ASSETS_DIR))
    p.add_argument("--log-file", default=str(LOG_DIR / f"{log_name}.log"))
    p.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    return p
