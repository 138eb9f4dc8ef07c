from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

PROJECT_DIR = Path(__file__).resolve().parents[2]
DATA_DIR = Path(os.getenv("TICKLE_DATA_DIR", str(PROJECT_DIR / "data")))
ASSETS_DIR = Path(os.getenv("TICKLE_ASSETS_DIR", str(PROJECT_DIR / "assets")))
LOG_DIR = Path(os.getenv("TICKLE_LOG_DIR", str(DATA_DIR / "logs")))

STOCKS_FILE = "stocks.json"
DAILY_FILE = "daily.json"
SNAPSHOTS_DIR = "snapshots"


def stocks_path(data_dir: Path | str = DATA_DIR) -> Path:
    return Path(data_dir) / STOCKS_FILE


def daily_path(data_dir: Path | str = DATA_DIR) -> Path:
    return Path(data_dir) / DAILY_FILE


def snapshots_dir(data_dir: Path | str = DATA_DIR) -> Path:
    return Path(data_dir) / SNAPSHOTS_DIR


def logos_dir(assets_dir: Path | str = ASSETS_DIR) -> Path:
    return Path(assets_dir) / "logos"


def read_json(path: Path) -> Any:
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


def write_json_atomic(path: Path, obj: Any) -> None:
    """Write ``obj`` as pretty JSON via a temp file in the same directory and rename it."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(obj, f, indent=2)
            f.write("\n")
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


def write_bytes_atomic(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise
