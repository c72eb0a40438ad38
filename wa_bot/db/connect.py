from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Any, Dict, Optional

from wa_bot.config import get_db_path, load_config


def default_timeout(config: Optional[Dict[str, Any]] = None) -> float:
    cfg = config or load_config()
    try:
        return float(cfg.get("database", {}).get("timeout_seconds", 5))
    except (TypeError, ValueError):
        return 5.0


def get_conn(path: Optional[Path] = None, *, timeout: Optional[float] = None) -> sqlite3.Connection:
    """Open a connection with a bounded busy timeout so lookups never hang."""
    db_path = Path(path) if path else get_db_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    con = sqlite3.connect(
        db_path,
        timeout=default_timeout() if timeout is None else float(timeout),
        check_same_thread=False,
    )
    con.row_factory = sqlite3.Row
    con.execute("PRAGMA journal_mode=WAL;")
    con.execute("PRAGMA foreign_keys=ON;")
    return con
