"""
Logging setup for PegVault.

Every module logs under the ``pegvault`` hierarchy (``pegvault.vault``,
``pegvault.oracle``, ``pegvault.ledger``, ``pegvault.chain``,
``pegvault.api``, ...).  Accepted operations log at INFO, rejected ones
at INFO/DEBUG, rollbacks of unexpected errors at WARNING and invariant
failures at ERROR.

Each emitted contract event is also logged by ``pegvault.chain`` at DEBUG
with the full record attached as ``extra={"event": {...}}``:

  - json  output carries it verbatim under ``"event"``, one object per
          line, so a log shipper sees the same audit trail as ``/events``
  - human output appends the event's fields as ``key=value`` pairs

Usage:
    from pegvault_core.logging_config import setup_logging
    setup_logging(level="DEBUG", fmt="json", log_file="pegvault.log")
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


def _event_of(record: logging.LogRecord) -> dict | None:
    event = getattr(record, "event", None)
    return event if isinstance(event, dict) else None


class _JSONFormatter(logging.Formatter):
    """One JSON object per record; contract events ride along under ``event``."""

    def format(self, record: logging.LogRecord) -> str:
        log_obj = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        event = _event_of(record)
        if event is not None:
            log_obj["event"] = event
        if record.exc_info and record.exc_info[1]:
            log_obj["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_obj, default=str)


class _HumanFormatter(logging.Formatter):
    """Coloured single line, with event fields inlined."""

    COLOURS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;31m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        colour = self.COLOURS.get(record.levelname, "")
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = (
            f"{colour}{ts} [{record.levelname:<7}]{self.RESET} "
            f"{record.name}: {record.getMessage()}"
        )
        event = _event_of(record)
        if event is not None:
            fields = event.get("fields", {})
            line += " " + " ".join(f"{k}={v}" for k, v in fields.items())
            line += f" (seq {event.get('seq')})"
        if record.exc_info and record.exc_info[1]:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(
    level: str = "INFO",
    fmt: str = "human",
    log_file: Optional[str] = None,
) -> None:
    """
    Configure the root logger for a PegVault process.

    Parameters
    ----------
    level : str
        One of DEBUG, INFO, WARNING, ERROR, CRITICAL.  Use DEBUG to see
        every contract event as it is emitted.
    fmt : str
        ``"human"`` or ``"json"`` for the console handler.
    log_file : str, optional
        Also append to this file, always as JSON so the event trail can
        be replayed or indexed.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(_JSONFormatter() if fmt == "json" else _HumanFormatter())
    root.addHandler(console)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(str(path))
        fh.setFormatter(_JSONFormatter())
        root.addHandler(fh)

    # aiohttp's per-request access log is noisy at INFO
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
