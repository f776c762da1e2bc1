"""Process-wide logging for the ``socketit`` command.

Records always go to stderr.  Given a ``log_dir``, they are also written to
``<log_dir>/<component>.log``, rotated at 5 MB with five backups::

    2026-03-02T10:00:00.123Z [INFO    ] socketit.server: Peer connected (total=1)
"""

from __future__ import annotations

import logging
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path

_FMT = "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s"


class _UtcFormatter(logging.Formatter):
    converter = time.gmtime

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        stamp = time.strftime("%Y-%m-%dT%H:%M:%S", self.converter(record.created))
        return f"{stamp}.{int(record.msecs):03d}Z"


def init(component: str, log_dir: Path | None = None, *, level: str = "INFO") -> None:
    """Replace the root handlers for a ``serve``, ``call`` or ``publish`` run."""
    formatter = _UtcFormatter(_FMT)
    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(
                log_dir / f"{component}.log",
                maxBytes=5 * 1024 * 1024,
                backupCount=5,
                encoding="utf-8",
            )
        )

    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)
