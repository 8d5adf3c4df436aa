"""Log output for rangefuse runs: one timestamped line per record on stdout."""

from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"


def setup_logging(level: str | int = "INFO") -> None:
    """Route rangefuse records to stdout at ``level`` (name such as "DEBUG", or a number).

    Library modules only create loggers; the CLI calls this once per command
    and any handlers already on the root logger are replaced.
    Per-iteration ICP residuals appear at DEBUG, per-level and per-frame
    summaries at INFO.
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
        force=True,
    )
