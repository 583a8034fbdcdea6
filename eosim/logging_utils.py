from __future__ import annotations

import logging

_FMT = "%(asctime)s | %(levelname)s | %(name)s | it=%(iteration)s unit=%(unit)s | %(message)s"
_DATE = "%Y-%m-%d %H:%M:%S"


class _SolveContext(logging.Filter):
    def filter(self, record):
        if not hasattr(record, "iteration"):
            record.iteration = "-"
        if not hasattr(record, "unit"):
            record.unit = "-"
        return True


def setup_logging(level: int | str = logging.INFO, *, logger_name: str = "eosim") -> logging.Logger:
    """Attach one stream handler to the package logger (idempotent)."""
    if isinstance(level, str):
        lvl = logging.getLevelName(level.upper())
        level = lvl if isinstance(lvl, int) else logging.INFO
    log = logging.getLogger(logger_name)
    for h in list(log.handlers):
        if getattr(h, "_eosim_handler", False):
            log.removeHandler(h)
    log.setLevel(level)
    h = logging.StreamHandler()
    h.setFormatter(logging.Formatter(_FMT, _DATE))
    h.addFilter(_SolveContext())
    h._eosim_handler = True
    log.addHandler(h)
    return log
