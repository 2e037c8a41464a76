# common/logging.py
from __future__ import annotations
import logging, os
from logging.handlers import RotatingFileHandler
from typing import Optional

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}

_FORMAT = "%(asctime)s %(levelname)s %(name)s - %(message)s"
_DATEFMT = "%Y-%m-%dT%H:%M:%S%z"

def _level_from_env(default: str = "INFO") -> int:
    env = os.getenv("LOG_LEVEL", default).upper()
    return _LEVELS.get(env, logging.INFO)

def resolve_level(level: Optional[str]) -> int:
    if level:
        return _LEVELS.get(level.upper(), _level_from_env())
    return _level_from_env()

def get_logger(name: str, log_dir: Optional[str] = None, level: Optional[str] = None,
               to_file: bool = True) -> logging.Logger:
    """
    Creates a logger that writes to:
      - stdout (console)
      - <log_dir>/<name>.log (rotating: 5MB x 5 files), unless to_file=False

    log_dir defaults to $LOG_DIR, then "logs".
    Idempotent: calling twice returns the same configured logger.

    Services call this for their own name and for the "batching" package so the
    engine's module loggers (batching.accumulator, ...) propagate into it.
    """
    logger = logging.getLogger(name)
    if logger.handlers:  # already configured
        return logger

    log_level = resolve_level(level)
    fmt = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)

    if to_file:
        log_dir = log_dir or os.getenv("LOG_DIR", "logs")
        os.makedirs(log_dir, exist_ok=True)
        fh = RotatingFileHandler(
            filename=os.path.join(log_dir, f"{name}.log"),
            maxBytes=5_000_000,
            backupCount=5,
            encoding="utf-8",
        )
        fh.setFormatter(fmt)
        fh.setLevel(log_level)
        logger.addHandler(fh)

    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    ch.setLevel(log_level)
    logger.addHandler(ch)

    logger.setLevel(log_level)
    logger.propagate = False
    return logger
