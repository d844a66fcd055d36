from __future__ import annotations

import logging
from pathlib import Path

from .records import MeasurementRecord

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
RECORD_LOGGER = "cadence.records"


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )


def configure_logger(log_path: Path) -> logging.Logger:
    """File logger receiving one line per measurement record."""
    log_path.parent.mkdir(parents=True, exist_ok=True)
    logger = logging.getLogger(RECORD_LOGGER)
    logger.setLevel(logging.INFO)
    logger.propagate = False

    handler = logging.FileHandler(log_path, mode="w", encoding="utf-8")
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(message)s")
    handler.setFormatter(formatter)

    close_logger(logger)
    logger.addHandler(handler)
    return logger


def close_logger(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)


def format_record(record: MeasurementRecord) -> str:
    lines = [f"{record.display_name} thread={record.thread_index} duration_s={record.duration_s:.6f}"]
    if record.error is not None:
        lines.append(f"  error: {record.error.type_name}: {record.error.message}")
    for result in record.policy_results:
        status = "pass" if result.passed else "FAIL"
        lines.append(f"  {result.policy.kind}: {status} ({result.detail})")
    return "\n".join(lines)


def record_logger(logger: logging.Logger):
    """Return a scheduler listener writing each record to ``logger``."""

    def _listener(record: MeasurementRecord) -> None:
        level = logging.WARNING if record.error is not None or not record.requirements_met else logging.INFO
        logger.log(level, format_record(record))

    return _listener


__all__ = [
    "LOG_FORMAT",
    "RECORD_LOGGER",
    "close_logger",
    "configure_logger",
    "format_record",
    "record_logger",
    "setup_logging",
]
