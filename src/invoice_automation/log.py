"""
Logging setup and small timing helpers shared by the pipeline stages.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Optional, TypeVar

T = TypeVar("T")

ROOT_LOGGER = "invoice_automation"

_FORMAT = "%(asctime)s %(levelname)-7s [%(name)s] %(message)s"


def configure_logging(level: int | str = logging.INFO) -> None:
    """Attach a stream handler to the package logger once; later calls only change the level."""
    logger = logging.getLogger(ROOT_LOGGER)
    if not any(getattr(h, "_invoice_automation", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(_FORMAT))
        handler._invoice_automation = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    logger.setLevel(level)


def get_logger(component: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{component}")


class Timer:
    """Wall-clock timer with named checkpoints, reported at DEBUG."""

    def __init__(self, label: str, logger: Optional[logging.Logger] = None):
        self.label = label
        self.logger = logger or get_logger("timer")
        self.start = time.perf_counter()
        self.checkpoints: list[tuple[str, int]] = []

    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self.start) * 1000)

    def checkpoint(self, name: str) -> int:
        ms = self.elapsed_ms()
        self.checkpoints.append((name, ms))
        self.logger.debug("%s: %s at %dms", self.label, name, ms)
        return ms

    def finish(self) -> int:
        ms = self.elapsed_ms()
        self.logger.debug("%s finished in %dms", self.label, ms)
        return ms


def measure_performance(
    operation: Callable[[], T],
    label: str,
    logger: Optional[logging.Logger] = None,
) -> tuple[T, int]:
    """Run `operation`, returning (result, elapsed_ms). Failures are logged and re-raised."""
    log = logger or get_logger("timer")
    start = time.perf_counter()
    try:
        result = operation()
    except Exception as e:
        ms = int((time.perf_counter() - start) * 1000)
        log.error("%s failed after %dms: %s", label, ms, e)
        raise
    ms = int((time.perf_counter() - start) * 1000)
    log.info("%s completed in %dms", label, ms)
    return result, ms
