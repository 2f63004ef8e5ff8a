from __future__ import annotations

import logging
from pathlib import Path

from selfheal.config.schema import LoggingConfig
from selfheal.utils.identity import sanitize_selector

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def configure_logging(config: LoggingConfig) -> logging.Logger:
    """Attaches console and optional file handlers to the package logger."""

    logger = logging.getLogger("selfheal")
    logger.setLevel(config.level.upper())
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT, DATE_FORMAT)
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    logger.addHandler(console)

    if config.to_file and config.file_path:
        log_path = Path(config.file_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    return logger


class HealingAuditLogger:
    """Emits one log line per healing event; long locators are shortened."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger("selfheal.healing")

    def attempt(self, locator: str, attempt: int, max_attempts: int) -> None:
        self.logger.info("Healing attempt %d/%d for selector: %s", attempt, max_attempts, sanitize_selector(locator))

    def cache_hit(self, locator: str, healed: str) -> None:
        self.logger.info("Reused cached alternative for %s: %s", sanitize_selector(locator), sanitize_selector(healed))

    def success(self, original: str, healed: str, confidence: float | None) -> None:
        original, healed = sanitize_selector(original), sanitize_selector(healed)
        if confidence is None:
            self.logger.info("Healed %s -> %s", original, healed)
            return
        self.logger.info("Healed %s -> %s (confidence: %.1f%%)", original, healed, confidence * 100)

    def failure(self, original: str, attempts: int, reason: str) -> None:
        self.logger.warning("Failed to heal %s after %d attempts (%s)", sanitize_selector(original), attempts, reason)

    def suggestion(self, original: str, healed: str) -> None:
        self.logger.warning(
            "Manual mode: %s could be replaced with %s", sanitize_selector(original), sanitize_selector(healed)
        )
