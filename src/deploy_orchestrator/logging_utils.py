"""Logging helpers for deployment runs."""

from __future__ import annotations

import logging
from pathlib import Path


class DeployNarrativeFilter(logging.Filter):
    """Keeps the run log file to warnings plus the ``DEPLOY:`` narrative lines."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if record.levelno >= logging.WARNING:
            return True
        return str(record.msg).startswith("DEPLOY:")


def configure_logging(level: int = logging.INFO, log_path: str | None = None) -> None:
    """Configure default logging if no handlers are present."""
    root = logging.getLogger()
    if root.handlers:
        return
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_path:
        path = Path(log_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.addFilter(DeployNarrativeFilter())
        handlers.append(file_handler)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers,
    )
    # web3/urllib3 debug chatter would otherwise drown the deploy narrative.
    for noisy in ("web3", "urllib3"):
        logging.getLogger(noisy).setLevel(max(level, logging.WARNING))
