"""Console and file logging for migration runs."""

from __future__ import annotations

import logging
import os

LOG_FILE = os.path.join("reports", "migration", "migration.log")
_FORMAT = "[%(levelname)s] %(message)s"


def configure_logging(verbose: bool = False, log_file: str | None = LOG_FILE) -> None:
    """Send package logs to stdout and append them to ``log_file``."""
    root = logging.getLogger("blog_migrator")
    root.setLevel(logging.DEBUG if verbose else logging.INFO)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter(_FORMAT))
    root.addHandler(console)

    if log_file:
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        root.addHandler(file_handler)
