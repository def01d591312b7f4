"""Logging setup shared by the CLI and the web server."""

import logging

from .config import expand_path


def setup_logging(level: str = "INFO", log_file: str | None = None) -> None:
    """
    Configure the root logger.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        log_file: Optional path; when set, records also go to this file
    """
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        log_path = expand_path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
        force=True,
    )
    # The Google client is chatty at INFO
    logging.getLogger("googleapiclient.discovery_cache").setLevel(logging.ERROR)
