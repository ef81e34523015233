"""Environment and utility functions."""

import logging
import os
import sys

from ..config import (
    DEFAULT_OLLAMA_HOST,
    DEFAULT_OLLAMA_MODEL,
    LOG_DATE_FORMAT,
    LOG_FORMAT,
    OLLAMA_HOST_KEY,
    OLLAMA_MODEL_KEY,
)

# Default log file location
DEFAULT_LOG_FILE = "lumiscan.log"


def setup_logging(level: int = logging.INFO, log_file: str | None = DEFAULT_LOG_FILE) -> None:
    """Set up logging configuration.

    Logs are written to both console (stderr) and a file.

    Args:
        level: Logging level
        log_file: Path to log file (None to disable file logging)
    """
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]

    if log_file:
        try:
            file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
            handlers.append(file_handler)
        except OSError as e:
            # Fall back to console-only if file logging fails
            print(f"Warning: Could not open log file '{log_file}': {e}", file=sys.stderr)

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=LOG_DATE_FORMAT,
        handlers=handlers,
        force=True  # Replace any existing handlers
    )


def load_advisor_settings() -> dict[str, str]:
    """Read Ollama host and model from the environment.

    Returns:
        Dict with 'ollama_host' and 'ollama_model', falling back to defaults
    """
    return {
        "ollama_host": os.getenv(OLLAMA_HOST_KEY) or DEFAULT_OLLAMA_HOST,
        "ollama_model": os.getenv(OLLAMA_MODEL_KEY) or DEFAULT_OLLAMA_MODEL,
    }
