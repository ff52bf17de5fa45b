"""Structured logging configuration."""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, Optional, Union

_HANDLER_NAMES = ("ewskit.console", "ewskit.file", "ewskit.errors")


def setup_logging(log_level: str = "INFO", log_dir: Union[str, Path] = "logs") -> None:
    """Configure logging.

    - Console (stderr): INFO and above
    - File (rotating): complete troubleshooting logs
    - Error file (rotating): errors only, for quick review
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    # Console handler: INFO level for monitoring
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))

    # File handler: DEBUG level for troubleshooting (with rotation)
    file_handler = RotatingFileHandler(
        log_dir / "ewskit.log",
        maxBytes=10*1024*1024,  # 10MB
        backupCount=5
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(threadName)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
    ))

    # Error file handler: ERROR level for quick error review
    error_handler = RotatingFileHandler(
        log_dir / "ewskit-errors.log",
        maxBytes=10*1024*1024,  # 10MB
        backupCount=3
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s'
    ))

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper()))
    # Replace the handlers of an earlier call instead of stacking them
    for handler in list(root_logger.handlers):
        if handler.get_name() in _HANDLER_NAMES:
            root_logger.removeHandler(handler)
            handler.close()
    console_handler.set_name("ewskit.console")
    file_handler.set_name("ewskit.file")
    error_handler.set_name("ewskit.errors")
    root_logger.addHandler(console_handler)
    root_logger.addHandler(file_handler)
    root_logger.addHandler(error_handler)

    # External library logging: WARNING to reduce noise
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)
    logging.getLogger("requests_ntlm").setLevel(logging.WARNING)

    logging.getLogger(__name__).info("Logging initialized: console=INFO, file=DEBUG, errors=ERROR")


class TraceLogger:
    """Writes raw request and response envelopes to a dedicated trace log."""

    def __init__(self, log_dir: Union[str, Path] = "logs", enabled: bool = True):
        self.enabled = enabled
        self.logger = logging.getLogger("ewskit.trace")
        self.logger.propagate = False  # Envelopes are too noisy for the root logger

        if enabled and not self.logger.handlers:
            log_dir = Path(log_dir)
            log_dir.mkdir(parents=True, exist_ok=True)
            trace_handler = RotatingFileHandler(
                log_dir / "trace.log",
                maxBytes=20*1024*1024,  # 20MB
                backupCount=10
            )
            trace_handler.setFormatter(logging.Formatter(
                '%(asctime)s | %(threadName)s | %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S'
            ))
            self.logger.addHandler(trace_handler)
        self.logger.setLevel(logging.DEBUG)

    def log_request(self, request_name: str, body: bytes) -> None:
        if not self.enabled:
            return
        self.logger.debug(f"request={request_name}\n{body.decode('utf-8', errors='replace')}")

    def log_response(
        self,
        request_name: str,
        body: bytes,
        headers: Optional[Dict[str, str]] = None
    ) -> None:
        if not self.enabled:
            return
        message = f"response={request_name}"
        if headers:
            message += f" | headers={headers}"
        self.logger.debug(f"{message}\n{body.decode('utf-8', errors='replace')}")
