"""Logging setup and envelope tracing."""

from .logging import TraceLogger, setup_logging

__all__ = ["setup_logging", "TraceLogger"]
