"""
Logging Utilities for the Hourly Sepsis Dataset Pipeline

This module provides a nested stage logger used by every step of the pipeline
to track which stage is running and how long it takes.

The NestedLogger class indents its output by the current stage depth, making it
easy to follow the cohort -> reducers -> merger -> labels -> assembler chain for
each batch of ICU stays and to spot slow stages.

Features:
- Automatic indentation based on stage nesting depth
- Timestamp logging for performance monitoring
- Simple start/end logging pattern for stages
- Indented informational lines for row counts and dropped rows

Messages are emitted through the standard ``logging`` module under the
``sepsis_processing`` logger so that the CLI (or a notebook) decides where
they go.
"""
import logging
from datetime import datetime

LOGGER_NAME = "sepsis_processing"


class NestedLogger:
    """
    A logger that indents messages to visualize stage nesting.

    Each ``log_start`` increases the indentation and each ``log_end`` decreases
    it, so nested stages appear as a tree in the log output.

    Attributes:
        _nesting_level (int): Current indentation level (0 = no indentation)
        _logger (logging.Logger): Underlying standard library logger
    """

    def __init__(self, name: str = LOGGER_NAME):
        """Initialize the logger with zero nesting level."""
        self._nesting_level = 0
        self._logger = logging.getLogger(name)

    def _get_timestamp(self) -> str:
        """
        Get formatted timestamp with millisecond precision.

        Returns:
            str: Timestamp in format 'HH:MM:SS.mmm'
        """
        return datetime.now().strftime('%H:%M:%S.%f')[:-3]

    def _get_indent(self) -> str:
        """
        Get indentation string based on current nesting level.

        Returns:
            str: String of spaces (4 spaces per nesting level)
        """
        return "    " * self._nesting_level

    def log_start(self, stage_name: str) -> None:
        """
        Log the start of a stage and increase the nesting level.

        Args:
            stage_name (str): Name of the stage being started

        Example output:
            10:30:45.123 Started run_pipeline
                10:30:45.124 Started build_cohort
        """
        self._logger.info(f"{self._get_indent()}{self._get_timestamp()} Started {stage_name}")
        self._nesting_level += 1

    def log_end(self, stage_name: str) -> None:
        """
        Decrease the nesting level and log the end of a stage.

        Args:
            stage_name (str): Name of the stage being completed
        """
        if self._nesting_level > 0:
            self._nesting_level -= 1

        self._logger.info(f"{self._get_indent()}{self._get_timestamp()} Finished {stage_name}")

    def info(self, message: str) -> None:
        """Log an informational line at the current nesting level."""
        self._logger.info(f"{self._get_indent()}{message}")

    def warning(self, message: str) -> None:
        """Log a warning line at the current nesting level."""
        self._logger.warning(f"{self._get_indent()}{message}")


# Shared instance so nesting state is consistent across modules of one process
logger = NestedLogger()
