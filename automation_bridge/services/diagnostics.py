"""Diagnostics sink for navigation and injection telemetry."""

import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)

URL_LOG_LIMIT = 100
DATA_LOG_LIMIT = 1000


def truncate(value: Any, max_length: int = URL_LOG_LIMIT) -> str:
    """Shorten a value for log output.

    Args:
        value: Value to render (None renders as 'None')
        max_length: Maximum number of characters kept

    Returns:
        String no longer than ``max_length`` plus an ellipsis marker
    """
    text = str(value)
    if len(text) <= max_length:
        return text
    return f"{text[:max_length]}... ({len(text)} chars)"


class DiagnosticsSink:
    """Receiver for bridge telemetry. All hooks are no-ops by default."""

    def navigation_started(self, surface: str, url: str) -> None:
        pass

    def navigation_succeeded(self, surface: str, url: str, duration: Optional[float]) -> None:
        pass

    def navigation_failed(self, surface: str, url: str, error: str) -> None:
        pass

    def injection_attempt(self, command_id: str, attempt: int, reason: str) -> None:
        pass

    def injection_resolved(self, command_id: str, success: bool, outcome: str, error: Optional[str]) -> None:
        pass

    def message_quarantined(self, reason: str, payload: Any) -> None:
        pass


class LoggingDiagnostics(DiagnosticsSink):
    """Diagnostics sink that writes to the standard logger."""

    def navigation_started(self, surface: str, url: str) -> None:
        logger.debug(f"[NAV] {surface} started: {truncate(url)}")

    def navigation_succeeded(self, surface: str, url: str, duration: Optional[float]) -> None:
        took = f" in {duration:.2f}s" if duration is not None else ""
        logger.info(f"[NAV] {surface} finished{took}: {truncate(url)}")

    def navigation_failed(self, surface: str, url: str, error: str) -> None:
        logger.error(f"[NAV] {surface} failed: {truncate(url)} - {error}")

    def injection_attempt(self, command_id: str, attempt: int, reason: str) -> None:
        logger.debug(f"[INJECT] {command_id} retry {attempt}: {reason}")

    def injection_resolved(self, command_id: str, success: bool, outcome: str, error: Optional[str]) -> None:
        if success:
            logger.info(f"[INJECT] {command_id} resolved ({outcome})")
        else:
            logger.error(f"[INJECT] {command_id} failed ({outcome}): {error}")

    def message_quarantined(self, reason: str, payload: Any) -> None:
        logger.warning(f"[CHANNEL] Quarantined message: {reason} - {truncate(payload, DATA_LOG_LIMIT)}")
