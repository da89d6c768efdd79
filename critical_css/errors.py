"""Extraction error taxonomy."""

from __future__ import annotations

from typing import Optional


class CriticalExtractionError(Exception):
    """Base class for every failure raised by the extraction pipeline."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause


class ValidationError(CriticalExtractionError):
    """Malformed input: bad URL, unsupported viewport or wrong option type."""


class ExtractionTimeoutError(CriticalExtractionError):
    """Navigation or the overall pipeline deadline was exceeded."""


class NetworkError(CriticalExtractionError):
    """Connection-level failure reported by the browser during navigation."""


class RenderingError(CriticalExtractionError):
    """Any other failure while loading or evaluating the page."""
