"""Request contract for the extraction endpoint, independent of any web framework.

A transport (HTTP handler, queue worker, CLI) hands the decoded JSON body to
``ExtractionService.handle_post`` and sends back the returned
``(status, payload)`` pair unchanged.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Optional
from urllib.parse import urlparse

from critical_css.errors import CriticalExtractionError, ValidationError
from critical_css.models.config import ExtractorConfig
from critical_css.orchestrator import CriticalCSSExtractor

logger = logging.getLogger(__name__)

VALID_VIEWPORTS = ("mobile", "desktop", "both")


def validate_extraction_request(body: Any) -> list[str]:
    """Validate a request body and return a list of error messages."""
    if not isinstance(body, dict):
        return ["Request body must be a JSON object"]

    errors = []
    url = body.get("url")
    if not url or not isinstance(url, str):
        errors.append("URL is required and must be a string")
    else:
        parsed = urlparse(url)
        if not parsed.scheme or not parsed.netloc:
            errors.append("URL is not valid")
        elif parsed.scheme not in ("http", "https"):
            errors.append("URL must use HTTP or HTTPS protocol")

    viewport = body.get("viewport")
    if viewport is not None and viewport not in VALID_VIEWPORTS:
        errors.append("Viewport must be one of: mobile, desktop, both")

    include_shadows = body.get("includeShadows")
    if include_shadows is not None and not isinstance(include_shadows, bool):
        errors.append("includeShadows must be a boolean")

    user_agent = body.get("userAgent")
    if user_agent is not None and not isinstance(user_agent, str):
        errors.append("userAgent must be a string")

    timeout_ms = body.get("timeoutMs")
    if timeout_ms is not None and (
        isinstance(timeout_ms, bool) or not isinstance(timeout_ms, int) or timeout_ms <= 0
    ):
        errors.append("timeoutMs must be a positive integer")

    prune_fonts = body.get("pruneUnusedFonts")
    if prune_fonts is not None and not isinstance(prune_fonts, bool):
        errors.append("pruneUnusedFonts must be a boolean")

    return errors


class RateLimiter:
    """Fixed-window request counter per client key.

    Expired windows are swept at most once per window length, so clients that
    stop calling are forgotten.
    """

    def __init__(self, max_requests: int = 10, window_seconds: float = 60):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._windows: dict[str, tuple[int, float]] = {}  # key -> (count, reset_at)
        self._next_sweep = 0.0

    @property
    def tracked_clients(self) -> int:
        return len(self._windows)

    def _evict_expired(self, now: float) -> None:
        if now < self._next_sweep:
            return
        expired = [key for key, (_, reset_at) in self._windows.items() if now > reset_at]
        for key in expired:
            del self._windows[key]
        self._next_sweep = now + self.window_seconds

    def check(self, client_id: str, now: Optional[float] = None) -> bool:
        """Count a request; False once the client has used up its window."""
        now = time.time() if now is None else now
        self._evict_expired(now)
        count, reset_at = self._windows.get(client_id, (0, 0.0))
        if now > reset_at:
            self._windows[client_id] = (1, now + self.window_seconds)
            return True
        if count >= self.max_requests:
            return False
        self._windows[client_id] = (count + 1, reset_at)
        return True


class ExtractionService:
    """Maps extraction requests to response payloads and status codes."""

    def __init__(
        self,
        config: ExtractorConfig | None = None,
        extractor: CriticalCSSExtractor | None = None,
        rate_limiter: RateLimiter | None = None,
    ):
        self.config = config or ExtractorConfig()
        self.extractor = extractor or CriticalCSSExtractor(self.config)
        self.rate_limiter = rate_limiter or RateLimiter(
            self.config.rate_limit_max_requests,
            self.config.rate_limit_window_seconds,
        )

    async def handle_post(
        self, body: Any, client_id: str = "unknown"
    ) -> tuple[int, dict[str, Any]]:
        start = time.time()

        def elapsed() -> int:
            return int((time.time() - start) * 1000)

        if not self.rate_limiter.check(client_id):
            logger.warning("Rate limit exceeded for %s", client_id)
            return 429, {
                "error": "Rate limit exceeded. Please try again later.",
                "processingTime": elapsed(),
            }

        errors = validate_extraction_request(body)
        if errors:
            return 400, {
                "error": "Invalid request", "details": errors,
                "processingTime": elapsed(),
            }

        url = body["url"]
        viewport = body.get("viewport") or "both"
        include_shadows = body.get("includeShadows", False)
        user_agent = body.get("userAgent")
        timeout_ms = body.get("timeoutMs")
        prune_fonts = body.get("pruneUnusedFonts", False)

        try:
            if viewport == "both":
                dual = await self.extractor.extract_for_both_viewports(
                    url,
                    timeout_ms=timeout_ms,
                    include_shadows=include_shadows,
                    user_agent=user_agent,
                    prune_unused_fonts=prune_fonts,
                )
                processing_time = elapsed()
                logger.info("Extraction completed for %s in %dms", url, processing_time)
                return 200, {
                    "success": True,
                    "url": url,
                    "viewport": "both",
                    "mobile": {
                        "css": dual.mobile.critical_css,
                        "size": dual.mobile.size,
                        "extractionTime": dual.mobile.extraction_time,
                    },
                    "desktop": {
                        "css": dual.desktop.critical_css,
                        "size": dual.desktop.size,
                        "extractionTime": dual.desktop.extraction_time,
                    },
                    "combined": {
                        "css": dual.combined_css,
                        "size": dual.combined_size,
                    },
                    "processingTime": processing_time,
                }

            options = self.extractor.options_for(
                url, viewport,
                timeout_ms=timeout_ms,
                include_shadows=include_shadows,
                user_agent=user_agent,
                prune_unused_fonts=prune_fonts,
            )
            result = await self.extractor.extract_critical_css(options)
            validation = self.extractor.validate_extraction(result)
            processing_time = elapsed()
            logger.info("Extraction completed for %s (%s) in %dms: %d bytes",
                        url, viewport, processing_time, result.size)
            return 200, {
                "success": True,
                "url": url,
                "viewport": viewport,
                "css": result.critical_css,
                "size": result.size,
                "extractionTime": result.extraction_time,
                "validation": {
                    "isValid": validation.is_valid,
                    "errors": validation.errors,
                    "warnings": validation.warnings,
                },
                "processingTime": processing_time,
            }

        except ValidationError as e:
            return 400, {
                "error": "Validation error", "message": e.message,
                "processingTime": elapsed(),
            }
        except CriticalExtractionError as e:
            logger.error("Extraction failed for %s after %dms: %s", url, elapsed(), e)
            return 500, {
                "error": "Extraction failed", "message": e.message,
                "processingTime": elapsed(),
            }
        except Exception:
            logger.exception("Unexpected error extracting %s", url)
            return 500, {
                "error": "Internal server error",
                "message": "An unexpected error occurred",
                "processingTime": elapsed(),
            }

    def handle_get(self) -> tuple[int, dict[str, Any]]:
        return 405, {
            "error": "Method not allowed",
            "message": "Please use POST to extract critical CSS",
        }

    async def close(self) -> None:
        await self.extractor.close()
