"""Extraction orchestrator — composes rendering, analysis and the rule engine."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional
from urllib.parse import urlparse

from critical_css.errors import (
    CriticalExtractionError,
    ExtractionTimeoutError,
    RenderingError,
    ValidationError,
)
from critical_css.models.config import ExtractorConfig, ViewportProfile
from critical_css.models.extraction import (
    DualViewportResult,
    ExtractionMetrics,
    ExtractionOptions,
    ExtractionResult,
    ValidationReport,
)
from critical_css.renderer.dom_analyzer import above_fold_selectors, used_font_families
from critical_css.renderer.session import RenderingSessionManager
from critical_css.rules.pipeline import combine_rule_sets, process_css

logger = logging.getLogger(__name__)


def validate_url(url: str) -> None:
    """Raise ValidationError unless ``url`` is an absolute http(s) URL."""
    if not url or not isinstance(url, str):
        raise ValidationError("URL is required and must be a string")
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise ValidationError(f"URL must use HTTP or HTTPS protocol: {url}")
    if not parsed.netloc:
        raise ValidationError(f"URL is not valid: {url}")


class CriticalCSSExtractor:
    """Extracts above-the-fold CSS for one or both canonical viewports."""

    def __init__(
        self,
        config: ExtractorConfig | None = None,
        session_manager: RenderingSessionManager | None = None,
    ):
        self.config = config or ExtractorConfig()
        self.sessions = session_manager or RenderingSessionManager(self.config)

    def options_for(
        self,
        url: str,
        viewport: ViewportProfile | str,
        timeout_ms: Optional[int] = None,
        include_shadows: bool = False,
        user_agent: Optional[str] = None,
        prune_unused_fonts: bool = False,
    ) -> ExtractionOptions:
        """Build ExtractionOptions, resolving preset names and defaults."""
        if isinstance(viewport, str):
            try:
                viewport = self.config.viewport(viewport)
            except KeyError as e:
                raise ValidationError(f"Unsupported viewport: {viewport}", e) from e
        return ExtractionOptions(
            url=url,
            viewport=viewport,
            timeout_ms=timeout_ms or self.config.performance.default_timeout_ms,
            include_shadows=include_shadows,
            user_agent=user_agent,
            prune_unused_fonts=prune_unused_fonts,
        )

    async def extract_critical_css(self, options: ExtractionOptions) -> ExtractionResult:
        """Run the full pipeline for one viewport under a hard deadline."""
        validate_url(options.url)
        if options.timeout_ms <= 0:
            raise ValidationError(f"Timeout must be positive, got {options.timeout_ms}")

        deadline = asyncio.get_running_loop().time() + options.timeout_ms / 1000
        try:
            return await asyncio.wait_for(
                self._extract(options, deadline), timeout=options.timeout_ms / 1000,
            )
        except asyncio.TimeoutError as e:
            logger.error(
                "Extraction of %s (%s) exceeded %dms",
                options.url, options.viewport.name, options.timeout_ms,
            )
            raise ExtractionTimeoutError(
                f"Extraction timed out after {options.timeout_ms}ms for {options.url}", e,
            ) from e

    async def _extract(self, options: ExtractionOptions, deadline: float) -> ExtractionResult:
        start = time.time()
        viewport = options.viewport
        logger.info("=== Extracting critical CSS for %s (%s %s) ===",
                    options.url, viewport.name, viewport.key)

        try:
            async with self.sessions.session(options.url, viewport, options) as session:
                # Stage 1: load and stabilize within what is left of the deadline
                remaining_ms = int((deadline - asyncio.get_running_loop().time()) * 1000)
                await self.sessions.load_page(session, options.url, max(remaining_ms, 1))

                # Stage 2: above-fold analysis on the stable page
                snapshots = await session.analyzer.snapshot_elements()
                selectors = above_fold_selectors(snapshots)
                fonts = used_font_families(snapshots)
                logger.info("--- %d above-fold selectors, %d font families ---",
                            len(selectors), len(fonts))

                # Stage 3: raw CSS from the same snapshot
                raw_css = await self.sessions.extract_raw_css(session)
                entries = session.detector.entries
                content_settled = session.content_settled
        except CriticalExtractionError:
            raise
        except Exception as e:
            raise RenderingError(f"Extraction failed for {options.url}: {e}", e) from e

        # Stage 4: rule engine
        processed = process_css(
            raw_css,
            selectors,
            include_shadows=options.include_shadows,
            excluded_properties=self.config.excluded_properties,
            shadow_properties=self.config.shadow_properties,
            used_fonts=fonts if options.prune_unused_fonts else None,
        )

        elapsed_ms = round((time.time() - start) * 1000, 1)
        size = len(processed.css.encode("utf-8"))
        logger.info("=== %s (%s): %d bytes of critical CSS in %.0fms ===",
                    options.url, viewport.name, size, elapsed_ms)

        return ExtractionResult(
            critical_css=processed.css,
            size=size,
            extraction_time=elapsed_ms,
            viewport=viewport,
            url=options.url,
            metrics=ExtractionMetrics(
                lcp_time=entries[-1].render_time if entries else None,
                paint_entries=len(entries),
                total_elements=len(snapshots),
                above_fold_elements=sum(1 for s in snapshots if s.is_above_fold),
                css_rules=processed.parsed_rules,
                filtered_rules=len(processed.rules),
                used_fonts=fonts,
                content_settled=content_settled,
            ),
            rules=processed.rules,
        )

    async def extract_for_both_viewports(
        self,
        url: str,
        timeout_ms: Optional[int] = None,
        include_shadows: bool = False,
        user_agent: Optional[str] = None,
        prune_unused_fonts: bool = False,
    ) -> DualViewportResult:
        """Extract for mobile and desktop, plus a mobile-first combined stylesheet."""
        validate_url(url)
        common = dict(
            timeout_ms=timeout_ms,
            include_shadows=include_shadows,
            user_agent=user_agent,
            prune_unused_fonts=prune_unused_fonts,
        )
        tasks = [
            asyncio.ensure_future(self.extract_critical_css(self.options_for(url, name, **common)))
            for name in ("mobile", "desktop")
        ]
        try:
            mobile, desktop = await asyncio.gather(*tasks)
        except BaseException:
            # One viewport failed: stop the other and release its session first.
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        combined = combine_rule_sets(mobile.rules, desktop.rules)
        logger.info(
            "Combined CSS for %s: mobile %d + desktop %d -> %d bytes",
            url, mobile.size, desktop.size, len(combined.encode("utf-8")),
        )
        return DualViewportResult(
            url=url,
            mobile=mobile,
            desktop=desktop,
            combined_css=combined,
            combined_size=len(combined.encode("utf-8")),
        )

    def validate_extraction(self, result: ExtractionResult) -> ValidationReport:
        """Check an extraction result; never raises."""
        errors: list[str] = []
        warnings: list[str] = []

        if not result.critical_css or not result.critical_css.strip():
            errors.append("Extracted critical CSS is empty")

        limit = self.config.max_recommended_size
        if result.size > limit:
            warnings.append(
                f"Critical CSS size ({result.size} bytes) exceeds recommended "
                f"limit of {limit} bytes"
            )

        return ValidationReport(is_valid=not errors, errors=errors, warnings=warnings)

    async def close(self) -> None:
        """Release every session and the browser owned by this extractor."""
        await self.sessions.close_all()

    async def __aenter__(self) -> "CriticalCSSExtractor":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
