"""Rendering sessions — one shared browser, one isolated context per request."""

from __future__ import annotations

import asyncio
import itertools
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from playwright.async_api import (
    Browser,
    BrowserContext,
    CDPSession,
    Page,
    Playwright,
    async_playwright,
)
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from critical_css.errors import (
    CriticalExtractionError,
    ExtractionTimeoutError,
    NetworkError,
    RenderingError,
)
from critical_css.models.config import ExtractorConfig, PerformanceConfig, ViewportProfile
from critical_css.models.extraction import ExtractionOptions, PageMetrics

from .browser import apply_throttling, create_context, launch_browser
from .dom_analyzer import DomAnalyzer
from .paint_observer import PaintStabilizationDetector

logger = logging.getLogger(__name__)

# Seconds allowed for closing a context before giving up on it.
CLOSE_TIMEOUT = 5.0

_RAW_CSS_SCRIPT = """() => {
    const chunks = [];
    for (const sheet of Array.from(document.styleSheets)) {
        let css = '';
        try {
            // cssRules also holds rules added through insertRule.
            for (const rule of Array.from(sheet.cssRules || [])) css += rule.cssText + '\\n';
        } catch (e) {
            // Cross-origin sheets are not readable.
        }
        const owner = sheet.ownerNode;
        if (!css.trim() && owner && owner.tagName && owner.tagName.toLowerCase() === 'style') {
            css = owner.textContent || '';
        }
        if (!css.trim()) continue;
        chunks.push({media: sheet.media ? sheet.media.mediaText : '', css: css});
    }
    return chunks;
}"""


def assemble_stylesheets(chunks: list[dict] | None) -> str:
    """Join per-sheet CSS, wrapping sheets with a media attribute in ``@media``."""
    parts = []
    for chunk in chunks or []:
        css = (chunk.get("css") or "").strip()
        if not css:
            continue
        media = (chunk.get("media") or "").strip()
        if media and media.lower() != "all":
            css = f"@media {media} {{\n{css}\n}}"
        parts.append(css)
    return "\n".join(parts)


def stage_budgets(remaining_ms: float, performance: PerformanceConfig) -> tuple[int, int]:
    """Split what is left of a request deadline into (paint, settle) wait budgets.

    A share is held back for DOM analysis and CSS collection, so a page that
    never stops painting degrades to its known entries instead of running
    into the request deadline.
    """
    remaining_ms = max(remaining_ms, 0)
    reserve = min(performance.analysis_reserve_ms, remaining_ms * 0.2)
    settle = min(performance.settle_timeout_ms, remaining_ms * 0.2)
    return int(max(remaining_ms - reserve - settle, 0)), int(settle)


def classify_error(error: BaseException, url: str) -> CriticalExtractionError:
    """Map a raw browser-layer failure onto the extraction error taxonomy."""
    if isinstance(error, CriticalExtractionError):
        return error
    message = str(error)
    if isinstance(error, (PlaywrightTimeoutError, asyncio.TimeoutError)) \
            or "timeout" in message.lower():
        return ExtractionTimeoutError(f"Page load timeout for {url}", error)
    if "net::ERR_" in message:
        return NetworkError(f"Network error loading {url}: {message}", error)
    return RenderingError(f"Failed to load page {url}: {message}", error)


class RenderingSession:
    """Live handles for one extraction: context, page, detector and analyzer."""

    def __init__(
        self,
        key: str,
        url: str,
        viewport: ViewportProfile,
        context: BrowserContext,
        page: Page,
        cdp: CDPSession,
        detector: PaintStabilizationDetector,
        analyzer: DomAnalyzer,
    ):
        self.key = key
        self.url = url
        self.viewport = viewport
        self.context = context
        self.page = page
        self.cdp = cdp
        self.detector = detector
        self.analyzer = analyzer
        self.content_settled = False
        self.closed = False


class RenderingSessionManager:
    """Owns the browser process and every open browsing context.

    The browser starts lazily on the first session. A semaphore bounds how
    many contexts render at once; each session holds one slot from creation
    until it is closed.
    """

    def __init__(self, config: ExtractorConfig | None = None):
        self.config = config or ExtractorConfig()
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._browser_lock = asyncio.Lock()
        self._slots = asyncio.Semaphore(self.config.max_concurrent_contexts)
        self._sessions: dict[str, RenderingSession] = {}
        self._session_ids = itertools.count(1)

    @property
    def open_sessions(self) -> list[RenderingSession]:
        return list(self._sessions.values())

    async def _ensure_browser(self) -> Browser:
        async with self._browser_lock:
            if self._browser is None:
                logger.debug("Launching Chromium (headless=%s)...", self.config.headless)
                self._playwright = await async_playwright().start()
                self._browser = await launch_browser(
                    self._playwright, headless=self.config.headless,
                )
            return self._browser

    async def create_session(
        self,
        url: str,
        viewport: ViewportProfile,
        options: ExtractionOptions | None = None,
    ) -> RenderingSession:
        """Open a throttled, isolated context and page for ``url`` at ``viewport``."""
        perf = self.config.performance
        timeout_ms = options.timeout_ms if options else perf.default_timeout_ms
        user_agent = options.user_agent if options else None
        # Per request, so sessions for the same URL and viewport coexist.
        key = f"{url}-{viewport.key}-{next(self._session_ids)}"

        await self._slots.acquire()
        context: BrowserContext | None = None
        try:
            browser = await self._ensure_browser()
            context = await create_context(browser, viewport, user_agent=user_agent)
            page = await context.new_page()
            cdp = await apply_throttling(context, page, perf)
        except Exception as e:
            if context is not None:
                await self._close_context(context)
            self._slots.release()
            raise RenderingError(f"Failed to create rendering session for {url}", e) from e

        page.on("pageerror", lambda err: logger.warning("Page error: %s", err))
        page.on("requestfailed", lambda req: logger.debug(
            "Request failed: %s (%s)", req.url, req.failure,
        ))

        session = RenderingSession(
            key=key,
            url=url,
            viewport=viewport,
            context=context,
            page=page,
            cdp=cdp,
            detector=PaintStabilizationDetector(
                page,
                stabilization_delay_ms=perf.lcp_stabilization_delay_ms,
                fallback_ms=perf.lcp_fallback_ms,
                poll_interval_ms=perf.poll_interval_ms,
                timeout_ms=timeout_ms,
            ),
            analyzer=DomAnalyzer(
                page,
                viewport,
                buffer_px=perf.above_fold_buffer_px,
                settle_quiet_ms=perf.settle_quiet_ms,
                settle_timeout_ms=perf.settle_timeout_ms,
            ),
        )
        self._sessions[key] = session
        logger.debug("Session opened: %s (%d open)", key, len(self._sessions))
        return session

    async def load_page(
        self, session: RenderingSession, url: str, timeout_ms: int | None = None,
    ) -> None:
        """Navigate, wait for paint stability, then for DOM quiescence.

        ``timeout_ms`` is the time left for the whole extraction. Navigation
        may use all of it; whatever remains afterwards is split by
        :func:`stage_budgets` so the bounded waits end before the deadline.
        Failures are classified into the extraction error taxonomy and the
        session is closed before the error propagates.
        """
        perf = self.config.performance
        timeout = timeout_ms or perf.default_timeout_ms
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout / 1000
        try:
            logger.info("Loading %s (%s, timeout %dms)", url, session.viewport.name, timeout)
            await session.page.goto(url, wait_until="domcontentloaded", timeout=timeout)

            paint_ms, settle_ms = stage_budgets((deadline - loop.time()) * 1000, perf)
            session.detector.timeout_ms = paint_ms
            logger.debug("Wait budgets for %s: paint %dms, settle %dms",
                         session.key, paint_ms, settle_ms)

            entries = await session.detector.wait_for_stabilization()
            logger.debug("Paint stabilized with %d LCP entries", len(entries))

            session.content_settled = await session.analyzer.wait_for_content_settle(
                timeout_ms=settle_ms,
            )
            if not session.content_settled:
                logger.warning("Content settle window expired for %s, continuing", url)
        except Exception as e:
            error = classify_error(e, url)
            logger.error("Loading %s failed: %s", url, error)
            await self.close(session)
            raise error from e

    async def extract_raw_css(self, session: RenderingSession) -> str:
        """All readable CSS on the page, in stylesheet order."""
        css = assemble_stylesheets(await session.page.evaluate(_RAW_CSS_SCRIPT))
        logger.debug("Collected %d chars of raw CSS", len(css))
        return css

    async def get_metrics(self, session: RenderingSession) -> PageMetrics:
        """Paint timings plus viewport info, for diagnostics."""
        metrics = await session.detector.get_metrics()
        try:
            metrics.viewport = await session.analyzer.get_viewport_info()
        except Exception as e:
            logger.debug("Viewport info unavailable: %s", e)
        return metrics

    @asynccontextmanager
    async def session(
        self,
        url: str,
        viewport: ViewportProfile,
        options: ExtractionOptions | None = None,
    ) -> AsyncIterator[RenderingSession]:
        """Scoped session: closed on every exit path."""
        session = await self.create_session(url, viewport, options)
        try:
            yield session
        finally:
            await self.close(session)

    async def _close_context(self, context: BrowserContext) -> None:
        try:
            await asyncio.wait_for(context.close(), timeout=CLOSE_TIMEOUT)
        except Exception as e:
            logger.warning("Closing browser context failed: %s", e)

    async def close(self, session: RenderingSession) -> None:
        """Close one session. Safe to call more than once."""
        if session.closed:
            return
        session.closed = True
        if self._sessions.get(session.key) is session:
            del self._sessions[session.key]
        try:
            await asyncio.wait_for(session.detector.cleanup(), timeout=CLOSE_TIMEOUT)
        except asyncio.TimeoutError:
            logger.debug("Observer cleanup timed out for %s", session.key)
        await self._close_context(session.context)
        self._slots.release()
        logger.debug("Session closed: %s (%d open)", session.key, len(self._sessions))

    async def close_all(self) -> None:
        """Close every open session, then the browser and the driver."""
        for session in list(self._sessions.values()):
            await self.close(session)

        async with self._browser_lock:
            if self._browser is not None:
                try:
                    await self._browser.close()
                except Exception as e:
                    logger.warning("Closing browser failed: %s", e)
                self._browser = None
            if self._playwright is not None:
                try:
                    await self._playwright.stop()
                except Exception as e:
                    logger.warning("Stopping Playwright failed: %s", e)
                self._playwright = None

    async def __aenter__(self) -> "RenderingSessionManager":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close_all()
