"""Paint stabilization — decides when the page's largest contentful paint has settled.

The page side registers a ``PerformanceObserver`` for largest-contentful-paint
candidates. Every candidate restarts a short stabilization timer; when the
timer fires without a newer candidate the page flips a ``stabilized`` flag.
If no candidate arrives at all, a fallback timer flips it with no entries.

The Python side is an explicit two-state machine (OBSERVING -> STABILIZED)
that polls the flag on a fixed interval under a hard timeout. It never raises:
timeouts and page errors degrade to "whatever entries are known so far".
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Any

from playwright.async_api import Page

from critical_css.models.extraction import PageMetrics, PaintEntry

logger = logging.getLogger(__name__)

_INSTALL_SCRIPT = """({ delay, fallback }) => {
    if (window.__lcpObserver) {
        window.__lcpObserver.disconnect();
    }
    if (window.__lcpTimers) {
        window.__lcpTimers.forEach(clearTimeout);
    }

    window.__lcpStabilized = false;
    window.__lcpEntries = [];
    window.__lcpTimers = [];

    let stabilizationTimer = null;

    const markStable = () => { window.__lcpStabilized = true; };

    window.__lcpObserver = new PerformanceObserver((list) => {
        if (window.__lcpStabilized) return;
        for (const entry of list.getEntries()) {
            if (entry.entryType !== 'largest-contentful-paint') continue;
            window.__lcpEntries.push({
                element: entry.element ? entry.element.tagName.toLowerCase() : 'unknown',
                render_time: entry.renderTime || entry.loadTime || 0,
                load_time: entry.loadTime || 0,
                size: entry.size || 0,
                url: entry.url || null,
            });
            if (stabilizationTimer) clearTimeout(stabilizationTimer);
            stabilizationTimer = setTimeout(markStable, delay);
            window.__lcpTimers.push(stabilizationTimer);
        }
    });
    window.__lcpObserver.observe({ type: 'largest-contentful-paint', buffered: true });

    window.__lcpTimers.push(setTimeout(() => {
        if (!window.__lcpStabilized && window.__lcpEntries.length === 0) {
            markStable();
        }
    }, fallback));
}"""

_POLL_SCRIPT = """() => ({
    stabilized: window.__lcpStabilized || false,
    entries: window.__lcpEntries || [],
})"""

_ENTRIES_SCRIPT = """() => window.__lcpEntries || []"""

_CLEANUP_SCRIPT = """() => {
    if (window.__lcpObserver) window.__lcpObserver.disconnect();
    if (window.__lcpTimers) window.__lcpTimers.forEach(clearTimeout);
    delete window.__lcpObserver;
    delete window.__lcpTimers;
    delete window.__lcpStabilized;
    delete window.__lcpEntries;
}"""

_METRICS_SCRIPT = """() => {
    const navigation = performance.getEntriesByType('navigation')[0];
    const paint = performance.getEntriesByType('paint');
    const byName = (name) => {
        const entry = paint.find((e) => e.name === name);
        return entry ? entry.startTime : null;
    };
    return {
        dom_content_loaded: navigation
            ? navigation.domContentLoadedEventEnd - navigation.domContentLoadedEventStart
            : null,
        load_complete: navigation
            ? navigation.loadEventEnd - navigation.loadEventStart
            : null,
        first_paint: byName('first-paint'),
        first_contentful_paint: byName('first-contentful-paint'),
        lcp_entries: window.__lcpEntries || [],
    };
}"""


class StabilizationState(str, Enum):
    OBSERVING = "observing"
    STABILIZED = "stabilized"


def _to_entries(raw: Any) -> list[PaintEntry]:
    entries = []
    for item in raw or []:
        try:
            entries.append(PaintEntry(**item))
        except (TypeError, ValueError) as e:
            logger.debug("Skipping malformed paint entry %r: %s", item, e)
    return entries


class PaintStabilizationDetector:
    """Waits until LCP candidates stop arriving on one page load."""

    def __init__(
        self,
        page: Page,
        stabilization_delay_ms: int = 500,
        fallback_ms: int = 3000,
        poll_interval_ms: int = 100,
        timeout_ms: int = 20000,
    ):
        self.page = page
        self.stabilization_delay_ms = stabilization_delay_ms
        self.fallback_ms = fallback_ms
        self.poll_interval_ms = poll_interval_ms
        self.timeout_ms = timeout_ms

        self.state = StabilizationState.OBSERVING
        self.entries: list[PaintEntry] = []
        self.timed_out = False

    @property
    def effective_entry(self) -> PaintEntry | None:
        """The last reported candidate, which counts as the page's LCP."""
        return self.entries[-1] if self.entries else None

    async def wait_for_stabilization(self) -> list[PaintEntry]:
        """Observe paints until they settle or the hard timeout elapses."""
        self.state = StabilizationState.OBSERVING
        self.entries = []
        self.timed_out = False

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.timeout_ms / 1000
        interval = self.poll_interval_ms / 1000

        try:
            await self.page.evaluate(
                _INSTALL_SCRIPT,
                {"delay": self.stabilization_delay_ms, "fallback": self.fallback_ms},
            )

            while True:
                remaining = deadline - loop.time()
                if remaining <= 0:
                    self.timed_out = True
                    logger.warning(
                        "LCP stabilization timed out after %dms, proceeding with %d entries",
                        self.timeout_ms, len(self.entries),
                    )
                    break

                snapshot = await asyncio.wait_for(
                    self.page.evaluate(_POLL_SCRIPT), timeout=remaining
                )
                self.entries = _to_entries(snapshot.get("entries"))
                if snapshot.get("stabilized"):
                    logger.debug(
                        "LCP stabilized with %d entries (last: %s)",
                        len(self.entries),
                        self.effective_entry.element if self.effective_entry else "none",
                    )
                    break

                await asyncio.sleep(min(interval, max(deadline - loop.time(), 0)))

        except asyncio.TimeoutError:
            self.timed_out = True
            logger.warning(
                "LCP stabilization timed out after %dms, proceeding with %d entries",
                self.timeout_ms, len(self.entries),
            )
        except Exception as e:
            logger.warning(
                "LCP observation failed (%s), proceeding with %d known entries",
                e, len(self.entries),
            )

        self.state = StabilizationState.STABILIZED
        return list(self.entries)

    async def get_current_entries(self) -> list[PaintEntry]:
        """Non-blocking snapshot of the entries recorded so far."""
        try:
            return _to_entries(await self.page.evaluate(_ENTRIES_SCRIPT))
        except Exception as e:
            logger.debug("Could not read LCP entries: %s", e)
            return list(self.entries)

    async def get_metrics(self) -> PageMetrics:
        """Navigation and paint timings for diagnostics."""
        try:
            raw = await self.page.evaluate(_METRICS_SCRIPT)
        except Exception as e:
            logger.debug("Could not read performance metrics: %s", e)
            return PageMetrics(lcp_entries=list(self.entries))
        raw["lcp_entries"] = _to_entries(raw.get("lcp_entries"))
        return PageMetrics(**raw)

    async def cleanup(self) -> None:
        """Disconnect the observer and clear page-side state."""
        try:
            await self.page.evaluate(_CLEANUP_SCRIPT)
        except Exception as e:
            logger.debug("LCP observer cleanup skipped: %s", e)
