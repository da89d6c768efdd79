"""Chromium launch and throttled, deterministic browser contexts."""

from __future__ import annotations

import logging
from typing import Optional

from playwright.async_api import Browser, BrowserContext, CDPSession, Page, Playwright

from critical_css.models.config import USER_AGENTS, PerformanceConfig, ViewportProfile

logger = logging.getLogger(__name__)

CHROMIUM_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
    "--disable-background-timer-throttling",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--disable-features=TranslateUI",
    "--disable-ipc-flooding-protection",
]


def resolve_user_agent(viewport: ViewportProfile, override: Optional[str] = None) -> str:
    """Pick the request override, then the viewport's own, then the preset UA."""
    if override:
        return override
    if viewport.user_agent:
        return viewport.user_agent
    return USER_AGENTS["mobile"] if viewport.is_mobile else USER_AGENTS["desktop"]


async def launch_browser(playwright: Playwright, headless: bool = True) -> Browser:
    """Launch Chromium with flags that keep timers and rendering unthrottled by the host."""
    return await playwright.chromium.launch(headless=headless, args=CHROMIUM_ARGS)


async def create_context(
    browser: Browser,
    viewport: ViewportProfile,
    user_agent: Optional[str] = None,
) -> BrowserContext:
    """Create an isolated context emulating the given viewport.

    Locale, timezone and reduced motion are pinned so that repeated
    extractions of the same page render identically.
    """
    return await browser.new_context(
        viewport={"width": viewport.width, "height": viewport.height},
        device_scale_factor=viewport.device_scale_factor,
        is_mobile=viewport.is_mobile,
        has_touch=viewport.has_touch,
        user_agent=resolve_user_agent(viewport, user_agent),
        reduced_motion="reduce",
        locale="en-US",
        timezone_id="America/New_York",
    )


async def apply_throttling(
    context: BrowserContext, page: Page, performance: PerformanceConfig
) -> CDPSession:
    """Throttle CPU and network for ``page`` over the DevTools protocol.

    Must run before the first navigation.
    """
    cdp = await context.new_cdp_session(page)
    await cdp.send("Network.enable")
    await cdp.send(
        "Network.emulateNetworkConditions", performance.network_throttle.to_cdp()
    )
    await cdp.send(
        "Emulation.setCPUThrottlingRate", {"rate": performance.cpu_throttle_rate}
    )
    logger.debug(
        "Throttling applied: cpu=%.1fx latency=%.1fms",
        performance.cpu_throttle_rate, performance.network_throttle.latency,
    )
    return cdp
