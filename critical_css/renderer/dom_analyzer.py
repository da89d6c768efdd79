"""DOM analysis — classifies rendered elements as above or below the fold.

Geometry and computed styles are read from the live page in a single
``page.evaluate`` call; classification, selector derivation and font
collection are pure functions over those snapshots.
"""

from __future__ import annotations

import logging
from typing import Iterable

from playwright.async_api import Page

from critical_css.models.config import ViewportProfile
from critical_css.models.extraction import ElementRect, ElementSnapshot, ViewportInfo

logger = logging.getLogger(__name__)

NON_VISUAL_TAGS = frozenset({
    "script", "style", "meta", "link", "title", "head", "noscript",
})

_SNAPSHOT_SCRIPT = """(skipTags) => {
    const skip = new Set(skipTags);
    const results = [];
    for (const el of document.querySelectorAll('*')) {
        const tag = el.tagName.toLowerCase();
        if (skip.has(tag)) continue;

        const rect = el.getBoundingClientRect();
        const style = window.getComputedStyle(el);
        results.push({
            tag_name: tag,
            id: el.id || '',
            class_name: typeof el.className === 'string' ? el.className : '',
            rect: {
                top: rect.top, bottom: rect.bottom,
                left: rect.left, right: rect.right,
                width: rect.width, height: rect.height,
            },
            has_text: !!(el.textContent && el.textContent.trim()),
            display: style.display,
            visibility: style.visibility,
            opacity: style.opacity,
            font_size: parseFloat(style.fontSize) || 0,
            font_family: style.fontFamily || '',
        });
    }
    return results;
}"""

_VIEWPORT_SCRIPT = """() => ({
    width: window.innerWidth,
    height: window.innerHeight,
    scroll_x: window.scrollX,
    scroll_y: window.scrollY,
    document_height: document.documentElement.scrollHeight,
})"""

_SETTLE_SCRIPT = """({ quietMs, timeoutMs }) => new Promise((resolve) => {
    if (!document.body) {
        resolve(true);
        return;
    }

    let lastMutation = Date.now();
    let checkInterval = null;
    let deadline = null;

    const observer = new MutationObserver(() => { lastMutation = Date.now(); });
    observer.observe(document.body, { childList: true, subtree: true });

    const finish = (settled) => {
        observer.disconnect();
        clearInterval(checkInterval);
        clearTimeout(deadline);
        resolve(settled);
    };

    checkInterval = setInterval(() => {
        if (Date.now() - lastMutation >= quietMs) finish(true);
    }, 50);
    deadline = setTimeout(() => finish(false), timeoutMs);
})"""


def is_above_fold(rect: ElementRect, viewport_height: float, buffer: float) -> bool:
    """True if ``rect`` intersects [-buffer, viewport_height + buffer] and has area."""
    if rect.width == 0 or rect.height == 0:
        return False
    return rect.bottom > -buffer and rect.top < viewport_height + buffer


def derive_selector(tag_name: str, element_id: str = "", classes: Iterable[str] = ()) -> str:
    """Matching key for CSS relevance: ``#id``, else ``tag.c1.c2``, else ``tag``.

    Classes containing ``:`` (utility variants such as ``md:flex``) are skipped.
    """
    if element_id:
        return f"#{element_id}"
    tag = tag_name.lower()
    usable = [c for c in classes if c and ":" not in c]
    if usable:
        return f"{tag}." + ".".join(usable)
    return tag


def _is_hidden(snapshot: ElementSnapshot) -> bool:
    if snapshot.display == "none" or snapshot.visibility == "hidden":
        return True
    try:
        return float(snapshot.opacity) == 0
    except ValueError:
        return False


def visible_text_elements(snapshots: Iterable[ElementSnapshot]) -> list[ElementSnapshot]:
    """Above-fold elements with rendered, non-empty text."""
    return [
        s for s in snapshots
        if s.is_above_fold and s.has_text and not _is_hidden(s) and s.font_size > 0
    ]


def used_font_families(snapshots: Iterable[ElementSnapshot]) -> list[str]:
    """Unique font family names across the visible-text subset, first-seen order."""
    fonts: list[str] = []
    for s in visible_text_elements(snapshots):
        for family in s.font_family.split(","):
            name = family.strip().replace('"', "").replace("'", "")
            if name and name not in fonts:
                fonts.append(name)
    return fonts


def above_fold_selectors(snapshots: Iterable[ElementSnapshot]) -> list[str]:
    """Unique selectors of the above-fold elements, in document order."""
    selectors: list[str] = []
    seen: set[str] = set()
    for s in snapshots:
        if s.is_above_fold and s.selector not in seen:
            seen.add(s.selector)
            selectors.append(s.selector)
    return selectors


class DomAnalyzer:
    """Reads element geometry from a rendered page for one viewport."""

    def __init__(
        self,
        page: Page,
        viewport: ViewportProfile,
        buffer_px: int = 50,
        settle_quiet_ms: int = 250,
        settle_timeout_ms: int = 2000,
    ):
        self.page = page
        self.viewport = viewport
        self.buffer_px = buffer_px
        self.settle_quiet_ms = settle_quiet_ms
        self.settle_timeout_ms = settle_timeout_ms

    def _classify(self, raw: dict) -> ElementSnapshot:
        classes = (raw.get("class_name") or "").split()
        rect = ElementRect(**(raw.get("rect") or {}))
        tag = raw.get("tag_name", "")
        return ElementSnapshot(
            tag_name=tag,
            id=raw.get("id", ""),
            class_list=classes,
            selector=derive_selector(tag, raw.get("id", ""), classes),
            is_above_fold=is_above_fold(rect, self.viewport.height, self.buffer_px),
            rect=rect,
            has_text=raw.get("has_text", False),
            display=raw.get("display", ""),
            visibility=raw.get("visibility", ""),
            opacity=str(raw.get("opacity", "1")),
            font_size=raw.get("font_size", 0) or 0,
            font_family=raw.get("font_family", ""),
        )

    async def snapshot_elements(self) -> list[ElementSnapshot]:
        """Snapshot every visual element in the document, classified."""
        raw_elements = await self.page.evaluate(_SNAPSHOT_SCRIPT, sorted(NON_VISUAL_TAGS))
        snapshots = [
            self._classify(raw) for raw in raw_elements
            if raw.get("tag_name", "") not in NON_VISUAL_TAGS
        ]
        logger.debug(
            "Snapshot: %d elements, %d above the fold (viewport %s, buffer %dpx)",
            len(snapshots), sum(1 for s in snapshots if s.is_above_fold),
            self.viewport.key, self.buffer_px,
        )
        return snapshots

    async def get_above_fold_elements(self) -> list[ElementSnapshot]:
        return [s for s in await self.snapshot_elements() if s.is_above_fold]

    async def get_above_fold_selectors(self) -> list[str]:
        return above_fold_selectors(await self.snapshot_elements())

    async def get_visible_text_elements(self) -> list[ElementSnapshot]:
        return visible_text_elements(await self.snapshot_elements())

    async def get_used_font_families(self) -> list[str]:
        return used_font_families(await self.snapshot_elements())

    async def get_viewport_info(self) -> ViewportInfo:
        """Scroll offsets and document height, for diagnostics."""
        return ViewportInfo(**await self.page.evaluate(_VIEWPORT_SCRIPT))

    async def wait_for_content_settle(self, timeout_ms: int | None = None) -> bool:
        """Wait for a quiet period without DOM mutations.

        Returns False if the window expired or the page went away; never raises.
        """
        timeout = self.settle_timeout_ms if timeout_ms is None else timeout_ms
        try:
            return bool(await self.page.evaluate(
                _SETTLE_SCRIPT,
                {"quietMs": self.settle_quiet_ms, "timeoutMs": timeout},
            ))
        except Exception as e:
            logger.warning("Content settle wait failed: %s", e)
            return False
