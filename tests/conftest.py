"""Pytest configuration and shared fixtures."""

from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest

from critical_css.models.config import (
    DESKTOP_VIEWPORT,
    MOBILE_VIEWPORT,
    ExtractorConfig,
    PerformanceConfig,
    ViewportProfile,
)
from critical_css.models.extraction import (
    ElementRect,
    ElementSnapshot,
    ExtractionMetrics,
    ExtractionResult,
)


# ============================================================================
# Configuration Fixtures
# ============================================================================


@pytest.fixture
def mobile_viewport() -> ViewportProfile:
    return MOBILE_VIEWPORT


@pytest.fixture
def desktop_viewport() -> ViewportProfile:
    return DESKTOP_VIEWPORT


@pytest.fixture
def extractor_config() -> ExtractorConfig:
    """Default configuration with timings shrunk so tests stay fast."""
    return ExtractorConfig(
        performance=PerformanceConfig(
            lcp_stabilization_delay_ms=10,
            lcp_fallback_ms=50,
            poll_interval_ms=5,
            default_timeout_ms=2000,
            settle_quiet_ms=10,
            settle_timeout_ms=50,
        ),
    )


@pytest.fixture
def temp_config_file(extractor_config: ExtractorConfig, tmp_path: Path) -> Path:
    """Create a temporary config file."""
    config_file = tmp_path / "critical-css.json"
    extractor_config.save(config_file)
    return config_file


# ============================================================================
# CSS Fixtures
# ============================================================================


@pytest.fixture
def sample_css() -> str:
    """A small stylesheet with above-fold, below-fold and non-critical parts."""
    return """
    /* site styles */
    @font-face {
        font-family: "Inter";
        src: url(/fonts/inter.woff2);
    }
    h1 { font-size: 32px; color: black; }
    #hero { color: red; animation: fadeIn 1s; box-shadow: 1px 1px 2px gray; }
    .footer { color: gray; }
    @media (min-width: 768px) {
        h1 { font-size: 48px; }
    }
    """


# ============================================================================
# Snapshot Fixtures
# ============================================================================


def make_snapshot(
    tag_name: str = "div",
    selector: str = "div",
    is_above_fold: bool = True,
    has_text: bool = True,
    font_family: str = "Inter, sans-serif",
    **kwargs,
) -> ElementSnapshot:
    """Build an ElementSnapshot with sensible visible defaults."""
    defaults = dict(
        rect=ElementRect(top=0, bottom=100, left=0, right=100, width=100, height=100),
        display="block",
        visibility="visible",
        opacity="1",
        font_size=16,
    )
    defaults.update(kwargs)
    return ElementSnapshot(
        tag_name=tag_name,
        selector=selector,
        is_above_fold=is_above_fold,
        has_text=has_text,
        font_family=font_family,
        **defaults,
    )


@pytest.fixture
def snapshot_factory():
    """Fixture that provides the make_snapshot helper."""
    return make_snapshot


def make_result(
    viewport: ViewportProfile = MOBILE_VIEWPORT,
    css: str = "h1{font-size:32px}",
    size: int | None = None,
) -> ExtractionResult:
    return ExtractionResult(
        critical_css=css,
        size=len(css.encode("utf-8")) if size is None else size,
        extraction_time=120.0,
        viewport=viewport,
        url="https://example.com",
        metrics=ExtractionMetrics(css_rules=3, filtered_rules=1),
    )


@pytest.fixture
def result_factory():
    """Fixture that provides the make_result helper."""
    return make_result


# ============================================================================
# Mock Fixtures
# ============================================================================


@pytest.fixture
def mock_page() -> AsyncMock:
    """Create a mock Playwright page."""
    page = AsyncMock()
    page.url = "https://example.com"
    page.goto = AsyncMock()
    page.evaluate = AsyncMock()
    page.on = Mock()
    return page


@pytest.fixture
def mock_cdp() -> AsyncMock:
    """Create a mock CDP session."""
    cdp = AsyncMock()
    cdp.send = AsyncMock()
    return cdp


@pytest.fixture
def mock_context(mock_page: AsyncMock, mock_cdp: AsyncMock) -> AsyncMock:
    """Create a mock Playwright browser context."""
    context = AsyncMock()
    context.new_page = AsyncMock(return_value=mock_page)
    context.new_cdp_session = AsyncMock(return_value=mock_cdp)
    context.close = AsyncMock()
    return context


@pytest.fixture
def mock_browser(mock_context: AsyncMock) -> AsyncMock:
    """Create a mock Playwright browser."""
    browser = AsyncMock()
    browser.new_context = AsyncMock(return_value=mock_context)
    browser.close = AsyncMock()
    return browser
