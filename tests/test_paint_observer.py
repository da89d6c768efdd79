"""Tests for the LCP paint stabilization detector."""

import asyncio

import pytest
from unittest.mock import AsyncMock

from critical_css.models.extraction import PageMetrics
from critical_css.renderer.paint_observer import (
    PaintStabilizationDetector,
    StabilizationState,
)

LCP_ENTRY = {
    "element": "img",
    "render_time": 812.5,
    "load_time": 800.0,
    "size": 48000,
    "url": "https://example.com/hero.jpg",
}


def _detector(page, timeout_ms=1000):
    return PaintStabilizationDetector(
        page,
        stabilization_delay_ms=10,
        fallback_ms=50,
        poll_interval_ms=5,
        timeout_ms=timeout_ms,
    )


class TestWaitForStabilization:
    """Tests for PaintStabilizationDetector.wait_for_stabilization."""

    @pytest.mark.asyncio
    async def test_no_paint_signals_resolves_empty(self, mock_page):
        mock_page.evaluate = AsyncMock(side_effect=[
            None,
            {"stabilized": True, "entries": []},
        ])
        detector = _detector(mock_page)

        entries = await detector.wait_for_stabilization()

        assert entries == []
        assert detector.state == StabilizationState.STABILIZED
        assert detector.effective_entry is None
        assert not detector.timed_out

    @pytest.mark.asyncio
    async def test_installs_observer_with_timings(self, mock_page):
        mock_page.evaluate = AsyncMock(side_effect=[
            None,
            {"stabilized": True, "entries": []},
        ])
        await _detector(mock_page).wait_for_stabilization()

        install_args = mock_page.evaluate.call_args_list[0].args
        assert install_args[1] == {"delay": 10, "fallback": 50}

    @pytest.mark.asyncio
    async def test_polls_until_stabilized(self, mock_page):
        mock_page.evaluate = AsyncMock(side_effect=[
            None,
            {"stabilized": False, "entries": []},
            {"stabilized": False, "entries": [LCP_ENTRY]},
            {"stabilized": True, "entries": [LCP_ENTRY]},
        ])
        detector = _detector(mock_page)

        entries = await detector.wait_for_stabilization()

        assert len(entries) == 1
        assert entries[0].element == "img"
        assert detector.effective_entry.render_time == 812.5
        assert mock_page.evaluate.await_count == 4

    @pytest.mark.asyncio
    async def test_last_entry_is_effective(self, mock_page):
        later = dict(LCP_ENTRY, element="h1", render_time=1500.0)
        mock_page.evaluate = AsyncMock(side_effect=[
            None,
            {"stabilized": True, "entries": [LCP_ENTRY, later]},
        ])
        detector = _detector(mock_page)
        await detector.wait_for_stabilization()
        assert detector.effective_entry.element == "h1"

    @pytest.mark.asyncio
    async def test_hard_timeout_proceeds(self, mock_page):
        mock_page.evaluate = AsyncMock(return_value={"stabilized": False, "entries": [LCP_ENTRY]})
        detector = _detector(mock_page, timeout_ms=40)

        entries = await detector.wait_for_stabilization()

        assert detector.timed_out
        assert detector.state == StabilizationState.STABILIZED
        assert len(entries) == 1

    @pytest.mark.asyncio
    async def test_hung_page_times_out(self, mock_page):
        async def hang(script, arg=None):
            if arg is not None:
                return None
            await asyncio.sleep(10)

        mock_page.evaluate = AsyncMock(side_effect=hang)
        detector = _detector(mock_page, timeout_ms=30)

        entries = await asyncio.wait_for(detector.wait_for_stabilization(), timeout=2)

        assert entries == []
        assert detector.timed_out

    @pytest.mark.asyncio
    async def test_page_error_does_not_raise(self, mock_page):
        mock_page.evaluate = AsyncMock(side_effect=Exception("Execution context was destroyed"))
        detector = _detector(mock_page)

        entries = await detector.wait_for_stabilization()

        assert entries == []
        assert detector.state == StabilizationState.STABILIZED

    @pytest.mark.asyncio
    async def test_malformed_entries_skipped(self, mock_page):
        mock_page.evaluate = AsyncMock(side_effect=[
            None,
            {"stabilized": True, "entries": [LCP_ENTRY, {"render_time": "soon"}]},
        ])
        entries = await _detector(mock_page).wait_for_stabilization()
        assert len(entries) == 1


class TestDetectorHelpers:
    """Tests for entry snapshots, metrics and cleanup."""

    @pytest.mark.asyncio
    async def test_get_current_entries(self, mock_page):
        mock_page.evaluate = AsyncMock(return_value=[LCP_ENTRY])
        entries = await _detector(mock_page).get_current_entries()
        assert entries[0].url == "https://example.com/hero.jpg"

    @pytest.mark.asyncio
    async def test_get_current_entries_falls_back_to_known(self, mock_page):
        mock_page.evaluate = AsyncMock(side_effect=Exception("closed"))
        assert await _detector(mock_page).get_current_entries() == []

    @pytest.mark.asyncio
    async def test_get_metrics(self, mock_page):
        mock_page.evaluate = AsyncMock(return_value={
            "dom_content_loaded": 12.0,
            "load_complete": 3.0,
            "first_paint": 400.0,
            "first_contentful_paint": 420.0,
            "lcp_entries": [LCP_ENTRY],
        })
        metrics = await _detector(mock_page).get_metrics()
        assert isinstance(metrics, PageMetrics)
        assert metrics.first_contentful_paint == 420.0
        assert metrics.lcp_entries[0].element == "img"

    @pytest.mark.asyncio
    async def test_get_metrics_on_error(self, mock_page):
        mock_page.evaluate = AsyncMock(side_effect=Exception("closed"))
        metrics = await _detector(mock_page).get_metrics()
        assert metrics.first_paint is None

    @pytest.mark.asyncio
    async def test_cleanup_never_raises(self, mock_page):
        mock_page.evaluate = AsyncMock(side_effect=Exception("Target closed"))
        await _detector(mock_page).cleanup()
        mock_page.evaluate.assert_awaited_once()
