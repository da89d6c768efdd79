"""Tests for the command line interface."""

import json
from pathlib import Path

import pytest
from click.testing import CliRunner
from unittest.mock import AsyncMock, patch

from critical_css.cli import _run_service, cli
from critical_css.errors import NetworkError, ValidationError
from critical_css.models.config import DESKTOP_VIEWPORT, MOBILE_VIEWPORT, ExtractorConfig
from critical_css.models.extraction import DualViewportResult

URL = "https://example.com"


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


class TestExtractCommand:
    """Tests for `critical-css extract`."""

    def test_prints_css_for_single_viewport(self, runner, result_factory):
        run = AsyncMock(return_value=result_factory(MOBILE_VIEWPORT, "h1{color:red}"))
        with patch("critical_css.cli._run_extract", run):
            result = runner.invoke(cli, ["extract", URL, "--viewport", "mobile"])

        assert result.exit_code == 0
        assert "h1{color:red}" in result.output
        args = run.call_args.args
        assert args[1:] == (URL, "mobile", None, False, None, False)

    def test_passes_options(self, runner, result_factory):
        run = AsyncMock(return_value=result_factory())
        with patch("critical_css.cli._run_extract", run):
            runner.invoke(cli, [
                "extract", URL, "--viewport", "desktop", "--include-shadows",
                "--user-agent", "Bot", "--timeout", "5000", "--prune-fonts",
            ])

        assert run.call_args.args[1:] == (URL, "desktop", 5000, True, "Bot", True)

    def test_combined_css_for_both(self, runner, result_factory):
        dual = DualViewportResult(
            url=URL,
            mobile=result_factory(MOBILE_VIEWPORT, "h1{color:red}"),
            desktop=result_factory(DESKTOP_VIEWPORT, "nav{display:flex}"),
            combined_css="h1{color:red}nav{display:flex}",
            combined_size=30,
        )
        with patch("critical_css.cli._run_extract", AsyncMock(return_value=dual)):
            result = runner.invoke(cli, ["extract", URL])

        assert result.exit_code == 0
        assert "h1{color:red}nav{display:flex}" in result.output

    def test_writes_output_file(self, runner, result_factory, tmp_path: Path):
        out = tmp_path / "critical.css"
        run = AsyncMock(return_value=result_factory(css="h1{color:red}"))
        with patch("critical_css.cli._run_extract", run):
            result = runner.invoke(cli, ["extract", URL, "--viewport", "mobile", "-o", str(out)])

        assert result.exit_code == 0
        assert out.read_text() == "h1{color:red}"

    def test_json_output_uses_service_payload(self, runner):
        payload = {"success": True, "url": URL, "viewport": "mobile",
                   "css": "h1{color:red}", "size": 13, "processingTime": 120}
        run = AsyncMock(return_value=(200, payload))
        with patch("critical_css.cli._run_service", run):
            result = runner.invoke(cli, ["extract", URL, "--viewport", "mobile", "--json"])

        assert result.exit_code == 0
        assert json.loads(result.output) == payload
        assert run.call_args.args[1] == {
            "url": URL, "viewport": "mobile", "includeShadows": False, "pruneUnusedFonts": False,
        }

    def test_json_request_carries_options(self, runner):
        run = AsyncMock(return_value=(200, {"success": True}))
        with patch("critical_css.cli._run_service", run):
            runner.invoke(cli, [
                "extract", URL, "--json", "--include-shadows", "--user-agent", "Bot",
                "--timeout", "5000", "--prune-fonts",
            ])

        assert run.call_args.args[1] == {
            "url": URL, "viewport": "both", "includeShadows": True, "pruneUnusedFonts": True,
            "userAgent": "Bot", "timeoutMs": 5000,
        }

    @pytest.mark.parametrize("status, exit_code", [(400, 2), (429, 1), (500, 1)])
    def test_json_error_status_exit_code(self, runner, status, exit_code):
        payload = {"error": "Extraction failed", "processingTime": 5}
        with patch("critical_css.cli._run_service", AsyncMock(return_value=(status, payload))):
            result = runner.invoke(cli, ["extract", URL, "--json"])

        assert result.exit_code == exit_code
        assert json.loads(result.output)["error"] == "Extraction failed"

    @pytest.mark.asyncio
    async def test_run_service_closes_extractor(self, extractor_config):
        with patch("critical_css.cli.ExtractionService") as service_cls:
            service = service_cls.return_value
            service.handle_post = AsyncMock(return_value=(200, {"success": True}))
            service.close = AsyncMock()

            status, _ = await _run_service(extractor_config, {"url": URL})

        assert status == 200
        service.handle_post.assert_awaited_once_with({"url": URL}, client_id="cli")
        service.close.assert_awaited_once()

    def test_uses_config_file(self, runner, result_factory, temp_config_file: Path):
        run = AsyncMock(return_value=result_factory())
        with patch("critical_css.cli._run_extract", run):
            result = runner.invoke(cli, ["extract", URL, "-c", str(temp_config_file)])

        assert result.exit_code == 0
        config = run.call_args.args[0]
        assert isinstance(config, ExtractorConfig)
        assert config.performance.poll_interval_ms == 5

    def test_missing_config_file(self, runner, tmp_path: Path):
        result = runner.invoke(cli, ["extract", URL, "-c", str(tmp_path / "nope.json")])
        assert result.exit_code == 1

    def test_extraction_failure_exit_code(self, runner):
        run = AsyncMock(side_effect=NetworkError("net::ERR_NAME_NOT_RESOLVED"))
        with patch("critical_css.cli._run_extract", run):
            result = runner.invoke(cli, ["extract", URL])
        assert result.exit_code == 1

    def test_validation_failure_exit_code(self, runner):
        run = AsyncMock(side_effect=ValidationError("URL must use HTTP or HTTPS protocol"))
        with patch("critical_css.cli._run_extract", run):
            result = runner.invoke(cli, ["extract", "ftp://example.com"])
        assert result.exit_code == 2

    def test_rejects_unknown_viewport(self, runner):
        result = runner.invoke(cli, ["extract", URL, "--viewport", "tablet"])
        assert result.exit_code != 0


class TestInitCommand:
    """Tests for `critical-css init`."""

    def test_creates_default_config(self, runner, tmp_path: Path):
        path = tmp_path / "critical-css.json"
        result = runner.invoke(cli, ["init", "--path", str(path)])

        assert result.exit_code == 0
        assert ExtractorConfig.load(path) == ExtractorConfig()

    def test_keeps_existing_when_declined(self, runner, tmp_path: Path):
        path = tmp_path / "critical-css.json"
        path.write_text("{}")
        result = runner.invoke(cli, ["init", "--path", str(path)], input="n\n")

        assert result.exit_code == 0
        assert path.read_text() == "{}"
