"""CLI entry point for the critical CSS extractor."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from critical_css.api.service import ExtractionService
from critical_css.errors import CriticalExtractionError, ValidationError
from critical_css.models.config import ExtractorConfig
from critical_css.models.extraction import DualViewportResult, ExtractionResult
from critical_css.orchestrator import CriticalCSSExtractor

console = Console(stderr=True)


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _load_config(path: Optional[str]) -> ExtractorConfig:
    if not path:
        return ExtractorConfig()
    try:
        return ExtractorConfig.load(path)
    except FileNotFoundError:
        console.print(f"[red]Config file not found: {path}[/red]")
        console.print("Run 'critical-css init' to create a default config.")
        sys.exit(1)


async def _run_extract(
    config: ExtractorConfig,
    url: str,
    viewport: str,
    timeout_ms: Optional[int],
    include_shadows: bool,
    user_agent: Optional[str],
    prune_fonts: bool,
) -> ExtractionResult | DualViewportResult:
    async with CriticalCSSExtractor(config) as extractor:
        if viewport == "both":
            return await extractor.extract_for_both_viewports(
                url,
                timeout_ms=timeout_ms,
                include_shadows=include_shadows,
                user_agent=user_agent,
                prune_unused_fonts=prune_fonts,
            )
        options = extractor.options_for(
            url, viewport,
            timeout_ms=timeout_ms,
            include_shadows=include_shadows,
            user_agent=user_agent,
            prune_unused_fonts=prune_fonts,
        )
        return await extractor.extract_critical_css(options)


async def _run_service(config: ExtractorConfig, body: dict) -> tuple[int, dict]:
    """Answer one request through the service contract, as an HTTP transport would."""
    service = ExtractionService(config)
    try:
        return await service.handle_post(body, client_id="cli")
    finally:
        await service.close()


def _summary_table(result: ExtractionResult | DualViewportResult, config: ExtractorConfig) -> Table:
    table = Table(title="Critical CSS")
    table.add_column("Viewport", style="bold")
    table.add_column("Size")
    table.add_column("Rules")
    table.add_column("Above-fold elements")
    table.add_column("Time")

    singles = [result.mobile, result.desktop] if isinstance(result, DualViewportResult) else [result]
    for r in singles:
        size = f"{r.size} B"
        if r.size > config.max_recommended_size:
            size = f"[yellow]{size}[/yellow]"
        table.add_row(
            r.viewport.name,
            size,
            f"{r.metrics.filtered_rules}/{r.metrics.css_rules}",
            f"{r.metrics.above_fold_elements}/{r.metrics.total_elements}",
            f"{r.extraction_time:.0f}ms",
        )
    if isinstance(result, DualViewportResult):
        table.add_row("combined", f"{result.combined_size} B", "", "", "")
    return table


def _extract_json(
    cfg: ExtractorConfig,
    url: str,
    viewport: str,
    include_shadows: bool,
    user_agent: Optional[str],
    timeout_ms: Optional[int],
    prune_fonts: bool,
    output: Optional[str],
) -> None:
    body: dict = {
        "url": url,
        "viewport": viewport,
        "includeShadows": include_shadows,
        "pruneUnusedFonts": prune_fonts,
    }
    if user_agent is not None:
        body["userAgent"] = user_agent
    if timeout_ms is not None:
        body["timeoutMs"] = timeout_ms

    status, payload = asyncio.run(_run_service(cfg, body))
    text = json.dumps(payload, indent=2)
    if output:
        Path(output).write_text(text, encoding="utf-8")
    else:
        click.echo(text)

    if status == 400:
        sys.exit(2)
    if status != 200:
        sys.exit(1)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging")
def cli(verbose: bool) -> None:
    """Extract above-the-fold critical CSS from a rendered page."""
    setup_logging(verbose)


@cli.command()
@click.argument("url")
@click.option("--viewport", type=click.Choice(["mobile", "desktop", "both"]),
              default="both", show_default=True, help="Viewport preset to render")
@click.option("--include-shadows", is_flag=True, help="Keep box-shadow/text-shadow")
@click.option("--user-agent", default=None, help="Override the preset user agent")
@click.option("--timeout", "timeout_ms", type=int, default=None,
              help="Per-viewport deadline in milliseconds")
@click.option("--prune-fonts", is_flag=True,
              help="Drop @font-face rules for families no visible text uses")
@click.option("--output", "-o", type=click.Path(dir_okay=False), default=None,
              help="Write the CSS to this file instead of stdout")
@click.option("--json", "as_json", is_flag=True,
              help="Print the extraction response payload as JSON")
@click.option("--config", "-c", default=None, help="Config file path")
def extract(
    url: str,
    viewport: str,
    include_shadows: bool,
    user_agent: Optional[str],
    timeout_ms: Optional[int],
    prune_fonts: bool,
    output: Optional[str],
    as_json: bool,
    config: Optional[str],
) -> None:
    """Extract critical CSS for URL."""
    cfg = _load_config(config)
    if as_json:
        _extract_json(cfg, url, viewport, include_shadows, user_agent, timeout_ms,
                      prune_fonts, output)
        return

    try:
        result = asyncio.run(_run_extract(
            cfg, url, viewport, timeout_ms, include_shadows, user_agent, prune_fonts,
        ))
    except ValidationError as e:
        console.print(f"[red]Invalid request:[/red] {e.message}")
        sys.exit(2)
    except CriticalExtractionError as e:
        console.print(f"[red]Extraction failed:[/red] {e.message}")
        sys.exit(1)

    css = result.combined_css if isinstance(result, DualViewportResult) else result.critical_css
    if output:
        Path(output).write_text(css, encoding="utf-8")
        console.print(f"[green]Wrote {len(css.encode('utf-8'))} bytes to[/green] [blue]{output}[/blue]")
    else:
        click.echo(css)

    console.print(_summary_table(result, cfg))
    if isinstance(result, ExtractionResult):
        report = CriticalCSSExtractor(cfg).validate_extraction(result)
        for warning in report.warnings:
            console.print(f"[yellow]Warning:[/yellow] {warning}")
        for error in report.errors:
            console.print(f"[red]Error:[/red] {error}")


@cli.command()
@click.option("--path", "-p", default="critical-css.json", help="Config file to write")
def init(path: str) -> None:
    """Create a default configuration file."""
    config_path = Path(path)
    if config_path.exists():
        if not click.confirm(f"{config_path} already exists. Overwrite?"):
            return

    ExtractorConfig().save(config_path)
    console.print(f"[green]Created {config_path}[/green]")
    console.print("\nYou can now customize this file and run:")
    console.print(f"  [blue]critical-css extract https://example.com -c {config_path}[/blue]")


if __name__ == "__main__":
    cli()
