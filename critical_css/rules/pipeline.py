"""Rule engine: parse, filter, deduplicate, generate, minify."""

from __future__ import annotations

import logging
from typing import Iterable, Optional

from pydantic import BaseModel, Field

from critical_css.models.css import CSSRule

from .filters import (
    deduplicate_rules,
    filter_by_relevance,
    filter_declarations,
    merge_rule_sets,
    prune_font_faces,
)
from .generator import generate_css, minify_css
from .parser import parse_css

logger = logging.getLogger(__name__)


class ProcessedCSS(BaseModel):
    rules: list[CSSRule] = Field(default_factory=list)
    css: str = ""
    parsed_rules: int = 0


def process_css(
    css_text: str,
    selectors: Iterable[str],
    include_shadows: bool = False,
    excluded_properties: Optional[Iterable[str]] = None,
    shadow_properties: Optional[Iterable[str]] = None,
    used_fonts: Optional[Iterable[str]] = None,
) -> ProcessedCSS:
    """Reduce raw page CSS to the rules relevant to the given selectors.

    Passing ``used_fonts`` additionally prunes @font-face rules for families
    no visible text uses.
    """
    parsed = parse_css(css_text)
    rules = filter_declarations(
        parsed,
        include_shadows=include_shadows,
        excluded_properties=excluded_properties,
        shadow_properties=shadow_properties,
    )
    rules = filter_by_relevance(rules, selectors)
    if used_fonts is not None:
        rules = prune_font_faces(rules, used_fonts)
    rules = deduplicate_rules(rules)
    css = minify_css(generate_css(rules))

    logger.info(
        "Rule engine: %d parsed -> %d critical rules (%d bytes)",
        len(parsed), len(rules), len(css.encode("utf-8")),
    )
    return ProcessedCSS(rules=rules, css=css, parsed_rules=len(parsed))


def combine_rule_sets(primary: list[CSSRule], secondary: list[CSSRule]) -> str:
    """Minified CSS for the union of two rule sets, ``primary`` first."""
    return minify_css(generate_css(merge_rule_sets(primary, secondary)))
