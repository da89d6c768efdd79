"""Rule filtering and deduplication stages of the rule engine."""

from __future__ import annotations

import logging
import re
from typing import Iterable, Optional

from critical_css.models.config import DEFAULT_EXCLUDED_PROPERTIES, DEFAULT_SHADOW_PROPERTIES
from critical_css.models.css import CSSRule

logger = logging.getLogger(__name__)

_VENDOR_PREFIX = re.compile(r"^-(webkit|moz|ms|o)-")


def _unprefixed(prop: str) -> str:
    return _VENDOR_PREFIX.sub("", prop.lower())


def filter_declarations(
    rules: list[CSSRule],
    include_shadows: bool = False,
    excluded_properties: Optional[Iterable[str]] = None,
    shadow_properties: Optional[Iterable[str]] = None,
) -> list[CSSRule]:
    """Drop non-critical properties, then drop rules left without declarations.

    ``@font-face`` descriptors are never filtered.
    """
    excluded = set(
        DEFAULT_EXCLUDED_PROPERTIES if excluded_properties is None else excluded_properties
    )
    if not include_shadows:
        excluded |= set(
            DEFAULT_SHADOW_PROPERTIES if shadow_properties is None else shadow_properties
        )

    kept = []
    for rule in rules:
        if rule.is_font_face:
            kept.append(rule)
            continue
        declarations = [
            d for d in rule.declarations if _unprefixed(d.property) not in excluded
        ]
        if not declarations:
            continue
        kept.append(rule.model_copy(update={"declarations": declarations}))

    logger.debug("Declaration filter: %d -> %d rules", len(rules), len(kept))
    return kept


def filter_by_relevance(rules: list[CSSRule], selectors: Iterable[str]) -> list[CSSRule]:
    """Keep rules whose selector matches an above-fold selector, plus @font-face."""
    selector_set = set(selectors)
    kept = [
        rule for rule in rules
        if rule.is_font_face
        or rule.selector in selector_set
        or any(part in selector_set for part in rule.selector_parts)
    ]
    logger.debug("Relevance filter: %d -> %d rules", len(rules), len(kept))
    return kept


def _font_family_names(rule: CSSRule) -> list[str]:
    for d in rule.declarations:
        if d.property == "font-family":
            return [f.strip().strip("'\"").lower() for f in d.value.split(",") if f.strip()]
    return []


def prune_font_faces(rules: list[CSSRule], used_fonts: Iterable[str]) -> list[CSSRule]:
    """Drop @font-face rules whose family no visible text uses.

    Font faces without a readable family are kept.
    """
    used = {f.strip().strip("'\"").lower() for f in used_fonts}
    kept = []
    for rule in rules:
        if rule.is_font_face:
            families = _font_family_names(rule)
            if families and not any(f in used for f in families):
                logger.debug("Pruning unused font face: %s", ", ".join(families))
                continue
        kept.append(rule)
    return kept


def rule_key(rule: CSSRule) -> tuple:
    """Identity used for deduplication.

    Style rules are identified by selector and enclosing at-rules. Font faces
    all share the ``@font-face`` selector, so their descriptors are part of the
    key.
    """
    if rule.is_font_face:
        body = ";".join(
            f"{d.property}:{d.value}{'!important' if d.important else ''}"
            for d in rule.declarations
        )
        return (rule.selector, rule.wrappers, body)
    return (rule.selector, rule.wrappers)


def deduplicate_rules(rules: list[CSSRule]) -> list[CSSRule]:
    """Remove later duplicates, keeping each first occurrence in place."""
    seen: set[tuple] = set()
    unique = []
    for rule in rules:
        key = rule_key(rule)
        if key in seen:
            continue
        seen.add(key)
        unique.append(rule)
    if len(unique) != len(rules):
        logger.debug("Deduplicated %d rules", len(rules) - len(unique))
    return unique


def merge_rule_sets(primary: list[CSSRule], secondary: list[CSSRule]) -> list[CSSRule]:
    """Order-preserving union: all of ``primary``, then what only ``secondary`` has."""
    return deduplicate_rules(list(primary) + list(secondary))
