"""Parse raw stylesheet text into an ordered list of CSSRule."""

from __future__ import annotations

import logging
import re
from typing import Iterable, Optional

import tinycss2

from critical_css.models.css import FONT_FACE_SELECTOR, CSSRule, Declaration, RuleKind

logger = logging.getLogger(__name__)

# Block at-rules whose children are kept, re-emitted inside the same wrapper.
GROUPING_AT_RULES = ("media", "supports", "layer", "container")


def normalize_media_query(media_text: str) -> str:
    """Normalize a media condition to its compact form.

    ``"screen and ( min-width : 768px )"`` -> ``"screen and (min-width:768px)"``.
    A leading ``all and`` is dropped since it matches every media type.
    """
    text = re.sub(r"\s+", " ", media_text).strip()
    text = re.sub(r"\s*:\s*", ":", text)
    text = re.sub(r"\s*,\s*", ",", text)
    text = re.sub(r"\(\s+", "(", text)
    text = re.sub(r"\s+\)", ")", text)
    text = re.sub(r"^all and ", "", text, flags=re.IGNORECASE)
    return text


def _combine_media(outer: Optional[str], inner: str) -> str:
    if not outer:
        return inner
    return f"{outer} and {inner}"


def _selector_text(prelude: Iterable) -> str:
    """Serialize a selector prelude, collapsing top-level whitespace runs."""
    parts = []
    for token in prelude:
        if token.type == "whitespace":
            parts.append(" ")
        elif token.type != "comment":
            parts.append(token.serialize())
    return "".join(parts).strip()


def _declarations(content: Optional[list]) -> list[Declaration]:
    """Read every declaration of a block, keeping order and repeats."""
    if not content:
        return []
    declarations = []
    for node in tinycss2.parse_blocks_contents(
        content, skip_comments=True, skip_whitespace=True
    ):
        if node.type != "declaration":
            # Nested rules and malformed declarations.
            continue
        value = tinycss2.serialize(node.value).strip()
        if not value:
            continue
        name = node.name if node.name.startswith("--") else node.lower_name
        declarations.append(Declaration(property=name, value=value, important=node.important))
    return declarations


def _walk(
    nodes: Iterable,
    media_query: Optional[str],
    at_rules: list[str],
    out: list[CSSRule],
) -> None:
    for node in nodes:
        if node.type == "qualified-rule":
            selector = _selector_text(node.prelude)
            if not selector:
                continue
            out.append(
                CSSRule(
                    selector=selector,
                    declarations=_declarations(node.content),
                    media_query=media_query,
                    at_rules=list(at_rules),
                )
            )
        elif node.type == "at-rule":
            keyword = node.lower_at_keyword
            if keyword == "font-face" and node.content is not None:
                out.append(
                    CSSRule(
                        selector=FONT_FACE_SELECTOR,
                        declarations=_declarations(node.content),
                        media_query=media_query,
                        at_rules=list(at_rules),
                        kind=RuleKind.FONT_FACE,
                    )
                )
            elif keyword in GROUPING_AT_RULES and node.content is not None:
                condition = normalize_media_query(tinycss2.serialize(node.prelude))
                header = f"@{keyword} {condition}" if condition else f"@{keyword}"
                inner_media = (
                    _combine_media(media_query, condition) if keyword == "media" else media_query
                )
                children = tinycss2.parse_rule_list(
                    node.content, skip_comments=True, skip_whitespace=True
                )
                _walk(children, inner_media, at_rules + [header], out)
            # @import, @charset, @keyframes, @page, @layer statements and
            # unknown at-rules carry nothing the above-fold subset needs.
        elif node.type == "error":
            logger.debug("Skipping unparseable CSS at %d:%d: %s",
                         node.source_line, node.source_column, node.message)


def parse_css(css_text: str) -> list[CSSRule]:
    """Parse raw CSS text into rules, in document order."""
    if not css_text or not css_text.strip():
        return []

    nodes = tinycss2.parse_stylesheet(css_text, skip_comments=True, skip_whitespace=True)

    rules: list[CSSRule] = []
    _walk(nodes, None, [], rules)
    logger.debug("Parsed %d CSS rules from %d chars", len(rules), len(css_text))
    return rules
