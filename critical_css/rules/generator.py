"""CSS serialization and minification."""

from __future__ import annotations

import re

import csscompressor
import tinycss2
from tinycss2.ast import IdentToken, WhitespaceToken

from critical_css.models.css import CSSRule
from critical_css.rules.parser import GROUPING_AT_RULES, normalize_media_query

# csscompressor strips the whitespace these need around +/- and before "(".
_MATH_FUNCTIONS = {"calc", "clamp", "min", "max"}
_PLACEHOLDER = "___CRITICALCSS_{}___"


def _rule_block(rule: CSSRule, indent: str = "") -> str:
    lines = [f"{indent}{rule.selector} {{"]
    for d in rule.declarations:
        suffix = " !important" if d.important else ""
        lines.append(f"{indent}  {d.property}: {d.value}{suffix};")
    lines.append(f"{indent}}}")
    return "\n".join(lines)


def _wrapped_block(wrappers: tuple[str, ...], rules: list[CSSRule]) -> str:
    lines = [f"{'  ' * level}{header} {{" for level, header in enumerate(wrappers)]
    lines.extend(_rule_block(rule, indent="  " * len(wrappers)) for rule in rules)
    lines.extend(f"{'  ' * level}}}" for level in reversed(range(len(wrappers))))
    return "\n".join(lines)


def generate_css(rules: list[CSSRule]) -> str:
    """Serialize rules back to CSS text, preserving order.

    Consecutive rules sharing the same enclosing at-rules (``@media``,
    ``@supports``, ``@layer``, ``@container``) are emitted in one block.
    """
    blocks: list[str] = []
    i = 0
    while i < len(rules):
        wrappers = rules[i].wrappers
        if not wrappers:
            blocks.append(_rule_block(rules[i]))
            i += 1
            continue

        group = []
        while i < len(rules) and rules[i].wrappers == wrappers:
            group.append(rules[i])
            i += 1
        blocks.append(_wrapped_block(wrappers, group))

    return "\n".join(blocks) + ("\n" if blocks else "")


def _compact_math(text: str) -> str:
    text = re.sub(r"\s+", " ", text)
    text = re.sub(r"\(\s+", "(", text)
    text = re.sub(r"\s+\)", ")", text)
    return re.sub(r"\s*,\s*", ",", text)


def _placeholder(node, text: str, saved: list[str]) -> IdentToken:
    saved.append(text)
    return IdentToken(node.source_line, node.source_column, _PLACEHOLDER.format(len(saved) - 1))


def _protect(nodes: list, saved: list[str]) -> list:
    """Swap what csscompressor would damage for opaque identifiers.

    Strings, math functions and grouping at-rule preludes are saved verbatim
    (math and preludes in compact form) and restored after compression.
    """
    out = []
    i = 0
    while i < len(nodes):
        node = nodes[i]
        if node.type == "string":
            out.append(_placeholder(node, node.serialize(), saved))
        elif node.type == "function" and node.lower_name in _MATH_FUNCTIONS:
            out.append(_placeholder(node, _compact_math(node.serialize()), saved))
        elif node.type == "at-keyword" and node.lower_value in GROUPING_AT_RULES:
            out.append(node)
            prelude = []
            i += 1
            while i < len(nodes) and not (
                nodes[i].type == "{} block" or nodes[i] == ";"
            ):
                prelude.append(nodes[i])
                i += 1
            condition = normalize_media_query(tinycss2.serialize(prelude))
            if condition:
                out.append(WhitespaceToken(node.source_line, node.source_column, " "))
                out.append(_placeholder(node, condition, saved))
            continue
        else:
            if node.type in ("{} block", "() block", "[] block"):
                node.content = _protect(node.content, saved)
            elif node.type == "function":
                node.arguments = _protect(node.arguments, saved)
            out.append(node)
        i += 1
    return out


def minify_css(css_text: str) -> str:
    """Strip comments and insignificant whitespace."""
    if not css_text.strip():
        return ""
    # Tokenizing drops every comment, /*! */ included, but never text inside strings.
    saved: list[str] = []
    nodes = _protect(tinycss2.parse_component_value_list(css_text, skip_comments=True), saved)
    minified = csscompressor.compress(tinycss2.serialize(nodes)).replace("\n", "").strip()
    for index in reversed(range(len(saved))):
        minified = minified.replace(_PLACEHOLDER.format(index), saved[index])
    return minified
