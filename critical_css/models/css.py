"""CSS rule data structures used by the rule engine."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

FONT_FACE_SELECTOR = "@font-face"


class RuleKind(str, Enum):
    STYLE = "style"
    FONT_FACE = "font-face"


class Declaration(BaseModel):
    property: str
    value: str
    important: bool = False


class CSSRule(BaseModel):
    selector: str
    declarations: list[Declaration] = Field(default_factory=list)
    media_query: Optional[str] = None  # normalized, e.g. "(min-width:768px)"
    # Enclosing grouping at-rules, outermost first: ["@layer base", "@media print"]
    at_rules: list[str] = Field(default_factory=list)
    kind: RuleKind = RuleKind.STYLE

    @property
    def wrappers(self) -> tuple[str, ...]:
        """Grouping at-rule headers the rule must be re-emitted inside."""
        if self.at_rules:
            return tuple(self.at_rules)
        if self.media_query:
            return (f"@media {self.media_query}",)
        return ()

    @property
    def is_font_face(self) -> bool:
        return self.kind == RuleKind.FONT_FACE

    @property
    def selector_parts(self) -> list[str]:
        """Individual selectors of a comma-separated selector list.

        Commas nested inside parentheses or brackets (``:is(.a, .b)``,
        ``[data-x="a,b"]``) do not split.
        """
        parts: list[str] = []
        depth = 0
        current = ""
        for ch in self.selector:
            if ch in "([":
                depth += 1
            elif ch in ")]" and depth:
                depth -= 1
            elif ch == "," and depth == 0:
                parts.append(current)
                current = ""
                continue
            current += ch
        parts.append(current)
        return [part.strip() for part in parts if part.strip()]
