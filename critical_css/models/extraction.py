"""Extraction data structures produced by the renderer and orchestrator."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from critical_css.models.config import ViewportProfile
from critical_css.models.css import CSSRule


class PaintEntry(BaseModel):
    element: str = "unknown"  # tag name of the painted element
    render_time: float = 0.0
    load_time: float = 0.0
    size: float = 0.0
    url: Optional[str] = None


class ElementRect(BaseModel):
    top: float = 0.0
    bottom: float = 0.0
    left: float = 0.0
    right: float = 0.0
    width: float = 0.0
    height: float = 0.0


class ElementSnapshot(BaseModel):
    tag_name: str
    id: str = ""
    class_list: list[str] = Field(default_factory=list)
    selector: str = ""
    is_above_fold: bool = False
    rect: ElementRect = Field(default_factory=ElementRect)
    has_text: bool = False
    # Computed-style subset
    display: str = ""
    visibility: str = ""
    opacity: str = "1"
    font_size: float = 0.0
    font_family: str = ""


class ExtractionOptions(BaseModel):
    url: str
    viewport: ViewportProfile
    timeout_ms: int = 20000
    include_shadows: bool = False
    user_agent: Optional[str] = None
    prune_unused_fonts: bool = False


class ExtractionMetrics(BaseModel):
    lcp_time: Optional[float] = None
    paint_entries: int = 0
    total_elements: int = 0
    above_fold_elements: int = 0
    css_rules: int = 0
    filtered_rules: int = 0
    used_fonts: list[str] = Field(default_factory=list)
    content_settled: bool = False


class ExtractionResult(BaseModel):
    critical_css: str
    size: int = 0  # bytes, UTF-8
    extraction_time: float = 0.0  # milliseconds
    viewport: ViewportProfile
    url: str
    metrics: ExtractionMetrics = Field(default_factory=ExtractionMetrics)
    # Processed rules, kept for combining viewports; not part of the payload.
    rules: list[CSSRule] = Field(default_factory=list, exclude=True)


class DualViewportResult(BaseModel):
    url: str
    mobile: ExtractionResult
    desktop: ExtractionResult
    combined_css: str = ""
    combined_size: int = 0


class ValidationReport(BaseModel):
    is_valid: bool = True
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class ViewportInfo(BaseModel):
    width: int = 0
    height: int = 0
    scroll_x: float = 0.0
    scroll_y: float = 0.0
    document_height: float = 0.0


class PageMetrics(BaseModel):
    """Diagnostic timings read from the rendered page."""
    dom_content_loaded: Optional[float] = None
    load_complete: Optional[float] = None
    first_paint: Optional[float] = None
    first_contentful_paint: Optional[float] = None
    lcp_entries: list[PaintEntry] = Field(default_factory=list)
    viewport: Optional[ViewportInfo] = None
