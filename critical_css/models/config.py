"""Configuration models for the critical CSS extractor."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ViewportProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = "desktop"
    width: int = 1366
    height: int = 768
    device_scale_factor: float = 1.0
    is_mobile: bool = False
    has_touch: bool = False
    user_agent: Optional[str] = None

    @field_validator("width", "height")
    @classmethod
    def positive_dimension(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("viewport dimensions must be positive")
        return v

    @property
    def key(self) -> str:
        return f"{self.width}x{self.height}"


MOBILE_VIEWPORT = ViewportProfile(
    name="mobile",
    width=360,
    height=640,
    device_scale_factor=2.625,
    is_mobile=True,
    has_touch=True,
)

DESKTOP_VIEWPORT = ViewportProfile(
    name="desktop",
    width=1366,
    height=768,
    device_scale_factor=1.0,
    is_mobile=False,
)

USER_AGENTS = {
    "mobile": (
        "Mozilla/5.0 (Linux; Android 13; Pixel 7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/122.0.0.0 Mobile Safari/537.36"
    ),
    "desktop": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/122.0.0.0 Safari/537.36"
    ),
}


class NetworkThrottle(BaseModel):
    """Parameters for CDP ``Network.emulateNetworkConditions``.

    Defaults approximate the "slow 4G" profile: 562.5ms round trip,
    ~1.44 Mbps down and ~675 Kbps up (throughputs in bytes per second).
    """

    offline: bool = False
    latency: float = 562.5
    download_throughput: float = 1.6 * 1024 * 1024 / 8 * 0.9
    upload_throughput: float = 750 * 1024 / 8 * 0.9

    def to_cdp(self) -> dict:
        return {
            "offline": self.offline,
            "latency": self.latency,
            "downloadThroughput": self.download_throughput,
            "uploadThroughput": self.upload_throughput,
        }


class PerformanceConfig(BaseModel):
    cpu_throttle_rate: float = 4.0
    network_throttle: NetworkThrottle = Field(default_factory=NetworkThrottle)

    # Paint stabilization
    lcp_stabilization_delay_ms: int = 500
    lcp_fallback_ms: int = 3000
    poll_interval_ms: int = 100
    default_timeout_ms: int = 20000

    # Above-fold geometry
    above_fold_buffer_px: int = 50

    # Content settle
    settle_quiet_ms: int = 250
    settle_timeout_ms: int = 2000

    # Held back from the paint and settle waits for DOM analysis and CSS collection
    analysis_reserve_ms: int = 1000


DEFAULT_EXCLUDED_PROPERTIES = [
    "animation",
    "animation-name",
    "animation-duration",
    "animation-timing-function",
    "animation-delay",
    "animation-iteration-count",
    "animation-direction",
    "animation-fill-mode",
    "animation-play-state",
    "transition",
    "transition-property",
    "transition-duration",
    "transition-timing-function",
    "transition-delay",
]

DEFAULT_SHADOW_PROPERTIES = ["box-shadow", "text-shadow"]


class ExtractorConfig(BaseModel):
    # Canonical viewports
    viewports: dict[str, ViewportProfile] = Field(
        default_factory=lambda: {
            "mobile": MOBILE_VIEWPORT,
            "desktop": DESKTOP_VIEWPORT,
        }
    )

    performance: PerformanceConfig = Field(default_factory=PerformanceConfig)

    # Rule engine
    excluded_properties: list[str] = Field(
        default_factory=lambda: list(DEFAULT_EXCLUDED_PROPERTIES)
    )
    shadow_properties: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SHADOW_PROPERTIES)
    )

    # Resource limits
    max_concurrent_contexts: int = 3
    headless: bool = True

    # Validation
    max_recommended_size: int = 14 * 1024

    # Request admission (used by the request service, not the core)
    rate_limit_max_requests: int = 10
    rate_limit_window_seconds: int = 60

    @field_validator("viewports")
    @classmethod
    def require_canonical_viewports(
        cls, v: dict[str, ViewportProfile]
    ) -> dict[str, ViewportProfile]:
        missing = {"mobile", "desktop"} - set(v)
        if missing:
            raise ValueError(f"Missing viewport presets: {', '.join(sorted(missing))}")
        return v

    @field_validator("max_concurrent_contexts")
    @classmethod
    def at_least_one_context(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_concurrent_contexts must be at least 1")
        return v

    def viewport(self, name: str) -> ViewportProfile:
        """Look up a viewport preset by name."""
        try:
            return self.viewports[name]
        except KeyError:
            raise KeyError(f"Unknown viewport preset: {name}") from None

    @classmethod
    def load(cls, path: str | Path) -> "ExtractorConfig":
        """Load config from a JSON file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            data = json.load(f)
        return cls(**data)

    def save(self, path: str | Path) -> None:
        """Save config to a JSON file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(self.model_dump(), f, indent=2)
