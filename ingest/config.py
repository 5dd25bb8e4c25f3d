from __future__ import annotations

import os
from dataclasses import dataclass, replace

_TRUTHY = {"1", "true", "yes", "on"}


def env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in _TRUTHY


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    return int(raw) if raw else default


@dataclass(frozen=True)
class PipelineConfig:
    delay_ms: int = 2000
    page_delay_ms: int = 500
    page_from: int = 1
    page_to: int = 5
    force_rescrape: bool = False
    page_timeout_ms: int = 60000
    api_timeout_ms: int = 30000
    settle_ms: int = 3000
    headless: bool = True

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        return cls(
            delay_ms=_env_int("SCRAPE_DELAY", 2000),
            page_delay_ms=_env_int("SCRAPE_PAGE_DELAY", 500),
            page_from=_env_int("SCRAPE_PAGE_FROM", 1),
            page_to=_env_int("SCRAPE_PAGE_TO", 5),
            force_rescrape=env_flag("FORCE_RESCRAPE"),
            page_timeout_ms=_env_int("PAGE_TIMEOUT_MS", 60000),
            api_timeout_ms=_env_int("API_TIMEOUT_MS", 30000),
            settle_ms=_env_int("PAGE_SETTLE_MS", 3000),
            headless=env_flag("BROWSER_HEADLESS", "1"),
        )

    def with_overrides(self, **overrides) -> "PipelineConfig":
        """Apply CLI/request overrides, ignoring ones left unset (None)."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    @property
    def delay_s(self) -> float:
        return self.delay_ms / 1000.0

    @property
    def page_delay_s(self) -> float:
        return self.page_delay_ms / 1000.0
