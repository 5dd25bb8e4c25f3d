"""Fetch driver: rendered pages through Playwright, JSON APIs through requests.

Both strategies return a ``FetchResult`` so adapters never care how the
content was obtained. A driver owns at most one browser process for its
lifetime; every page gets its own context which is closed before ``open``
returns, whatever happens during navigation.
"""

from __future__ import annotations

import logging
from typing import Any, Optional, Protocol, Sequence

import requests

from .config import PipelineConfig
from .errors import (
    BrowserUnavailable,
    ContentNotReady,
    NavigationTimeout,
    ResourceUnavailable,
)
from .scraper_observability import StepTimer
from .types import DESKTOP_USER_AGENT, DESKTOP_VIEWPORT, FetchResult, FetchStrategy

logger = logging.getLogger("media-ingest")

BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--disable-gpu",
    "--disable-blink-features=AutomationControlled",
]

_STEALTH_SCRIPT = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
Object.defineProperty(navigator, 'languages', { get: () => ['en-US', 'en'] });
"""

API_HEADERS = {
    "User-Agent": DESKTOP_USER_AGENT,
    "Accept": "application/json, text/plain, */*",
}

READY_SELECTOR_TIMEOUT_MS = 5000


class Fetcher(Protocol):
    def open(
        self,
        target: str,
        strategy: FetchStrategy,
        timeout_ms: Optional[int] = None,
        *,
        params: Optional[dict[str, Any]] = None,
        ready_selectors: Sequence[str] = (),
        require_ready: bool = False,
    ) -> FetchResult: ...


class FetchDriver:
    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        self.config = config or PipelineConfig()
        self._session = session
        self._playwright = None
        self._browser = None

    def __enter__(self) -> "FetchDriver":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
            self._session.headers.update(API_HEADERS)
        return self._session

    def open(
        self,
        target: str,
        strategy: FetchStrategy,
        timeout_ms: Optional[int] = None,
        *,
        params: Optional[dict[str, Any]] = None,
        ready_selectors: Sequence[str] = (),
        require_ready: bool = False,
    ) -> FetchResult:
        if strategy == FetchStrategy.JSON_API:
            return self._fetch_json(target, timeout_ms, params)
        return self._render(target, timeout_ms, ready_selectors, require_ready)

    def _fetch_json(
        self, url: str, timeout_ms: Optional[int], params: Optional[dict[str, Any]]
    ) -> FetchResult:
        timeout_s = (timeout_ms or self.config.api_timeout_ms) / 1000.0
        timer = StepTimer()
        try:
            resp = self.session.get(
                url, params=params, headers=API_HEADERS, timeout=timeout_s
            )
        except requests.Timeout as exc:
            raise NavigationTimeout(
                f"API call timed out after {timeout_s:.0f}s", url=url
            ) from exc
        except requests.RequestException as exc:
            raise ResourceUnavailable(f"{type(exc).__name__}: {exc}", url=url) from exc

        if not 200 <= resp.status_code < 300:
            raise ResourceUnavailable(
                f"HTTP {resp.status_code}", url=url, status=resp.status_code
            )
        try:
            payload = resp.json()
        except ValueError as exc:
            raise ContentNotReady("API response is not JSON", url=url) from exc

        return FetchResult(
            url=url,
            strategy=FetchStrategy.JSON_API,
            status=resp.status_code,
            payload=payload,
            elapsed_ms=timer.elapsed_ms(),
            bytes_read=len(resp.content or b""),
        )

    def _ensure_browser(self):
        if self._browser is not None:
            return self._browser
        try:
            from playwright.sync_api import sync_playwright

            self._playwright = sync_playwright().start()
            self._browser = self._playwright.chromium.launch(
                headless=self.config.headless, args=BROWSER_ARGS
            )
        except Exception as exc:
            self.close()
            raise BrowserUnavailable(
                f"Could not start browser: {type(exc).__name__}: {exc}"
            ) from exc
        return self._browser

    def _render(
        self,
        url: str,
        timeout_ms: Optional[int],
        ready_selectors: Sequence[str],
        require_ready: bool,
    ) -> FetchResult:
        from playwright.sync_api import Error as PlaywrightError
        from playwright.sync_api import TimeoutError as PlaywrightTimeout

        browser = self._ensure_browser()
        timeout = timeout_ms or self.config.page_timeout_ms
        timer = StepTimer()
        context = None
        try:
            context = browser.new_context(
                user_agent=DESKTOP_USER_AGENT,
                viewport=DESKTOP_VIEWPORT,
                locale="en-US",
            )
            context.add_init_script(_STEALTH_SCRIPT)
            page = context.new_page()
            try:
                response = page.goto(url, wait_until="domcontentloaded", timeout=timeout)
            except PlaywrightTimeout as exc:
                raise NavigationTimeout(
                    f"Navigation timed out after {timeout}ms", url=url
                ) from exc
            except PlaywrightError as exc:
                raise ResourceUnavailable(f"Navigation failed: {exc}", url=url) from exc

            status = response.status if response is not None else None
            if status is not None and status >= 400:
                raise ResourceUnavailable(f"HTTP {status}", url=url, status=status)

            # No site offers a reliable "ready" signal
            page.wait_for_timeout(self.config.settle_ms)

            if ready_selectors:
                matched = self._wait_for_any(page, ready_selectors, PlaywrightTimeout)
                if matched is None and require_ready:
                    raise ContentNotReady(
                        f"None of {list(ready_selectors)} appeared", url=url
                    )

            html = page.content()
        except PlaywrightTimeout as exc:
            raise NavigationTimeout(f"Page timed out: {exc}", url=url) from exc
        finally:
            if context is not None:
                context.close()

        return FetchResult(
            url=url,
            strategy=FetchStrategy.RENDERED_PAGE,
            status=status,
            html=html,
            elapsed_ms=timer.elapsed_ms(),
            bytes_read=len(html.encode("utf-8")),
        )

    @staticmethod
    def _wait_for_any(page, selectors: Sequence[str], timeout_exc) -> Optional[str]:
        for selector in selectors:
            try:
                page.wait_for_selector(selector, timeout=READY_SELECTOR_TIMEOUT_MS)
                return selector
            except timeout_exc:
                logger.debug("Ready selector not found: %s", selector)
        return None

    def close(self) -> None:
        if self._browser is not None:
            try:
                self._browser.close()
            except Exception as exc:
                logger.warning("Browser close failed: %s", exc)
            self._browser = None
        if self._playwright is not None:
            try:
                self._playwright.stop()
            except Exception as exc:
                logger.warning("Playwright stop failed: %s", exc)
            self._playwright = None
