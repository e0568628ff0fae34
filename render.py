"""
Renderer service for capturing dashboard screenshots.
Drives one browser page per dashboard: viewport, navigation, readiness
wait, scaling and a clipped capture to a temporary file.
"""
import asyncio
import logging
import time
from typing import Dict, Tuple

from playwright.async_api import BrowserContext, Error as PlaywrightError, Page

from config import PageSpec

READINESS_SELECTOR = "home-assistant"
MIN_READINESS_BUDGET_MS = 1000


class RenderError(Exception):
    """Raised when a page cannot be navigated, awaited or captured."""


def effective_viewport(width: int, height: int, rotation: int) -> Tuple[int, int]:
    """Swap width and height when the output will be rotated by 90 or 270 degrees."""
    if rotation % 180 != 0:
        return height, width
    return width, height


def readiness_budget(
    rendering_timeout: int, elapsed: int, floor: int = MIN_READINESS_BUDGET_MS
) -> int:
    """
    Remaining milliseconds for the readiness wait.

    Navigation and the readiness wait share one logical deadline of
    `rendering_timeout`; the result never drops below `floor`.
    """
    return max(rendering_timeout - elapsed, floor)


def scaling_style(width: int, height: int, scaling: float) -> str:
    return f"""
        body {{
          width: calc({width}px / {scaling});
          height: calc({height}px / {scaling});
          transform-origin: 0 0;
          transform: scale({scaling});
          overflow: hidden;
        }}"""


class Renderer:
    """Handles rendering a single dashboard page to a raw PNG."""

    def __init__(self, context: BrowserContext, rendering_timeout: int = 10000, debug: bool = False):
        self.context = context
        self.rendering_timeout = rendering_timeout
        self.debug = debug
        self.logger = logging.getLogger(__name__)

    async def render(self, page_spec: PageSpec, url: str, path: str) -> bool:
        """
        Capture `url` into `path`.

        Args:
            page_spec: Settings for the page being rendered
            url: Full dashboard URL
            path: Temporary file receiving the raw capture

        Returns:
            True when a capture was written, False when rendering failed.
        """
        page = None
        try:
            page = await self.context.new_page()
            await self._render_page(page, page_spec, url, path)
            return True
        except Exception as e:
            self.logger.error(f"Failed to render {url}: {e}")
            return False
        finally:
            if page is not None and not self.debug:
                try:
                    await page.close()
                except PlaywrightError as e:
                    self.logger.warning(f"Failed to close page for {url}: {e}")

    async def _render_page(self, page: Page, page_spec: PageSpec, url: str, path: str) -> None:
        await page.emulate_media(color_scheme=page_spec.prefers_color_scheme)

        width, height = effective_viewport(page_spec.width, page_spec.height, page_spec.rotation)
        await page.set_viewport_size({"width": width, "height": height})

        start = time.monotonic()
        try:
            await page.goto(url, wait_until="networkidle", timeout=self.rendering_timeout)
        except PlaywrightError as e:
            raise RenderError(f"Navigation to {url} failed: {e}") from e
        elapsed = int((time.monotonic() - start) * 1000)

        budget = readiness_budget(self.rendering_timeout, elapsed)
        self.logger.debug(f"Navigation took {elapsed}ms, waiting up to {budget}ms for {READINESS_SELECTOR}")
        try:
            await page.wait_for_selector(READINESS_SELECTOR, state="attached", timeout=budget)
        except PlaywrightError as e:
            raise RenderError(f"{url} did not become ready within {budget}ms: {e}") from e

        await page.add_style_tag(content=scaling_style(width, height, page_spec.scaling))

        if page_spec.rendering_delay > 0:
            await asyncio.sleep(page_spec.rendering_delay / 1000)

        clip: Dict[str, float] = {"x": 0, "y": 0, "width": width, "height": height}
        try:
            await page.screenshot(path=path, type="png", clip=clip)
        except PlaywrightError as e:
            raise RenderError(f"Capture of {url} failed: {e}") from e
        self.logger.info(f"Screenshot of {url} saved to {path}")
