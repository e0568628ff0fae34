"""
Browser session shared by every page render.
Launches Chromium and seeds the Home Assistant login into local storage.
"""
import json
import logging
from typing import List, Optional

from playwright.async_api import Browser, BrowserContext, Playwright, async_playwright

from config import Settings

logger = logging.getLogger(__name__)


def launch_args(settings: Settings) -> List[str]:
    args = ["--disable-dev-shm-usage", "--no-sandbox", f"--lang={settings.language}"]
    if settings.ignore_certificate_errors:
        args.append("--ignore-certificate-errors")
    return args


def auth_tokens(settings: Settings) -> str:
    return json.dumps(
        {
            "hassUrl": settings.base_url,
            "access_token": settings.access_token,
            "token_type": "Bearer",
        }
    )


class BrowserSession:
    """Owns the Playwright driver, the browser and its single context."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self._playwright: Optional[Playwright] = None
        self.browser: Optional[Browser] = None
        self.context: Optional[BrowserContext] = None

    async def start(self) -> BrowserContext:
        logger.info("Starting browser...")
        self._playwright = await async_playwright().start()
        try:
            self.browser = await self._playwright.chromium.launch(
                args=launch_args(self.settings),
                headless=not self.settings.debug,
                timeout=self.settings.browser_launch_timeout,
            )
            self.context = await self.browser.new_context(
                ignore_https_errors=self.settings.ignore_certificate_errors,
                locale=self.settings.language,
            )
            await self.login()
        except Exception:
            await self.close()
            raise
        return self.context

    async def login(self) -> None:
        logger.info(f"Visiting '{self.settings.base_url}' to login...")
        page = await self.context.new_page()
        try:
            await page.goto(self.settings.base_url, timeout=self.settings.rendering_timeout)
            logger.info("Adding authentication entry to browser's local storage...")
            await page.evaluate(
                """([tokens, language]) => {
                    localStorage.setItem("hassTokens", tokens);
                    localStorage.setItem("selectedLanguage", language);
                }""",
                [auth_tokens(self.settings), json.dumps(self.settings.language)],
            )
        finally:
            await page.close()

    async def close(self) -> None:
        if self.browser is not None:
            await self.browser.close()
            self.browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None

    async def __aenter__(self) -> BrowserContext:
        return await self.start()

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
