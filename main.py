import asyncio
import logging
import os
import sys
from typing import Optional

from battery import BatteryReporter, BatteryStore
from browser import BrowserSession
from config import ConfigurationError, PageSpec, Settings, load_settings, validate
from convert import ConversionError, KindleImageConverter
from render import Renderer

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger("Main")


class ScreensaverManager:
    """Runs render, convert, cleanup and battery report for each page in turn."""

    def __init__(
        self,
        settings: Settings,
        renderer: Renderer,
        converter: Optional[KindleImageConverter] = None,
        battery_store: Optional[BatteryStore] = None,
        reporter: Optional[BatteryReporter] = None,
    ):
        self.settings = settings
        self.renderer = renderer
        self.converter = converter or KindleImageConverter()
        self.battery_store = battery_store if battery_store is not None else BatteryStore()
        self.reporter = reporter or BatteryReporter(
            settings.base_url, verify=not settings.ignore_certificate_errors
        )
        self.cycle_lock = asyncio.Lock()

    async def render_and_convert(self):
        """Perform one cycle over every configured page."""
        async with self.cycle_lock:
            for page_index, page_spec in enumerate(self.settings.pages):
                try:
                    await self.process_page(page_index, page_spec)
                except Exception as e:
                    logger.error(f"Page {page_index} failed: {e}")

    async def process_page(self, page_index: int, page_spec: PageSpec):
        url = f"{self.settings.base_url}{page_spec.screenshot_url}"
        output_path = page_spec.output_path
        temp_path = output_path + ".temp"

        try:
            await self.render_page(page_spec, url, temp_path, output_path)
        finally:
            self.report_battery(page_index, page_spec)

    async def render_page(self, page_spec: PageSpec, url: str, temp_path: str, output_path: str):
        try:
            output_dir = os.path.dirname(output_path)
            if output_dir:
                os.makedirs(output_dir, exist_ok=True)

            logger.info(f"Rendering {url} to image...")
            rendered = await self.renderer.render(page_spec, url, temp_path)

            if rendered:
                logger.info(f"Converting rendered screenshot of {url} to grayscale png...")
                try:
                    await asyncio.to_thread(self.converter.convert, page_spec, temp_path, output_path)
                    logger.info(f"Finished {url}")
                except ConversionError as e:
                    logger.error(f"Conversion failed for {url}: {e}")
        finally:
            if os.path.exists(temp_path):
                os.remove(temp_path)

    def report_battery(self, page_index: int, page_spec: PageSpec):
        reading = self.battery_store.get(page_index)
        if reading is None or reading.battery_level is None or not page_spec.battery_webhook:
            return
        self.reporter.report(page_index, reading, page_spec.battery_webhook)

    async def run(self):
        """Render once at startup, then once per refresh interval."""
        if self.settings.debug:
            logger.info("Debug mode active, will only render once in non-headless mode and keep pages open")
            await self.render_and_convert()
            await self.reporter.drain()
            await asyncio.Event().wait()
            return

        logger.info("Starting first render...")
        await self.render_and_convert()
        logger.info(f"Rendering every {self.settings.refresh_interval} seconds")
        try:
            while True:
                await asyncio.sleep(self.settings.refresh_interval)
                await self.render_and_convert()
        finally:
            await self.reporter.drain()


async def main(settings: Optional[Settings] = None):
    settings = settings or load_settings()
    validate(settings)
    logging.getLogger().setLevel(settings.log_level)

    async with BrowserSession(settings) as context:
        renderer = Renderer(context, settings.rendering_timeout, debug=settings.debug)
        manager = ScreensaverManager(settings, renderer)
        await manager.run()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except ConfigurationError as e:
        logger.error(str(e))
        sys.exit(1)
    except KeyboardInterrupt:
        pass
