import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple


COLOR_MODES = ("GrayScale", "TrueColor")
COLOR_SCHEMES = ("light", "dark", "no-preference")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigurationError(Exception):
    """Raised when the settings cannot be used to start rendering."""


class Config:
    """
    Lightweight .env loader.

    - Reads KEY=VALUE pairs, skipping blank lines and '#' comments
    - Accepts an optional leading 'export '
    - Strips matching single or double quotes around values
    - Falls back to os.environ for keys missing from the file
    """

    def __init__(self, env_file: str = ".env", encoding: str = "utf-8") -> None:
        self.env_file = env_file
        self.encoding = encoding
        self._values: Dict[str, str] = {}
        self.load()

    def load(self) -> None:
        """(Re)load values from the .env file into memory."""
        values: Dict[str, str] = {}
        try:
            with open(self.env_file, "r", encoding=self.encoding) as f:
                for raw_line in f:
                    parsed = self._parse_line(raw_line)
                    if parsed:
                        values[parsed[0]] = parsed[1]
        except FileNotFoundError:
            values = {}

        self._values = values

    @staticmethod
    def _parse_line(raw_line: str) -> Optional[Tuple[str, str]]:
        line = raw_line.strip()
        if not line or line.startswith("#"):
            return None

        if line.startswith("export "):
            line = line[len("export "):].strip()

        if "=" not in line:
            return None

        key, value = line.split("=", 1)
        key = key.strip()
        value = value.strip()
        if not key:
            return None

        if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
            value = value[1:-1]
        elif " #" in value:
            value = value.split(" #", 1)[0].strip()

        return key, value

    def get(self, key: str, default: Optional[Any] = None) -> Optional[str]:
        """
        Get a value for `key` from the .env file, then the process
        environment, then `default`.
        """
        if key in self._values:
            return self._values[key]
        return os.environ.get(key, default)  # type: ignore[return-value]

    def has(self, key: str) -> bool:
        return key in self._values or key in os.environ

    def get_int(self, key: str, default: int) -> int:
        raw = self.get(key)
        if raw is None or raw == "":
            return default
        try:
            return int(raw)
        except ValueError:
            raise ConfigurationError(f"{key} must be an integer, got {raw!r}") from None

    def get_float(self, key: str, default: float) -> float:
        raw = self.get(key)
        if raw is None or raw == "":
            return default
        try:
            return float(raw)
        except ValueError:
            raise ConfigurationError(f"{key} must be a number, got {raw!r}") from None

    def get_bool(self, key: str, default: bool = False) -> bool:
        raw = self.get(key)
        if raw is None or raw == "":
            return default
        return raw.strip().lower() == "true"


@dataclass(frozen=True)
class PageSpec:
    """Render and conversion settings for one dashboard page."""

    screenshot_url: str
    output_path: str
    rotation: int = 0
    width: int = 600
    height: int = 800
    scaling: float = 1.0
    prefers_color_scheme: str = "light"
    rendering_delay: int = 0
    dither: bool = False
    color_mode: str = "GrayScale"
    remove_gamma: bool = False
    black_level: str = "0%"
    white_level: str = "100%"
    grayscale_depth: int = 8
    battery_webhook: Optional[str] = None


@dataclass(frozen=True)
class Settings:
    base_url: str
    access_token: str
    pages: Tuple[PageSpec, ...]
    language: str = "en"
    rendering_timeout: int = 10000
    browser_launch_timeout: int = 30000
    refresh_interval: int = 60
    debug: bool = False
    ignore_certificate_errors: bool = False
    log_level: str = "INFO"


def _page_suffix(number: int) -> str:
    return "" if number == 1 else f"_{number}"


def load_pages(config: Config) -> List[PageSpec]:
    """Read page entries until HA_SCREENSHOT_URL{suffix} is missing."""
    pages: List[PageSpec] = []
    number = 1
    while config.has(f"HA_SCREENSHOT_URL{_page_suffix(number)}"):
        suffix = _page_suffix(number)
        pages.append(
            PageSpec(
                screenshot_url=config.get(f"HA_SCREENSHOT_URL{suffix}", ""),
                output_path=config.get(f"OUTPUT_PATH{suffix}") or f"output/cover{suffix}.png",
                rotation=config.get_int(f"ROTATION{suffix}", 0),
                width=config.get_int(f"RENDERING_SCREEN_WIDTH{suffix}", 600),
                height=config.get_int(f"RENDERING_SCREEN_HEIGHT{suffix}", 800),
                scaling=config.get_float(f"SCALING{suffix}", 1.0),
                prefers_color_scheme=config.get(f"PREFERS_COLOR_SCHEME{suffix}") or "light",
                rendering_delay=config.get_int(f"RENDERING_DELAY{suffix}", 0),
                dither=config.get_bool(f"DITHER{suffix}"),
                color_mode=config.get(f"COLOR_MODE{suffix}") or "GrayScale",
                remove_gamma=config.get_bool(f"REMOVE_GAMMA{suffix}"),
                black_level=config.get(f"BLACK_LEVEL{suffix}") or "0%",
                white_level=config.get(f"WHITE_LEVEL{suffix}") or "100%",
                grayscale_depth=config.get_int(f"GRAYSCALE_DEPTH{suffix}", 8),
                battery_webhook=config.get(f"HA_BATTERY_WEBHOOK{suffix}") or None,
            )
        )
        number += 1
    return pages


def load_settings(config: Optional[Config] = None) -> Settings:
    if config is None:
        config = Config()

    base_url = config.get("HA_BASE_URL") or ""
    return Settings(
        base_url=base_url.rstrip("/"),
        access_token=config.get("HA_ACCESS_TOKEN") or "",
        pages=tuple(load_pages(config)),
        language=config.get("LANGUAGE") or "en",
        rendering_timeout=config.get_int("RENDERING_TIMEOUT", 10000),
        browser_launch_timeout=config.get_int("BROWSER_LAUNCH_TIMEOUT", 30000),
        refresh_interval=config.get_int("REFRESH_INTERVAL", 60),
        debug=config.get_bool("DEBUG"),
        ignore_certificate_errors=config.get_bool("UNSAFE_IGNORE_CERTIFICATE_ERRORS"),
        log_level=(config.get("LOG_LEVEL") or "INFO").upper(),
    )


def validate(settings: Settings) -> None:
    """
    Check every page entry before the browser is launched.

    Raises:
        ConfigurationError: on the first unusable entry; there is no
            partial start with the remaining pages.
    """
    if not settings.pages:
        raise ConfigurationError("No pages configured, please check your configuration")
    if not settings.base_url:
        raise ConfigurationError("HA_BASE_URL is not set")
    if settings.log_level not in LOG_LEVELS:
        raise ConfigurationError(f"Invalid LOG_LEVEL: {settings.log_level}")

    for number, page in enumerate(settings.pages, start=1):
        if page.rotation % 90 != 0:
            raise ConfigurationError(f"Invalid rotation value for entry {number}: {page.rotation}")
        if page.width <= 0 or page.height <= 0:
            raise ConfigurationError(
                f"Invalid rendering size for entry {number}: {page.width}x{page.height}"
            )
        if page.scaling <= 0:
            raise ConfigurationError(f"Invalid scaling value for entry {number}: {page.scaling}")
        if not 1 <= page.grayscale_depth <= 8:
            raise ConfigurationError(
                f"Invalid grayscale depth for entry {number}: {page.grayscale_depth}"
            )
        if page.color_mode.lower() not in [mode.lower() for mode in COLOR_MODES]:
            raise ConfigurationError(f"Invalid color mode for entry {number}: {page.color_mode}")
        if page.prefers_color_scheme not in COLOR_SCHEMES:
            raise ConfigurationError(
                f"Invalid color scheme for entry {number}: {page.prefers_color_scheme}"
            )


__all__ = [
    "Config",
    "ConfigurationError",
    "PageSpec",
    "Settings",
    "load_pages",
    "load_settings",
    "validate",
]
