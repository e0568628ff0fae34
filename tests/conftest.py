"""Shared fixtures: fake Playwright pages and capture images."""

from __future__ import annotations

import logging
import sys

import pytest
from PIL import Image

from config import PageSpec, Settings

logging.basicConfig(
    level=logging.DEBUG,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stderr,
    force=True,
)


def write_capture(path, size=(600, 800), color=(200, 200, 200)):
    """Write an RGB PNG the way a browser screenshot would."""
    image = Image.new("RGB", size, color)
    # black square in the top-left corner marks the orientation
    image.paste((0, 0, 0), (0, 0, 10, 20))
    image.save(str(path), format="PNG")
    return path


class FakePage:
    def __init__(self, fail_on=None, exc=None):
        self.calls = []
        self.closed = False
        self.fail_on = fail_on
        self.exc = exc

    def _record(self, name, *args, **kwargs):
        self.calls.append((name, args, kwargs))
        if name == self.fail_on:
            raise self.exc

    async def emulate_media(self, **kwargs):
        self._record("emulate_media", **kwargs)

    async def set_viewport_size(self, size):
        self._record("set_viewport_size", size)

    async def goto(self, url, **kwargs):
        self._record("goto", url, **kwargs)

    async def wait_for_selector(self, selector, **kwargs):
        self._record("wait_for_selector", selector, **kwargs)

    async def add_style_tag(self, **kwargs):
        self._record("add_style_tag", **kwargs)

    async def screenshot(self, path, type, clip):
        self._record("screenshot", path=path, type=type, clip=clip)
        write_capture(path, size=(clip["width"], clip["height"]))

    async def evaluate(self, script, arg=None):
        self._record("evaluate", script, arg)

    async def close(self):
        self.closed = True

    def call_names(self):
        return [name for name, _, _ in self.calls]

    def kwargs_of(self, name):
        for call_name, _, kwargs in self.calls:
            if call_name == name:
                return kwargs
        raise KeyError(name)


class FakeContext:
    def __init__(self, page_factory=FakePage):
        self.page_factory = page_factory
        self.pages = []

    async def new_page(self):
        page = self.page_factory()
        self.pages.append(page)
        return page


class FakeResponse:
    def __init__(self, status_code, reason="OK"):
        self.status_code = status_code
        self.reason = reason


class FakeSession:
    def __init__(self, status_code=200, reason="OK", exc=None):
        self.requests = []
        self.status_code = status_code
        self.reason = reason
        self.exc = exc

    def post(self, url, **kwargs):
        self.requests.append((url, kwargs))
        if self.exc is not None:
            raise self.exc
        return FakeResponse(self.status_code, self.reason)


@pytest.fixture
def make_page_spec(tmp_path):
    def _make(**overrides):
        values = {
            "screenshot_url": "/lovelace/0",
            "output_path": str(tmp_path / "output" / "cover.png"),
        }
        values.update(overrides)
        return PageSpec(**values)

    return _make


@pytest.fixture
def make_settings():
    def _make(pages, **overrides):
        values = {
            "base_url": "http://ha.local:8123",
            "access_token": "token",
            "pages": tuple(pages),
        }
        values.update(overrides)
        return Settings(**values)

    return _make
