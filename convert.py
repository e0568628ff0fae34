import io
import logging
import os
import tempfile
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from PIL import Image

from config import PageSpec

GAMMA_REMOVAL = 1.0 / 2.2


class ConversionError(Exception):
    """Raised when a raw capture cannot be turned into the output image."""


@dataclass
class StagedImage:
    """Image buffer passed between transform steps."""

    image: Image.Image
    dither: Image.Dither = Image.Dither.NONE


def parse_level(value: str) -> float:
    """Parse a level given as a percentage ("10%") or an absolute 0-255 value."""
    text = str(value).strip()
    if text.endswith("%"):
        return float(text[:-1]) * 255 / 100
    return float(text)


def _apply_table(image: Image.Image, table: List[int]) -> Image.Image:
    if image.mode in ("RGBA", "LA"):
        image = image.convert(image.mode[:-1])
    elif image.mode not in ("L", "RGB"):
        image = image.convert("RGB")
    return image.point(table * len(image.getbands()))


def gamma_table(gamma: float) -> List[int]:
    return [round(255 * (v / 255) ** (1 / gamma)) for v in range(256)]


def level_table(black: float, white: float) -> List[int]:
    if white <= black:
        raise ValueError(f"White level {white} must be above black level {black}")
    span = white - black
    return [min(255, max(0, round((v - black) * 255 / span))) for v in range(256)]


def depth_table(depth: int) -> List[int]:
    count = 2 ** depth
    step = 255 / (count - 1)
    return [round(round(v / step) * step) for v in range(256)]


def gray_palette(depth: int) -> Image.Image:
    count = 2 ** depth
    data: List[int] = []
    for i in range(count):
        value = round(i * 255 / (count - 1))
        data.extend((value, value, value))
    data.extend([0] * (768 - len(data)))
    palette = Image.new("P", (1, 1))
    palette.putpalette(data)
    return palette


def apply_gamma(staged: StagedImage, page_spec: PageSpec) -> StagedImage:
    if page_spec.remove_gamma:
        staged.image = _apply_table(staged.image, gamma_table(GAMMA_REMOVAL))
    return staged


def apply_dither(staged: StagedImage, page_spec: PageSpec) -> StagedImage:
    staged.dither = Image.Dither.FLOYDSTEINBERG if page_spec.dither else Image.Dither.NONE
    return staged


def apply_rotation(staged: StagedImage, page_spec: PageSpec) -> StagedImage:
    if page_spec.rotation % 360:
        # PIL rotates counter-clockwise
        staged.image = staged.image.rotate(
            -page_spec.rotation, expand=True, fillcolor="white"
        )
    return staged


def apply_color_mode(staged: StagedImage, page_spec: PageSpec) -> StagedImage:
    mode = page_spec.color_mode.lower()
    if mode == "grayscale":
        staged.image = staged.image.convert("L")
    elif mode == "truecolor":
        staged.image = staged.image.convert("RGB")
    else:
        raise ValueError(f"Unsupported color mode: {page_spec.color_mode}")
    return staged


def apply_levels(staged: StagedImage, page_spec: PageSpec) -> StagedImage:
    black = parse_level(page_spec.black_level)
    white = parse_level(page_spec.white_level)
    if (black, white) != (0, 255):
        staged.image = _apply_table(staged.image, level_table(black, white))
    return staged


def apply_bit_depth(staged: StagedImage, page_spec: PageSpec) -> StagedImage:
    depth = page_spec.grayscale_depth
    if depth >= 8:
        return staged
    if staged.image.mode == "L":
        quantized = staged.image.convert("RGB").quantize(
            palette=gray_palette(depth), dither=staged.dither
        )
        staged.image = quantized.convert("L")
    else:
        staged.image = _apply_table(staged.image, depth_table(depth))
    return staged


TransformStep = Callable[[StagedImage, PageSpec], StagedImage]

TRANSFORM_CHAIN: Tuple[Tuple[str, TransformStep], ...] = (
    ("gamma", apply_gamma),
    ("dither", apply_dither),
    ("rotate", apply_rotation),
    ("color_mode", apply_color_mode),
    ("levels", apply_levels),
    ("bit_depth", apply_bit_depth),
)


class KindleImageConverter:
    """Turns a raw dashboard capture into an e-ink ready grayscale PNG."""

    def __init__(self, steps: Optional[Tuple[Tuple[str, TransformStep], ...]] = None):
        self.steps = steps if steps is not None else TRANSFORM_CHAIN
        self.logger = logging.getLogger(__name__)

    def transform(self, image: Image.Image, page_spec: PageSpec) -> Image.Image:
        staged = StagedImage(image=image)
        for name, step in self.steps:
            self.logger.debug(f"Applying {name}")
            staged = step(staged, page_spec)
        return staged.image

    def convert(self, page_spec: PageSpec, input_path: str, output_path: str) -> None:
        """
        Run the transform chain on `input_path` and replace `output_path`.

        The output file is only touched after every step and the PNG
        encoding succeeded.

        Raises:
            ConversionError: wrapping the underlying failure.
        """
        self.logger.info(f"Converting {input_path} to {output_path}")
        try:
            with Image.open(input_path) as raw:
                raw.load()
                image = self.transform(raw, page_spec)
                buffer = io.BytesIO()
                image.save(buffer, format="PNG", compress_level=9)
        except (OSError, ValueError, Image.DecompressionBombError) as e:
            raise ConversionError(f"Failed to convert {input_path}: {e}") from e

        try:
            write_atomic(output_path, buffer.getvalue())
        except OSError as e:
            raise ConversionError(f"Failed to write {output_path}: {e}") from e
        self.logger.info(f"Image saved to {output_path}")


def write_atomic(path: str, data: bytes) -> None:
    directory = os.path.dirname(os.path.abspath(path))
    fd, staging = tempfile.mkstemp(dir=directory, prefix=".", suffix=".png")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
        os.replace(staging, path)
    except BaseException:
        if os.path.exists(staging):
            os.remove(staging)
        raise
