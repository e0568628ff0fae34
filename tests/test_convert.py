from __future__ import annotations

import pytest
from PIL import Image

from conftest import write_capture
from convert import (
    TRANSFORM_CHAIN,
    ConversionError,
    KindleImageConverter,
    StagedImage,
    apply_bit_depth,
    apply_color_mode,
    apply_dither,
    apply_gamma,
    apply_levels,
    apply_rotation,
    parse_level,
)


def test_chain_order_is_fixed():
    assert [name for name, _ in TRANSFORM_CHAIN] == [
        "gamma",
        "dither",
        "rotate",
        "color_mode",
        "levels",
        "bit_depth",
    ]


def test_gamma_removal_darkens_midtones(make_page_spec):
    staged = StagedImage(Image.new("L", (4, 4), 128))
    apply_gamma(staged, make_page_spec(remove_gamma=True))
    assert staged.image.getpixel((0, 0)) < 64


def test_gamma_is_identity_unless_requested(make_page_spec):
    staged = StagedImage(Image.new("L", (4, 4), 128))
    apply_gamma(staged, make_page_spec(remove_gamma=False))
    assert staged.image.getpixel((0, 0)) == 128


def test_dither_step_records_method(make_page_spec):
    staged = apply_dither(StagedImage(Image.new("L", (2, 2))), make_page_spec(dither=True))
    assert staged.dither == Image.Dither.FLOYDSTEINBERG
    staged = apply_dither(staged, make_page_spec(dither=False))
    assert staged.dither == Image.Dither.NONE


def test_rotation_is_clockwise(make_page_spec):
    image = Image.new("L", (40, 20), 255)
    image.putpixel((0, 0), 0)
    staged = apply_rotation(StagedImage(image), make_page_spec(rotation=90))
    assert staged.image.size == (20, 40)
    # top-left corner ends up top-right after a clockwise quarter turn
    assert staged.image.getpixel((19, 0)) == 0


def test_color_mode_grayscale_and_truecolor(make_page_spec):
    rgb = Image.new("RGB", (2, 2), (255, 0, 0))
    assert apply_color_mode(StagedImage(rgb), make_page_spec(color_mode="GrayScale")).image.mode == "L"
    assert apply_color_mode(StagedImage(rgb), make_page_spec(color_mode="TrueColor")).image.mode == "RGB"


@pytest.mark.parametrize("value, expected", [("0%", 0), ("100%", 255), ("50%", 127.5), ("64", 64)])
def test_parse_level(value, expected):
    assert parse_level(value) == expected


def test_levels_stretch_range(make_page_spec):
    image = Image.new("L", (3, 1))
    image.putdata([51, 128, 204])
    staged = apply_levels(StagedImage(image), make_page_spec(black_level="20%", white_level="80%"))
    assert list(staged.image.getdata()) == [0, 128, 255]


def test_levels_rejects_inverted_range(make_page_spec):
    with pytest.raises(ValueError):
        apply_levels(StagedImage(Image.new("L", (1, 1))), make_page_spec(black_level="90%", white_level="10%"))


@pytest.mark.parametrize("dither", [False, True])
def test_bit_depth_limits_gray_levels(make_page_spec, dither):
    gradient = Image.linear_gradient("L").resize((64, 64))
    staged = StagedImage(gradient)
    apply_dither(staged, make_page_spec(dither=dither))
    apply_bit_depth(staged, make_page_spec(grayscale_depth=2))
    assert staged.image.mode == "L"
    assert set(staged.image.getdata()) <= {0, 85, 170, 255}


def test_convert_writes_rotated_grayscale_png(tmp_path, make_page_spec):
    spec = make_page_spec(rotation=90, grayscale_depth=4, dither=True, remove_gamma=True)
    temp = write_capture(tmp_path / "cover.png.temp", size=(800, 600))
    output = tmp_path / "cover.png"

    KindleImageConverter().convert(spec, str(temp), str(output))

    with Image.open(output) as result:
        assert result.format == "PNG"
        assert result.mode == "L"
        assert result.size == (600, 800)
    assert [p.name for p in tmp_path.iterdir() if p.name.startswith(".")] == []


def test_failed_conversion_leaves_existing_output(tmp_path, make_page_spec):
    output = tmp_path / "cover.png"
    write_capture(output)
    before = output.read_bytes()
    broken = tmp_path / "cover.png.temp"
    broken.write_bytes(b"not an image")

    with pytest.raises(ConversionError):
        KindleImageConverter().convert(make_page_spec(), str(broken), str(output))

    assert output.read_bytes() == before


def test_failing_step_leaves_existing_output(tmp_path, make_page_spec):
    output = tmp_path / "cover.png"
    write_capture(output)
    before = output.read_bytes()
    temp = write_capture(tmp_path / "cover.png.temp")

    def explode(staged, page_spec):
        raise ValueError("boom")

    converter = KindleImageConverter(steps=(("gamma", apply_gamma), ("explode", explode)))
    with pytest.raises(ConversionError, match="boom"):
        converter.convert(make_page_spec(), str(temp), str(output))

    assert output.read_bytes() == before


def test_oversized_capture_is_a_conversion_error(tmp_path, make_page_spec, monkeypatch):
    temp = write_capture(tmp_path / "cover.png.temp")
    monkeypatch.setattr("PIL.Image.MAX_IMAGE_PIXELS", 1000)

    with pytest.raises(ConversionError):
        KindleImageConverter().convert(make_page_spec(), str(temp), str(tmp_path / "cover.png"))

    assert not (tmp_path / "cover.png").exists()
