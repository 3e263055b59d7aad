import io
import dataclasses

import numpy as np
import pytest
from PIL import Image

import hilite_render
from config import BACKGROUND, BORDER, RED, RESET, FrameStyle
from hilite_errors import EncodingFailed, ImageTooLarge, OutputTooLarge
from hilite_lines import Line
from hilite_render import (
    Canvas, GlyphCache, ImageCompositor, NineSliceBorder, Rect,
    build_border_asset, draw_rounded_box, encode_png, load_border,
)
from hilite_width import LayoutMetrics

PNG_SIGNATURE = b'\x89PNG\r\n\x1a\n'
TRANSPARENT = (0, 0, 0, 0)


def text_line(text, color=RESET):
    line = Line()
    line.append(color, text)
    return line


def pixel(canvas, x, y):
    return tuple(int(v) for v in canvas.buffer[y, x])


def small_layout(width=30, height=20):
    return LayoutMetrics(line_widths=(width,), line_height=height, ascent=15,
                         width=width, height=height)


# ============================================================================
# PRIMITIVES
# ============================================================================

def test_rounded_box():
    red = (255, 0, 0, 255)
    canvas = Canvas(20, 20)
    draw_rounded_box(canvas, Rect(0, 0, 20, 20), 5, red, True)
    assert pixel(canvas, 0, 0) == TRANSPARENT
    assert pixel(canvas, 19, 19) == TRANSPARENT
    assert pixel(canvas, 10, 0) == red
    assert pixel(canvas, 0, 10) == red
    assert pixel(canvas, 10, 10) == red

    hollow = Canvas(20, 20)
    draw_rounded_box(hollow, Rect(0, 0, 20, 20), 5, red, False)
    assert pixel(hollow, 10, 10) == TRANSPARENT
    assert pixel(hollow, 10, 0) == red


def test_blend_coverage_source_over():
    canvas = Canvas(2, 1)
    canvas.buffer[:] = (0, 0, 0, 255)
    coverage = np.array([[255, 128]], dtype=np.uint8)
    canvas.blend_coverage(0, 0, coverage, (200, 100, 50, 255))
    assert pixel(canvas, 0, 0) == (200, 100, 50, 255)
    assert pixel(canvas, 1, 0) == (100, 50, 25, 255)


def test_blend_coverage_is_clipped():
    canvas = Canvas(4, 4)
    coverage = np.full((4, 4), 255, dtype=np.uint8)
    canvas.blend_coverage(-2, -2, coverage, (255, 255, 255, 255), clip=Rect(1, 1, 2, 2))
    assert pixel(canvas, 1, 1) == (255, 255, 255, 255)
    assert pixel(canvas, 0, 0) == TRANSPARENT
    assert pixel(canvas, 2, 2) == TRANSPARENT


# ============================================================================
# FRAMES
# ============================================================================

def test_rounded_frame(metrics, settings):
    compositor = ImageCompositor(metrics, settings)
    inset = settings.border_radius
    canvas = compositor.new_canvas(small_layout())

    assert (canvas.width, canvas.height) == (30 + 2 * inset, 20 + 2 * inset)
    assert canvas.content == Rect(inset, inset, 30, 20)
    assert pixel(canvas, 0, 0) == TRANSPARENT
    assert pixel(canvas, 25, 0) == BORDER
    assert pixel(canvas, 25, settings.border_width) == BACKGROUND
    assert pixel(canvas, 25, 20) == BACKGROUND


def test_nine_slice_stretches_edges():
    asset = np.zeros((3, 3, 4), dtype=np.uint8)
    for y in range(3):
        for x in range(3):
            asset[y, x] = (x * 80, y * 80, 7, 255)
    border = NineSliceBorder(Image.fromarray(asset, 'RGBA'))
    assert border.inset == 1

    canvas = Canvas(6, 5, Rect(1, 1, 4, 3))
    border.paint(canvas)
    b = canvas.buffer
    assert (b[0, 0] == asset[0, 0]).all()
    assert (b[0, 5] == asset[0, 2]).all()
    assert (b[4, 0] == asset[2, 0]).all()
    assert (b[4, 5] == asset[2, 2]).all()
    assert (b[0, 1:5] == asset[0, 1]).all()
    assert (b[4, 1:5] == asset[2, 1]).all()
    assert (b[1:4, 0] == asset[1, 0]).all()
    assert (b[1:4, 5] == asset[1, 2]).all()
    assert (b[1:4, 1:5] == asset[1, 1]).all()


def test_nine_slice_rejects_bad_assets():
    with pytest.raises(ValueError):
        NineSliceBorder(Image.new('RGBA', (4, 4)))
    with pytest.raises(ValueError):
        NineSliceBorder(Image.new('RGBA', (5, 3)))


def test_default_border_asset_matches_rounded_frame(metrics, settings):
    asset = build_border_asset(settings)
    assert asset.size == (2 * settings.border_radius + 1,) * 2

    nine_slice = dataclasses.replace(settings, frame_style=FrameStyle.NINE_SLICE)
    rounded = ImageCompositor(metrics, settings).new_canvas(small_layout())
    sliced = ImageCompositor(metrics, nine_slice).new_canvas(small_layout())
    assert sliced.content == rounded.content
    assert np.array_equal(sliced.buffer, rounded.buffer)


def test_missing_border_asset():
    assert load_border(None) is None
    with pytest.raises(FileNotFoundError):
        load_border("/nonexistent/border.png")


# ============================================================================
# TEXT
# ============================================================================

def test_glyph_cache(font):
    glyphs = GlyphCache(font, cache_size=8)
    first = glyphs.get("a")
    assert glyphs.get("a") is first
    assert first.coverage.size > 0
    assert first.top < 0  # above the baseline
    assert glyphs.get(" ").coverage.size == 0
    stats = glyphs.get_stats()
    assert stats['cache_hits'] == 1
    assert stats['cached_glyphs'] == 2


def test_scenario_d_block_layout_and_frame(metrics, settings):
    settings = dataclasses.replace(settings, max_render_pixels=10 ** 8)
    compositor = ImageCompositor(metrics, settings)
    lines = [text_line((f"j{i} " + "fn main() { let _x = 1; }" * 4)[:80]) for i in range(10)]
    assert all(len(line.text) == 80 for line in lines)

    layout = compositor.layout(lines)
    canvas = compositor.new_canvas(layout)
    frame = canvas.buffer.copy()
    compositor.draw_lines(canvas, lines, layout)

    content = canvas.content
    assert content.height == 10 * layout.line_height
    assert content.width == max(metrics.line_widths(lines))

    inside = np.zeros(frame.shape[:2], dtype=bool)
    inside[content.y:content.y + content.height, content.x:content.x + content.width] = True
    assert np.array_equal(canvas.buffer[~inside], frame[~inside])
    assert not np.array_equal(canvas.buffer[inside], frame[inside])


def test_text_is_drawn_in_segment_color(metrics, settings):
    compositor = ImageCompositor(metrics, settings)
    canvas = compositor.compose([text_line("HHHH", RED)])
    content = canvas.content
    region = canvas.buffer[content.y:content.y + content.height,
                           content.x:content.x + content.width].reshape(-1, 4)
    reddest = region[np.argmax(region[:, 0].astype(int) - region[:, 1])]
    assert reddest[0] >= 200 and reddest[1] <= 60
    assert (region == BACKGROUND).all(axis=1).any()


def test_area_guard_runs_before_allocation(metrics, settings, monkeypatch):
    def boom(*args, **kwargs):
        raise AssertionError("canvas allocated")

    monkeypatch.setattr(hilite_render, "Canvas", boom)
    compositor = ImageCompositor(metrics, dataclasses.replace(settings, max_render_pixels=1000))
    with pytest.raises(ImageTooLarge):
        compositor.compose([text_line("x" * 200)] * 20)


# ============================================================================
# ENCODING
# ============================================================================

def test_encode_png():
    data = encode_png(Image.new('RGBA', (4, 4), BACKGROUND))
    assert data.startswith(PNG_SIGNATURE)
    with pytest.raises(OutputTooLarge):
        encode_png(Image.new('RGBA', (4, 4)), max_bytes=10)
    with pytest.raises(EncodingFailed):
        encode_png(Image.new('CMYK', (4, 4)))


def test_render_end_to_end(metrics, settings):
    compositor = ImageCompositor(metrics, settings)
    rendered = compositor.render([text_line("print('hi')"), text_line("")])
    assert rendered.filename == "code.png"
    with Image.open(io.BytesIO(rendered.data)) as image:
        assert image.size == (rendered.width, rendered.height)
        assert image.mode == 'RGBA'
    assert compositor.get_stats()['renders_completed'] == 1

    with pytest.raises(OutputTooLarge):
        compositor.render([text_line("print('hi')")], max_bytes=50)


def test_render_timing_history_is_bounded(metrics, settings, monkeypatch):
    monkeypatch.setattr(hilite_render, 'RENDER_TIME_HISTORY', 2)
    compositor = ImageCompositor(metrics, settings)
    for _ in range(3):
        compositor.render([text_line("x")])
    assert len(compositor.render_times) == 2
    assert compositor.get_stats()['renders_completed'] == 3
