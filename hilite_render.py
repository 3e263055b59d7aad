#!/usr/bin/env python3
"""
🐧 PNGN Hilite - Code Image Renderer
====================================
Copyright (c) 2025 PNGN-Tec LLC

Highlighted Code Rasterization System
=====================================
Renders segmented, colored lines of code into a framed RGBA image and
encodes it as PNG for upload to Discord.

Core Features
=============
- Rounded frame drawn procedurally (border box plus inset background box)
- Alternative 9-slice frame from a small square border asset
- Glyph coverage masks cached per character at the fixed scale
- Kerning-aware horizontal layout shared with the text metrics
- Source-over alpha compositing of every glyph pixel onto the canvas
- Area guard before allocation and upload ceiling after encoding

Technical Implementation
========================
- The canvas is a numpy RGBA buffer; frame primitives are slice fills
- Glyph masks come from Pillow (``anchor="ls"`` so offsets are relative to
  the baseline) and are blended with numpy:
      dst = src * a + dst * (1 - a),  a = coverage * color alpha
- Glyph draws are clipped to the content region, the frame is never
  touched by text
- Line rows are ``ascent + descent + line_spacing`` pixels tall and the
  baseline sits ``ascent`` pixels below the top of each row
- Output is PNG only; lossy formats would ruin small text

Layout
======
    +--------------------------------------+
    | frame (inset = radius + border)      |
    |   +------------------------------+   |
    |   | content: widest line x       |   |
    |   |          line_height * lines |   |
    |   +------------------------------+   |
    +--------------------------------------+

Right-to-left text and shaping beyond advance + kerning are not supported.

Module Interface
================
- ImageCompositor: layout(), new_canvas(), draw_lines(), compose(), render()
- Canvas: RGBA buffer with fill and blend primitives
- NineSliceBorder / build_border_asset(): 9-slice frame support
- draw_rounded_box(): filled rounded rectangle primitive
- encode_png(): lossless encoding with the upload ceiling
- load_font() / load_border(): startup asset loading
"""

import io
import time
import logging
import threading
from collections import OrderedDict, deque
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, NamedTuple, Optional, Sequence, Tuple

import numpy as np
from PIL import Image, ImageDraw, ImageFont

from config import FrameStyle, RenderSettings, RGBAColor
from fonts.font_config import BORDER_ASSET_FILE, FONT_DIRS, FONT_FILES
from hilite_errors import EncodingFailed, OutputTooLarge
from hilite_lines import Line
from hilite_width import FontMetrics, LayoutMetrics, measure_block

# ============================================================================
# LOGGING CONFIGURATION
# ============================================================================

logger = logging.getLogger('hilite.render')

UPLOAD_LIMIT = 8_000_000
RENDER_TIME_HISTORY = 100

# ============================================================================
# GEOMETRY AND CANVAS
# ============================================================================

class Rect(NamedTuple):
    """Axis-aligned rectangle; right/bottom are inclusive like pixel indices"""
    x: int
    y: int
    width: int
    height: int

    @property
    def right(self) -> int:
        return self.x + self.width - 1

    @property
    def bottom(self) -> int:
        return self.y + self.height - 1


class Canvas:
    """
    RGBA pixel buffer with a frame region and a content region.

    Pixels start fully transparent so anything outside the frame's rounded
    corners stays transparent in the encoded image.
    """

    def __init__(self, width: int, height: int, content: Optional[Rect] = None):
        self.buffer = np.zeros((height, width, 4), dtype=np.uint8)
        self.content = content if content is not None else Rect(0, 0, width, height)

    @property
    def width(self) -> int:
        return self.buffer.shape[1]

    @property
    def height(self) -> int:
        return self.buffer.shape[0]

    def _clip(self, x0: int, y0: int, x1: int, y1: int,
              clip: Optional[Rect] = None) -> Tuple[int, int, int, int]:
        """Intersect a half-open box with the canvas (and an optional clip rect)"""
        left, top, right, bottom = 0, 0, self.width, self.height
        if clip is not None:
            left, top = max(left, clip.x), max(top, clip.y)
            right, bottom = min(right, clip.x + clip.width), min(bottom, clip.y + clip.height)
        return max(x0, left), max(y0, top), min(x1, right), min(y1, bottom)

    def fill_rect(self, rect: Rect, color: RGBAColor):
        x0, y0, x1, y1 = self._clip(rect.x, rect.y, rect.x + rect.width, rect.y + rect.height)
        if x0 < x1 and y0 < y1:
            self.buffer[y0:y1, x0:x1] = color

    def fill_circle(self, cx: int, cy: int, radius: int, color: RGBAColor):
        """Filled disc centered on a pixel"""
        x0, y0, x1, y1 = self._clip(cx - radius, cy - radius, cx + radius + 1, cy + radius + 1)
        if x0 >= x1 or y0 >= y1:
            return
        dy = np.arange(y0, y1)[:, None] - cy
        dx = np.arange(x0, x1)[None, :] - cx
        # r*(r+1) matches the midpoint circle's silhouette better than r*r
        mask = dx * dx + dy * dy <= radius * radius + radius
        self.buffer[y0:y1, x0:x1][mask] = color

    def blend_coverage(self, x: int, y: int, coverage: np.ndarray, color: RGBAColor,
                       clip: Optional[Rect] = None):
        """
        Composite a coverage mask in ``color`` over the canvas.

        Args:
            x, y: Canvas position of the mask's top-left pixel
            coverage: uint8 array (height, width), 255 = fully covered
            color: Source RGBA
            clip: Only pixels inside this rect are touched
        """
        h, w = coverage.shape
        x0, y0, x1, y1 = self._clip(x, y, x + w, y + h, clip)
        if x0 >= x1 or y0 >= y1:
            return

        alpha = coverage[y0 - y:y1 - y, x0 - x:x1 - x].astype(np.float32)
        alpha *= color[3] / (255.0 * 255.0)
        alpha = alpha[..., None]

        dst = self.buffer[y0:y1, x0:x1].astype(np.float32)
        src_rgb = np.array(color[:3], dtype=np.float32)
        out = np.empty_like(dst)
        out[..., :3] = src_rgb * alpha + dst[..., :3] * (1.0 - alpha)
        out[..., 3:] = 255.0 * alpha + dst[..., 3:] * (1.0 - alpha)
        self.buffer[y0:y1, x0:x1] = np.clip(np.rint(out), 0, 255).astype(np.uint8)

    def paste(self, x: int, y: int, pixels: np.ndarray):
        """Copy RGBA pixels verbatim (no blending), clipped to the canvas"""
        h, w = pixels.shape[:2]
        x0, y0, x1, y1 = self._clip(x, y, x + w, y + h)
        if x0 < x1 and y0 < y1:
            self.buffer[y0:y1, x0:x1] = pixels[y0 - y:y1 - y, x0 - x:x1 - x]

    def to_image(self) -> Image.Image:
        return Image.fromarray(self.buffer, 'RGBA')


def draw_rounded_box(canvas: Canvas, rect: Rect, radius: int, color: RGBAColor,
                     draw_safe_area: bool):
    """
    Filled rounded rectangle.

    The rect shrunk by ``radius`` on every side is the safe area. Four edge
    rectangles cover the straight sides and four discs centered on the safe
    area's corners round them off. The safe area itself is only filled when
    asked, since an outer box gets covered by an inner one anyway.
    """
    assert rect.width >= 2 * radius
    assert rect.height >= 2 * radius
    diameter = 2 * radius
    safe = Rect(rect.x + radius, rect.y + radius, rect.width - diameter, rect.height - diameter)
    left = Rect(rect.x, safe.y, radius, safe.height)
    top = Rect(safe.x, rect.y, safe.width, radius)
    right = Rect(safe.right + 1, safe.y, radius, safe.height)
    bottom = Rect(safe.x, safe.bottom + 1, safe.width, radius)
    if draw_safe_area:
        canvas.fill_rect(safe, color)
    for edge in (left, top, right, bottom):
        canvas.fill_rect(edge, color)

    for cx, cy in ((safe.x, safe.y), (safe.x, safe.bottom),
                   (safe.right, safe.y), (safe.right, safe.bottom)):
        canvas.fill_circle(cx, cy, radius, color)


def draw_rounded_frame(canvas: Canvas, settings: RenderSettings):
    """Border-colored outer box with the background box inset by the border width"""
    border_width = settings.border_width
    full = Rect(0, 0, canvas.width, canvas.height)
    inner = Rect(border_width, border_width,
                 canvas.width - 2 * border_width, canvas.height - 2 * border_width)
    draw_rounded_box(canvas, full, settings.border_radius, settings.border, False)
    draw_rounded_box(canvas, inner, settings.radius, settings.background, True)


# ============================================================================
# 9-SLICE BORDER
# ============================================================================

class NineSliceBorder:
    """
    Frame built from a square border asset of odd size ``2k + 1``.

    The asset splits into a symmetric 3x3 grid: ``k x k`` corners, 1 pixel
    wide edges and a single center pixel. Corners are copied verbatim, edges
    are stretched along the sides and the center fills the interior, leaving
    a content region inset by ``k``.
    """

    def __init__(self, image: Image.Image):
        width, height = image.size
        if width != height or width % 2 == 0:
            raise ValueError(f"Border asset must be square with odd size, got {width}x{height}")
        self.pixels = np.array(image.convert('RGBA'), dtype=np.uint8)
        self.inset = width // 2

    def paint(self, canvas: Canvas):
        k = self.inset
        p = self.pixels
        b = canvas.buffer
        h, w = canvas.height, canvas.width
        if w < 2 * k or h < 2 * k:
            raise ValueError(f"Canvas {w}x{h} is smaller than the border")

        # Center
        b[k:h - k, k:w - k] = p[k, k]
        # Edges
        b[:k, k:w - k] = p[:k, k:k + 1]
        b[h - k:, k:w - k] = p[k + 1:, k:k + 1]
        b[k:h - k, :k] = p[k:k + 1, :k]
        b[k:h - k, w - k:] = p[k:k + 1, k + 1:]
        # Corners
        canvas.paste(0, 0, p[:k, :k])
        canvas.paste(w - k, 0, p[:k, k + 1:])
        canvas.paste(0, h - k, p[k + 1:, :k])
        canvas.paste(w - k, h - k, p[k + 1:, k + 1:])


def build_border_asset(settings: RenderSettings) -> Image.Image:
    """Draw the default 9-slice asset with the rounded frame primitive"""
    size = 2 * settings.border_radius + 1
    canvas = Canvas(size, size)
    draw_rounded_frame(canvas, settings)
    return canvas.to_image()


# ============================================================================
# GLYPH CACHE
# ============================================================================

@dataclass(frozen=True)
class Glyph:
    """Coverage mask positioned relative to the pen on the baseline"""
    left: int
    top: int
    coverage: np.ndarray


class GlyphCache:
    """
    Thread-safe LRU cache of rasterized glyph coverage masks.

    One font at one size; masks are read-only once cached and may be
    blended by several renders at the same time.
    """

    def __init__(self, font: ImageFont.FreeTypeFont, cache_size: int = 1024):
        self.font = font
        self._cache: "OrderedDict[str, Glyph]" = OrderedDict()
        self._cache_size = max(1, cache_size)
        self._lock = threading.Lock()
        self.stats = {
            'cache_hits': 0,
            'cache_misses': 0,
            'cache_evictions': 0,
        }

    def get(self, char: str) -> Glyph:
        with self._lock:
            glyph = self._cache.get(char)
            if glyph is not None:
                self._cache.move_to_end(char)
                self.stats['cache_hits'] += 1
                return glyph
            self.stats['cache_misses'] += 1

        glyph = self._rasterize(char)

        with self._lock:
            while len(self._cache) >= self._cache_size:
                self._cache.popitem(last=False)
                self.stats['cache_evictions'] += 1
            self._cache[char] = glyph
        return glyph

    def _rasterize(self, char: str) -> Glyph:
        """Render one glyph's coverage at the fixed scale"""
        if char.isspace():
            return Glyph(0, 0, np.zeros((0, 0), dtype=np.uint8))

        left, top, right, bottom = self.font.getbbox(char, anchor='ls')
        width, height = right - left, bottom - top
        if width <= 0 or height <= 0:
            return Glyph(0, 0, np.zeros((0, 0), dtype=np.uint8))

        mask = Image.new('L', (width, height), 0)
        ImageDraw.Draw(mask).text((-left, -top), char, font=self.font, fill=255, anchor='ls')
        coverage = np.array(mask, dtype=np.uint8)
        coverage.setflags(write=False)
        return Glyph(int(left), int(top), coverage)

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            stats = self.stats.copy()
            stats['cached_glyphs'] = len(self._cache)
        return stats


# ============================================================================
# ENCODING
# ============================================================================

@dataclass(frozen=True)
class RenderedImage:
    """Encoded image ready to attach as a single file"""
    data: bytes
    width: int
    height: int
    filename: str = "code.png"


def encode_png(image: Image.Image, max_bytes: int = UPLOAD_LIMIT) -> bytes:
    """
    Encode losslessly as PNG and enforce the upload ceiling.

    Raises:
        EncodingFailed: Pillow could not write the image
        OutputTooLarge: encoded size exceeds ``max_bytes``
    """
    buffer = io.BytesIO()
    try:
        image.save(buffer, format='PNG', optimize=True)
    except (OSError, ValueError) as e:
        logger.error(f"PNG encoding failed: {e}")
        raise EncodingFailed(str(e)) from e

    data = buffer.getvalue()
    if len(data) > max_bytes:
        logger.warning(f"Encoded png too large ({len(data)} B > {max_bytes} B)")
        raise OutputTooLarge(len(data), max_bytes)

    logger.debug(f"Encoded png ({len(data)} B)")
    return data


# ============================================================================
# COMPOSITOR
# ============================================================================

class ImageCompositor:
    """
    Lays out and rasterizes highlighted lines.

    Holds only immutable inputs (font metrics, settings, border asset) and
    thread-safe caches, so one instance serves concurrent renders.
    """

    def __init__(self, metrics: FontMetrics, settings: RenderSettings,
                 border: Optional[NineSliceBorder] = None):
        """
        Initialize the compositor.

        Args:
            metrics: Measurements for the rendering font
            settings: Scale-applied layout settings
            border: 9-slice asset, used when the frame style asks for it
                (built from the settings if missing)
        """
        self.metrics = metrics
        self.settings = settings
        self.glyphs = GlyphCache(metrics.font, settings.cache_size)

        if settings.frame_style == FrameStyle.NINE_SLICE:
            self.border = border or NineSliceBorder(build_border_asset(settings))
            self.inset = self.border.inset
        else:
            self.border = None
            self.inset = settings.border_radius

        # Performance tracking
        self.render_times: "deque[float]" = deque(maxlen=RENDER_TIME_HISTORY)
        self.renders_completed = 0
        self._stats_lock = threading.Lock()

        logger.info(f"ImageCompositor initialized: frame={settings.frame_style.value}, "
                    f"inset={self.inset}, font_size={settings.font_size}")

    def layout(self, lines: Sequence[Line]) -> LayoutMetrics:
        """Measure lines; raises ImageTooLarge before anything is allocated"""
        return measure_block(lines, self.metrics, self.settings.line_spacing,
                             self.settings.max_render_pixels)

    def new_canvas(self, layout: LayoutMetrics) -> Canvas:
        """Allocate a canvas for a measured block and draw its frame"""
        inset = self.inset
        canvas = Canvas(layout.width + 2 * inset, layout.height + 2 * inset,
                        Rect(inset, inset, layout.width, layout.height))
        if self.border is not None:
            self.border.paint(canvas)
        else:
            draw_rounded_frame(canvas, self.settings)
        return canvas

    def draw_lines(self, canvas: Canvas, lines: Sequence[Line], layout: LayoutMetrics):
        """
        Blit every glyph of every line into the content region.

        The pen starts at the content's left edge on each line; before each
        glyph it moves by the kerning against the previous glyph of the same
        line, after it by the glyph's advance.
        """
        clip = canvas.content
        top = clip.y
        for line in lines:
            pen = float(clip.x)
            baseline = top + layout.ascent
            previous = None
            for color, text in line:
                for char in text:
                    kern, advance = self.metrics.step(previous, char)
                    pen += kern
                    glyph = self.glyphs.get(char)
                    if glyph.coverage.size:
                        canvas.blend_coverage(int(round(pen)) + glyph.left, baseline + glyph.top,
                                              glyph.coverage, color.rgba, clip)
                    pen += advance
                    previous = char
            top += layout.line_height

    def compose(self, lines: Sequence[Line]) -> Canvas:
        """Layout, frame and text; the area guard runs first"""
        layout = self.layout(lines)
        canvas = self.new_canvas(layout)
        self.draw_lines(canvas, lines, layout)
        return canvas

    def render(self, lines: Sequence[Line], max_bytes: Optional[int] = None) -> RenderedImage:
        """
        Render lines to an encoded PNG.

        Raises:
            ImageTooLarge, EncodingFailed, OutputTooLarge
        """
        start_time = time.time()
        canvas = self.compose(lines)
        data = encode_png(canvas.to_image(), max_bytes or self.settings.upload_limit)

        render_time = (time.time() - start_time) * 1000
        with self._stats_lock:
            self.render_times.append(render_time)
            self.renders_completed += 1
        logger.debug(f"Rendered {canvas.width}x{canvas.height} in {render_time:.1f}ms")
        return RenderedImage(data, canvas.width, canvas.height)

    # ============================================================================
    # STATISTICS
    # ============================================================================

    def get_stats(self) -> Dict[str, Any]:
        """Get render statistics"""
        with self._stats_lock:
            times = list(self.render_times)
            completed = self.renders_completed

        stats: Dict[str, Any] = {
            'renders_completed': completed,
            'frame_style': self.settings.frame_style.value,
            'glyph_cache': self.glyphs.get_stats(),
            'metrics': self.metrics.get_stats(),
        }
        # Timings cover the most recent renders only
        if times:
            stats['avg_render_time'] = sum(times) / len(times)
            stats['min_render_time'] = min(times)
            stats['max_render_time'] = max(times)
        return stats


# ============================================================================
# ASSET LOADING
# ============================================================================

def load_font(size: float, font_path: Optional[str] = None) -> ImageFont.FreeTypeFont:
    """
    Load the rendering font once at startup.

    An explicit path must load. Otherwise the fonts directory and common
    system locations are searched, falling back to Pillow's bundled font.
    """
    if font_path:
        font = ImageFont.truetype(font_path, size)
        logger.info(f"Loaded font from {font_path}")
        return font

    for directory in FONT_DIRS:
        for filename in FONT_FILES:
            path = Path(directory) / filename
            if path.exists():
                font = ImageFont.truetype(str(path), size)
                logger.info(f"Loaded font from {path}")
                return font

    logger.error("No suitable font found - using Pillow default")
    return ImageFont.load_default(size=size)


def load_border(asset_path: Optional[str] = None) -> Optional[NineSliceBorder]:
    """Load the 9-slice border asset, or None if there is none"""
    path = Path(asset_path) if asset_path else Path(FONT_DIRS[0]) / BORDER_ASSET_FILE
    if not path.exists():
        if asset_path:
            raise FileNotFoundError(f"Border asset not found: {path}")
        logger.info("No border asset - 9-slice frame will be built from settings")
        return None
    with Image.open(path) as image:
        border = NineSliceBorder(image)
    logger.info(f"Loaded {border.pixels.shape[1]}px border asset from {path}")
    return border
