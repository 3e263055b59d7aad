#!/usr/bin/env python3
"""
🐧 PNGN Hilite - Text Metrics Module
====================================
Copyright (c) 2025 PNGN-Tec LLC

Pixel Width Calculation System
==============================
Measures rendered text for the image projection: the width of a line in
pixels at a fixed font and scale, and the size of a whole block of lines.

Core Features
=============
- Glyph-by-glyph accumulation of advance widths plus pairwise kerning
- Whitespace counts (it draws nothing but still advances the cursor)
- Width never decreases when text is appended
- Thread-safe caching of advances and kerning pairs with memory bounds
- Pre-allocation area guard for whole blocks

Technical Implementation
========================
Measuring a string's drawn bounding box undercounts leading and trailing
whitespace. Instead every glyph contributes its advance width, plus the
kerning adjustment against the glyph before it:

    kerning(a, b) = length("ab") - length("a") - length("b")

Both terms come from Pillow's ``FreeTypeFont.getlength`` and are cached,
so a block of code touches FreeType once per distinct character and pair.

Module Interface
================
- FontMetrics: Cached per-font measurements
- LayoutMetrics: Measured block (line widths, line height, totals)
- measure_block(): Measure lines and apply the area guard

Example Usage
=============
```python
from PIL import ImageFont
from hilite_width import FontMetrics

metrics = FontMetrics(ImageFont.truetype("DejaVuSansMono.ttf", 28))
metrics.line_width("    return x")   # leading spaces count
```
"""

import math
import threading
import logging
from typing import Dict, List, Optional, Sequence, Tuple, Union
from collections import OrderedDict
from dataclasses import dataclass

from hilite_errors import ImageTooLarge
from hilite_lines import Line

# Configure logging
logger = logging.getLogger('hilite.width')


@dataclass(frozen=True)
class LayoutMetrics:
    """
    Measured block of lines.

    Attributes:
        line_widths: Pixel width of each line
        line_height: Fixed row height (ascent + descent + spacing)
        ascent: Baseline offset from the top of a row
        width: Widest line
        height: line_height * number of lines
    """
    line_widths: Tuple[int, ...]
    line_height: int
    ascent: int
    width: int
    height: int

    @property
    def area(self) -> int:
        return self.width * self.height


class FontMetrics:
    """
    Thread-safe pixel measurements for one font at one size.

    The font is treated as immutable and may be shared by concurrent
    renders; the caches are guarded by an internal lock.

    Attributes:
        stats: Dictionary containing measurement statistics
    """

    def __init__(self, font, cache_size: int = 1024):
        """
        Initialize metrics for a font.

        Args:
            font: Pillow FreeTypeFont (anything with getlength/getmetrics)
            cache_size: Maximum cached advances and kerning pairs each
        """
        self.font = font
        ascent, descent = font.getmetrics()
        self.ascent = int(ascent)
        self.descent = int(descent)

        self._cache_size = max(1, cache_size)
        self._advances: "OrderedDict[str, float]" = OrderedDict()
        self._kerning: "OrderedDict[Tuple[str, str], float]" = OrderedDict()
        self._lock = threading.Lock()

        self.stats = {
            'cache_hits': 0,
            'cache_misses': 0,
            'cache_evictions': 0,
            'lines_measured': 0,
        }

        logger.info(f"FontMetrics initialized: ascent={self.ascent}, "
                    f"descent={self.descent}, cache_size={self._cache_size}")

    @property
    def text_height(self) -> int:
        return self.ascent + self.descent

    def advance(self, char: str) -> float:
        """Horizontal cursor movement of a single glyph"""
        cached = self._get_cached(self._advances, char)
        if cached is not None:
            return cached
        value = float(self.font.getlength(char))
        self._cache_result(self._advances, char, value)
        return value

    def kerning(self, left: str, right: str) -> float:
        """Adjustment between two adjacent glyphs (usually 0 or negative)"""
        key = (left, right)
        cached = self._get_cached(self._kerning, key)
        if cached is not None:
            return cached
        value = float(self.font.getlength(left + right)) - self.advance(left) - self.advance(right)
        self._cache_result(self._kerning, key, value)
        return value

    def step(self, previous: Optional[str], char: str) -> Tuple[float, float]:
        """
        Cursor movement for drawing ``char`` after ``previous``.

        Returns:
            (kerning, advance) where kerning is clamped so that the glyph as a
            whole never moves the cursor backwards
        """
        advance = self.advance(char)
        kern = self.kerning(previous, char) if previous is not None else 0.0
        if advance + kern < 0:
            kern = -advance
        return kern, advance

    def line_width(self, text: str) -> float:
        """
        Pixel width of a line of text.

        Args:
            text: Plain line text (no newlines, no escape sequences)

        Returns:
            Accumulated advance and kerning width
        """
        width = 0.0
        previous = None
        for char in text:
            kern, advance = self.step(previous, char)
            width += kern + advance
            previous = char
        with self._lock:
            self.stats['lines_measured'] += 1
        return width

    def line_widths(self, lines: Sequence[Union[Line, str]]) -> List[int]:
        """Rounded-up widths of lines"""
        return [
            math.ceil(self.line_width(line if isinstance(line, str) else line.text))
            for line in lines
        ]

    def _get_cached(self, cache: OrderedDict, key):
        with self._lock:
            if key in cache:
                cache.move_to_end(key)
                self.stats['cache_hits'] += 1
                return cache[key]
            self.stats['cache_misses'] += 1
        return None

    def _cache_result(self, cache: OrderedDict, key, value: float):
        with self._lock:
            while len(cache) >= self._cache_size:
                cache.popitem(last=False)
                self.stats['cache_evictions'] += 1
            cache[key] = value

    def get_stats(self) -> Dict[str, Union[int, float]]:
        """
        Get measurement statistics.

        Returns:
            Dictionary of statistics including hit rate and cache sizes
        """
        with self._lock:
            stats = self.stats.copy()
            stats['cached_advances'] = len(self._advances)
            stats['cached_pairs'] = len(self._kerning)

        total_requests = stats['cache_hits'] + stats['cache_misses']
        stats['cache_hit_rate'] = stats['cache_hits'] / total_requests if total_requests else 0.0
        return stats


# ============================================================================
# BLOCK MEASUREMENT
# ============================================================================

def measure_block(lines: Sequence[Union[Line, str]], metrics: FontMetrics,
                  line_spacing: int, max_pixels: int) -> LayoutMetrics:
    """
    Measure a block of lines and enforce the pixel area ceiling.

    Args:
        lines: Segmented lines (or plain strings)
        metrics: Font measurements
        line_spacing: Extra pixels after every row
        max_pixels: Largest allowed width * height of the text block

    Returns:
        LayoutMetrics for the block

    Raises:
        ImageTooLarge: the block would exceed ``max_pixels``
    """
    widths = metrics.line_widths(lines)
    line_height = metrics.text_height + line_spacing
    width = max(widths, default=0)
    height = line_height * len(widths)

    if width * height > max_pixels:
        logger.warning(f"Dimensions are {width}x{height} (too big)")
        raise ImageTooLarge(width, height, max_pixels)

    logger.debug(f"Dimensions are {width}x{height}")
    return LayoutMetrics(
        line_widths=tuple(widths),
        line_height=line_height,
        ascent=metrics.ascent,
        width=width,
        height=height,
    )
