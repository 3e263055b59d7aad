#!/usr/bin/env python3
"""
🐧 PNGN Hilite - Line Segmenter
===============================
Copyright (c) 2025 PNGN-Tec LLC

Splits resolved (color, text) spans into lines of colored segments.

A single span may cross any number of line boundaries. Newlines are
consumed: no segment ever contains one, and joining the lines' text with
``\\n`` gives back exactly the highlighted source.
"""

import re
from dataclasses import dataclass, field
from typing import Iterable, Iterator, List, NamedTuple

from config import Color
from hilite_stack import ResolvedSpan

ANSI_ESCAPE = re.compile(r'\x1B\[[0-?]*[ -/]*[@-~]')


class Segment(NamedTuple):
    color: Color
    text: str


@dataclass
class Line:
    """One source line as ordered colored segments"""
    segments: List[Segment] = field(default_factory=list)

    def append(self, color: Color, text: str):
        """Add text, merging into the last segment when the color matches"""
        if not text:
            return
        if self.segments and self.segments[-1].color == color:
            last = self.segments[-1]
            self.segments[-1] = Segment(color, last.text + text)
        else:
            self.segments.append(Segment(color, text))

    @property
    def text(self) -> str:
        return ''.join(seg.text for seg in self.segments)

    def __iter__(self) -> Iterator[Segment]:
        return iter(self.segments)

    def __len__(self) -> int:
        return len(self.segments)


def segment_lines(spans: Iterable[ResolvedSpan]) -> List[Line]:
    """
    Segment resolved spans into lines.

    There is always at least one line, and input ending with a newline
    ends with an empty line.
    """
    lines = [Line()]
    for color, text in spans:
        first, *rest = text.split('\n')
        lines[-1].append(color, first)
        for part in rest:
            line = Line()
            line.append(color, part)
            lines.append(line)
    return lines


def lines_to_text(lines: Iterable[Line]) -> str:
    """Plain source text of segmented lines"""
    return '\n'.join(line.text for line in lines)


def strip_ansi(text: str) -> str:
    """Remove SGR and other CSI sequences"""
    return ANSI_ESCAPE.sub('', text)
