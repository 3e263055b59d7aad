#!/usr/bin/env python3
"""
🐧 PNGN Hilite - Color Stack Resolver
=====================================
Copyright (c) 2025 PNGN-Tec LLC

Assigns the active display color to every text span of a highlight event
stream. Categories nest, so the active color is the top of a stack whose
bottom is always the reset color: text outside any category is still
colored correctly, and leaving an inner category restores the outer one.

The resolved (color, text) pairs are computed once per request and shared
by the ANSI and the image projection.
"""

import logging
from typing import Iterable, List, NamedTuple, Sequence, Union

from config import RESET, Color
from hilite_errors import MalformedEventStream, UnknownCategory
from hilite_highlight import EnterCategory, ExitCategory, HighlightEvent, TextSpan

logger = logging.getLogger('hilite.stack')


class ResolvedSpan(NamedTuple):
    color: Color
    text: str


class ColorStack:
    """
    Non-empty stack of colors.

    The bottom element is fixed at construction and can never be popped,
    so ``top`` always has a value.
    """

    __slots__ = ('_base', '_open')

    def __init__(self, base: Color = RESET):
        self._base = base
        self._open: List[Color] = []

    @property
    def top(self) -> Color:
        return self._open[-1] if self._open else self._base

    @property
    def base(self) -> Color:
        return self._base

    @property
    def depth(self) -> int:
        """Open categories plus the bottom element"""
        return len(self._open) + 1

    def push(self, color: Color):
        self._open.append(color)

    def pop(self) -> Color:
        if not self._open:
            raise MalformedEventStream("exit without a matching enter")
        return self._open.pop()


def resolve_events(events: Iterable[HighlightEvent],
                   source: Union[str, bytes],
                   formats: Sequence[Color],
                   base: Color = RESET) -> List[ResolvedSpan]:
    """
    Resolve an event stream into (color, text) pairs.

    Args:
        events: Well-formed highlight events
        source: The highlighted source (spans are UTF-8 byte ranges into it)
        formats: Category id -> color table
        base: Color of text outside every category

    Raises:
        UnknownCategory: an EnterCategory id has no color
        MalformedEventStream: enters and exits do not balance
    """
    data = source.encode('utf-8') if isinstance(source, str) else source
    stack = ColorStack(base)
    spans = []

    for event in events:
        if isinstance(event, EnterCategory):
            if not 0 <= event.index < len(formats):
                raise UnknownCategory(event.index, len(formats))
            stack.push(formats[event.index])
        elif isinstance(event, TextSpan):
            spans.append(ResolvedSpan(stack.top, data[event.start:event.end].decode('utf-8')))
        elif isinstance(event, ExitCategory):
            stack.pop()
        else:
            raise MalformedEventStream(f"unexpected event {event!r}")

    if stack.depth != 1:
        raise MalformedEventStream(f"{stack.depth - 1} categories left open")

    logger.debug(f"Resolved {len(spans)} spans")
    return spans
