#!/usr/bin/env python3
"""
🐧 PNGN Hilite - ANSI Chunk Formatter
=====================================
Copyright (c) 2025 PNGN-Tec LLC

Serializes segmented lines into ```ansi code blocks that each fit in one
chat message.

Chunking Rules
==============
- Every line is serialized on its own and always ends in the reset state,
  so a chunk can start at any line without inheriting stray color state
- Chunk boundaries fall only between lines and depend only on the
  cumulative serialized size, never on content
- Sizes are measured after escape-sequence expansion, wrapper included:
  ``len(PROLOGUE) + len(buffer) + len(entry) + len(EPILOGUE) <= limit``
- A line that cannot fit even alone aborts the whole request; nothing is
  returned for partial sending
"""

import logging
from typing import Iterable, List

from config import RESET, Color
from hilite_errors import LineTooLong
from hilite_lines import Line

logger = logging.getLogger('hilite.ansi')

PROLOGUE = "```ansi\n"
EPILOGUE = "```"
MESSAGE_LIMIT = 2000


def serialize_line(line: Line, base: Color = RESET) -> str:
    """
    Serialize one line with SGR sequences.

    A sequence is emitted only when the color changes. Colors that carry
    extra attributes (underline) are reset before switching away from them,
    and the line ends back at ``base``.
    """
    parts = []
    current = base
    for color, text in line:
        if color != current:
            if current.sticky and color != base:
                parts.append(base.ansi)
            parts.append(color.ansi)
            current = color
        parts.append(text)
    if current != base:
        parts.append(base.ansi)
    return ''.join(parts)


def wrap_chunk(body: str) -> str:
    return PROLOGUE + body + EPILOGUE


def chunk_lines(lines: Iterable[Line], limit: int = MESSAGE_LIMIT) -> List[str]:
    """
    Pack serialized lines into message-sized chunks.

    Args:
        lines: Segmented lines in source order
        limit: Maximum characters per chunk, wrapper included

    Returns:
        Chunks in order, each at most ``limit`` characters

    Raises:
        LineTooLong: some line does not fit in a chunk by itself
    """
    overhead = len(PROLOGUE) + len(EPILOGUE)
    chunks = []
    buffer = []
    size = 0

    for number, line in enumerate(lines, 1):
        entry = serialize_line(line) + '\n'
        if overhead + size + len(entry) > limit:
            if overhead + len(entry) > limit:
                logger.warning(f"Line {number} too long: {overhead + len(entry)} > {limit}")
                raise LineTooLong(number, overhead + len(entry), limit)
            if buffer:
                chunks.append(wrap_chunk(''.join(buffer)))
                buffer, size = [], 0
        buffer.append(entry)
        size += len(entry)

    if buffer:
        chunks.append(wrap_chunk(''.join(buffer)))

    logger.debug(f"Formatted {len(chunks)} chunks")
    return chunks


def serialize_lines(lines: Iterable[Line]) -> str:
    """Unchunked ANSI text, e.g. for printing to a terminal"""
    return '\n'.join(serialize_line(line) for line in lines)
