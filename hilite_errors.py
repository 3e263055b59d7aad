#!/usr/bin/env python3
"""
🐧 PNGN Hilite - Error Taxonomy
===============================
Copyright (c) 2025 PNGN-Tec LLC

Every request-level failure is one member of ``ErrorKind``. Each kind has
its own exception class so callers can catch precisely, and every class
carries its kind so the service can map it to a user-facing message at the
boundary without string matching.

Internal invariant violations (a malformed event stream, an unknown
category id) are not request-level failures; they derive from
``RuntimeError`` and signal a bug in a collaborator.
"""

from enum import Enum
from typing import Optional


class ErrorKind(Enum):
    HIGHLIGHTER_FAULT = "highlighter_fault"
    LINE_TOO_LONG = "line_too_long"
    IMAGE_TOO_LARGE = "image_too_large"
    ENCODING_FAILED = "encoding_failed"
    OUTPUT_TOO_LARGE = "output_too_large"
    RENDER_IN_PROGRESS = "render_in_progress"


class HiliteError(Exception):
    """Base class for recoverable, request-level failures"""

    kind: ErrorKind

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail or self.kind.value)
        self.detail = detail


class HighlighterFault(HiliteError):
    """The event producer failed for reasons unrelated to the code itself"""
    kind = ErrorKind.HIGHLIGHTER_FAULT


class LineTooLong(HiliteError):
    """A single serialized line cannot fit in one message"""
    kind = ErrorKind.LINE_TOO_LONG

    def __init__(self, line_number: int, length: int, limit: int):
        super().__init__(f"line {line_number} needs {length} characters, limit is {limit}")
        self.line_number = line_number
        self.length = length
        self.limit = limit


class ImageTooLarge(HiliteError):
    """Projected pixel area exceeds the pre-allocation ceiling"""
    kind = ErrorKind.IMAGE_TOO_LARGE

    def __init__(self, width: int, height: int, max_pixels: int):
        super().__init__(f"{width}x{height} exceeds {max_pixels} pixels")
        self.width = width
        self.height = height
        self.max_pixels = max_pixels


class EncodingFailed(HiliteError):
    """The raster could not be serialized"""
    kind = ErrorKind.ENCODING_FAILED


class OutputTooLarge(HiliteError):
    """Encoded image exceeds the upload ceiling"""
    kind = ErrorKind.OUTPUT_TOO_LARGE

    def __init__(self, size: int, limit: int):
        super().__init__(f"encoded image is {size} B, limit is {limit} B")
        self.size = size
        self.limit = limit


class RenderInProgress(HiliteError):
    """The identity already has a render in flight"""
    kind = ErrorKind.RENDER_IN_PROGRESS

    def __init__(self, identity: str):
        super().__init__(f"render already in progress for {identity}")
        self.identity = identity


# ============================================================================
# INTERNAL INVARIANT VIOLATIONS
# ============================================================================

class MalformedEventStream(RuntimeError):
    """Unbalanced enter/exit events from the highlighter"""


class UnknownCategory(RuntimeError):
    """Category id with no entry in the color table"""

    def __init__(self, index: int, size: int):
        super().__init__(f"category {index} is not in a table of {size} colors")
        self.index = index
