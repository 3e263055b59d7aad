#!/usr/bin/env python3
"""
🐧 PNGN Hilite - Request Service
================================
Copyright (c) 2025 PNGN-Tec LLC

Highlight Request Handling
==========================
Glue between incoming chat messages and the projection core.

Core Features:
- Code block extraction from a message (operation, language, code)
- ``+highlight``: ANSI chunks sized for chat messages, built inline
- ``+render``: PNG image rendered on a worker thread
- Per-identity render gate, at most one render in flight per user
- User-facing error text produced only here, from ``ErrorKind``
- Runtime configuration updates through callbacks

Technical Implementation:
- Rendering is CPU bound and runs in a ThreadPoolExecutor; the calling
  task awaits the worker future, which releases the gate when it finishes
- Fonts, metrics and the border asset are loaded once by
  ``load_assets()`` and shared read-only by every render
- The render gate is explicit state created at startup and passed in

Module Interface:
- HighlightService: handle_message(), highlight_ansi(), render_image()
- RenderGate: non-blocking per-identity exclusion
- parse_codeblock() / normalize_newlines(): message preprocessing
- load_assets(): startup asset loading
- describe_error(): ErrorKind -> message text
"""

import time
import asyncio
import logging
import threading
from contextlib import contextmanager
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterator, List, NamedTuple, Optional

from config import (
    NO_HIGHLIGHT_BY_DEFAULT, FrameStyle, HiliteConfig, RenderSettings,
    get_config, register_config_callback, unregister_config_callback,
)
from hilite_ansi import chunk_lines
from hilite_errors import (
    ErrorKind, HiliteError, MalformedEventStream, RenderInProgress, UnknownCategory,
)
from hilite_highlight import Highlighter, LanguageConfig
from hilite_lines import Line, segment_lines
from hilite_render import (
    ImageCompositor, NineSliceBorder, RenderedImage, load_border, load_font,
)
from hilite_stack import resolve_events
from hilite_width import FontMetrics

# Configure logging
logger = logging.getLogger('hilite.service')

HIGHLIGHT_OP = "+highlight"
RENDER_OP = "+render"

# ============================================================================
# ERROR MESSAGES
# ============================================================================

ERROR_MESSAGES: Dict[ErrorKind, str] = {
    ErrorKind.HIGHLIGHTER_FAULT: "internal error from the highlighter (not a syntax error)",
    ErrorKind.LINE_TOO_LONG: "Line is too long",
    ErrorKind.IMAGE_TOO_LARGE: "Image is too big",
    ErrorKind.ENCODING_FAILED: "Error when encoding the image",
    ErrorKind.OUTPUT_TOO_LARGE: "Image is too large to upload",
    ErrorKind.RENDER_IN_PROGRESS: "You already have a render in progress",
}

INTERNAL_ERROR = "internal error"


def describe_error(kind: ErrorKind) -> str:
    return ERROR_MESSAGES[kind]


# ============================================================================
# MESSAGE PREPROCESSING
# ============================================================================

class Codeblock(NamedTuple):
    op: str
    lang: str
    code: str


def parse_codeblock(content: str) -> Optional[Codeblock]:
    """
    Extract the single fenced code block a message ends with.

    The text before the opening fence is the operation and the first line
    inside the block is the language. Messages with more than one block,
    without a closing fence at the very end, or with only blank code are
    ignored.
    """
    content = content.rstrip()
    if not content.endswith("\n```"):
        return None
    content = content[:-4]

    before, fence, body = content.partition("```")
    if not fence or "```" in body:
        return None

    lang, newline, code = body.partition("\n")
    if not newline or not code.strip():
        return None
    return Codeblock(before.strip(), lang, code)


def normalize_newlines(code: str) -> str:
    """``\\r\\n`` -> ``\\n`` and no leading or trailing newlines"""
    lines = [line[:-1] if line.endswith("\r") else line for line in code.split("\n")]
    return "\n".join(lines).strip("\n")


# ============================================================================
# RENDER GATE
# ============================================================================

class RenderGate:
    """
    At most one image render in flight per identity.

    Locks are created lazily on first use and never removed. Acquisition
    never waits: a second request for a busy identity is rejected at once.
    """

    def __init__(self):
        self._locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()
        self.stats = {
            'acquired': 0,
            'rejected': 0,
        }

    def _lock_for(self, identity: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(identity)
            if lock is None:
                lock = self._locks[identity] = threading.Lock()
            return lock

    def acquire(self, identity: str) -> threading.Lock:
        """
        Take the identity's slot without waiting.

        The caller owns the returned lock and must release it, from any
        thread, once the render is over.

        Raises:
            RenderInProgress: the identity already holds its slot
        """
        lock = self._lock_for(identity)
        if not lock.acquire(blocking=False):
            with self._guard:
                self.stats['rejected'] += 1
            raise RenderInProgress(identity)
        with self._guard:
            self.stats['acquired'] += 1
        return lock

    @contextmanager
    def hold(self, identity: str) -> Iterator[None]:
        """Hold the identity's slot for the duration of the block"""
        lock = self.acquire(identity)
        try:
            yield
        finally:
            lock.release()

    def busy(self, identity: str) -> bool:
        return self._lock_for(identity).locked()

    def get_stats(self) -> Dict[str, int]:
        with self._guard:
            stats = self.stats.copy()
            stats['identities'] = len(self._locks)
        return stats


# ============================================================================
# ASSETS
# ============================================================================

@dataclass(frozen=True)
class RenderAssets:
    """Font resources loaded once at startup"""
    font: Any
    metrics: FontMetrics
    border: Optional[NineSliceBorder] = None


def load_assets(config: Optional[HiliteConfig] = None) -> RenderAssets:
    """Load the font, its metrics and (for 9-slice frames) the border asset"""
    config = config or get_config()
    settings = RenderSettings.from_config(config)
    font = load_font(settings.font_size, config.rendering.font_path)
    metrics = FontMetrics(font, settings.cache_size)
    border = None
    if settings.frame_style == FrameStyle.NINE_SLICE:
        border = load_border(config.rendering.border_asset_path)
    return RenderAssets(font, metrics, border)


# ============================================================================
# SERVICE
# ============================================================================

@dataclass
class Reply:
    """What to send back for one message: chunks, one image, or an error"""
    messages: List[str] = field(default_factory=list)
    attachment: Optional[RenderedImage] = None
    error: Optional[str] = None


class HighlightService:
    """
    Handles highlight and render requests.

    Attributes:
        stats: Request counters
    """

    def __init__(self, languages: Dict[str, LanguageConfig], assets: RenderAssets,
                 gate: RenderGate, config: Optional[HiliteConfig] = None,
                 highlighter: Optional[Highlighter] = None):
        """
        Initialize the service.

        Args:
            languages: Loaded languages by code block name
            assets: Startup-loaded font resources
            gate: Shared per-identity render gate
            config: Configuration (current global configuration if None)
            highlighter: Event producer (a new Highlighter if None)
        """
        config = config or get_config()
        self.languages = languages
        self.assets = assets
        self.gate = gate
        self.highlighter = highlighter or Highlighter()
        self.settings = RenderSettings.from_config(config)
        self.compositor = ImageCompositor(assets.metrics, self.settings, assets.border)

        self._message_limit = config.limits.message_limit
        self._max_workers = config.limits.max_worker_threads
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

        # Statistics
        self._stats_lock = threading.Lock()
        self.stats = {
            'requests': 0,
            'highlights': 0,
            'renders': 0,
            'rejected': 0,
            'internal_errors': 0,
            'total_render_time_ms': 0.0,
        }

        register_config_callback(self._on_config_change)

        logger.info(f"HighlightService initialized: languages={len(languages)}, "
                    f"workers={self._max_workers}, message_limit={self._message_limit}")

    def _on_config_change(self, old_config: HiliteConfig, new_config: HiliteConfig):
        """
        Handle configuration changes.

        Limits apply to the next request. Font, frame and scale changes need
        a restart since the assets are loaded once.
        """
        limits = new_config.limits
        self._message_limit = limits.message_limit
        self.settings = replace(self.settings, max_render_pixels=limits.max_render_pixels,
                                upload_limit=limits.upload_limit)
        self.compositor.settings = self.settings
        with self._executor_lock:
            if new_config.limits.max_worker_threads != self._max_workers:
                self._max_workers = new_config.limits.max_worker_threads
                if self._executor:
                    self._executor.shutdown(wait=False)
                    self._executor = None

        logger.info(f"Service configuration updated: workers={self._max_workers}, "
                    f"message_limit={self._message_limit}, "
                    f"upload_limit={limits.upload_limit}")

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers,
                    thread_name_prefix="HiliteRender"
                )
                logger.debug(f"Created thread pool executor with {self._max_workers} workers")
            return self._executor

    def _count(self, key: str, amount=1):
        with self._stats_lock:
            self.stats[key] += amount

    # ============================================================================
    # PROJECTIONS
    # ============================================================================

    def lines_for(self, language: LanguageConfig, code: str) -> List[Line]:
        """Highlight code and segment it into colored lines"""
        events = self.highlighter.highlight(language, code)
        spans = resolve_events(events, code, language.formats)
        return segment_lines(spans)

    def highlight_ansi(self, language: LanguageConfig, code: str) -> List[str]:
        """
        Project code into ANSI message chunks.

        Raises:
            HighlighterFault, LineTooLong
        """
        chunks = chunk_lines(self.lines_for(language, code), self._message_limit)
        self._count('highlights')
        return chunks

    def _render_blocking(self, language: LanguageConfig, code: str) -> RenderedImage:
        start_time = time.time()
        image = self.compositor.render(self.lines_for(language, code))
        self._count('total_render_time_ms', (time.time() - start_time) * 1000)
        logger.debug(f"Encoded png ({len(image.data)} B)")
        return image

    async def render_image(self, identity: str, language: LanguageConfig, code: str) -> RenderedImage:
        """
        Render code to a PNG on a worker thread.

        The identity's gate slot is held until the worker finishes, even
        when the awaiting task is cancelled or times out first.

        Raises:
            RenderInProgress, HighlighterFault, ImageTooLarge,
            EncodingFailed, OutputTooLarge
        """
        lock = self.gate.acquire(identity)
        try:
            future = self._get_executor().submit(self._render_blocking, language, code)
        except BaseException:
            lock.release()
            raise
        future.add_done_callback(lambda _: lock.release())

        image = await asyncio.shield(asyncio.wrap_future(future))
        self._count('renders')
        return image

    # ============================================================================
    # MESSAGE HANDLING
    # ============================================================================

    async def handle_message(self, identity: str, content: str) -> Optional[Reply]:
        """
        Handle one chat message.

        Returns:
            The reply to send, or None when the message is not a request
        """
        block = parse_codeblock(content)
        if block is None:
            return None
        language = self.languages.get(block.lang)
        if language is None:
            return None

        op = block.op
        if not op and block.lang not in NO_HIGHLIGHT_BY_DEFAULT:
            op = HIGHLIGHT_OP
        if op not in (HIGHLIGHT_OP, RENDER_OP):
            return None

        self._count('requests')
        logger.info(f"{identity} ran {op}")
        try:
            if op == HIGHLIGHT_OP:
                return Reply(messages=self.highlight_ansi(language, block.code))
            image = await self.render_image(identity, language, normalize_newlines(block.code))
            return Reply(attachment=image)
        except HiliteError as e:
            self._count('rejected')
            logger.warning(f"{op} from {identity} rejected: {e}")
            return Reply(error=describe_error(e.kind))
        except (MalformedEventStream, UnknownCategory):
            self._count('internal_errors')
            logger.exception(f"{op} from {identity} hit an internal error")
            return Reply(error=INTERNAL_ERROR)

    # ============================================================================
    # STATISTICS AND SHUTDOWN
    # ============================================================================

    def get_stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            stats: Dict[str, Any] = self.stats.copy()
        if stats['renders'] > 0:
            stats['avg_render_time_ms'] = stats['total_render_time_ms'] / stats['renders']
        else:
            stats['avg_render_time_ms'] = 0.0
        stats['highlighter'] = self.highlighter.get_stats()
        stats['render'] = self.compositor.get_stats()
        stats['gate'] = self.gate.get_stats()
        return stats

    def shutdown(self):
        """Clean shutdown of the service"""
        logger.info("Shutting down highlight service")
        unregister_config_callback(self._on_config_change)
        with self._executor_lock:
            if self._executor:
                self._executor.shutdown(wait=True)
                self._executor = None
        logger.info("Highlight service shutdown complete")
