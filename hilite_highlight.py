#!/usr/bin/env python3
"""
🐧 PNGN Hilite - Highlight Event Producer
=========================================
Copyright (c) 2025 PNGN-Tec LLC

Turns source code into a linear stream of highlight events:

    EnterCategory(id)  TextSpan(byte_start, byte_end)  ExitCategory()

Technical Implementation
========================
- Pygments lexers do the tokenizing (``get_tokens_unprocessed`` so no
  newline or tab preprocessing touches the text)
- Token types are hierarchical (``Token.Keyword.Constant``); every level
  that has an entry in the category table is entered in order, which gives
  properly nested categories: ``keyword`` wraps ``keyword.constant``
- Byte ranges are UTF-8 offsets into the source; any characters the lexer
  skipped are emitted as plain spans, so the spans always tile the source
- Lexer failures raise ``HighlighterFault``; syntax errors in the code are
  not failures, they show up as the in-band ``error`` category
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple, Union

from pygments.lexer import Lexer
from pygments.lexers import get_lexer_by_name
from pygments.token import Token, _TokenType
from pygments.util import ClassNotFound

from config import CATEGORY_COLORS, LANGUAGES, Color
from hilite_errors import HighlighterFault

logger = logging.getLogger('hilite.highlight')

# ============================================================================
# EVENTS
# ============================================================================

@dataclass(frozen=True)
class EnterCategory:
    index: int


@dataclass(frozen=True)
class TextSpan:
    start: int
    end: int


@dataclass(frozen=True)
class ExitCategory:
    pass


HighlightEvent = Union[EnterCategory, TextSpan, ExitCategory]

EXIT = ExitCategory()


def category_name(ttype: _TokenType) -> str:
    """Dotted lowercase name of a token type: Token.Name.Function -> name.function"""
    if ttype is Token:
        return ''
    return '.'.join(part.lower() for part in ttype)


# ============================================================================
# LANGUAGE CONFIGURATION
# ============================================================================

@dataclass
class LanguageConfig:
    """
    A lexer plus the category table its events refer to.

    ``formats[i]`` is the color of ``categories[i]``; EnterCategory ids are
    indices into both.
    """
    name: str
    lexer: Lexer
    categories: Tuple[str, ...]
    formats: Tuple[Color, ...]
    _index: Dict[str, int] = field(init=False, repr=False)
    _scopes: Dict[_TokenType, Tuple[int, ...]] = field(init=False, repr=False)

    def __post_init__(self):
        if len(self.categories) != len(self.formats):
            raise ValueError("Every category needs exactly one color")
        self._index = {name: i for i, name in enumerate(self.categories)}
        self._scopes = {}

    def scopes(self, ttype: _TokenType) -> Tuple[int, ...]:
        """Category ids to enter for a token type, outermost first"""
        cached = self._scopes.get(ttype)
        if cached is None:
            cached = tuple(
                self._index[name]
                for name in (category_name(t) for t in ttype.split())
                if name in self._index
            )
            self._scopes[ttype] = cached
        return cached


def build_language(name: str, alias: str,
                   table: Optional[Dict[str, Color]] = None) -> LanguageConfig:
    """
    Build a language from a Pygments lexer alias.

    Raises:
        pygments.util.ClassNotFound: alias is unknown to Pygments
    """
    table = table if table is not None else CATEGORY_COLORS
    lexer = get_lexer_by_name(alias, stripnl=False, ensurenl=False)
    return LanguageConfig(
        name=name,
        lexer=lexer,
        categories=tuple(table.keys()),
        formats=tuple(table.values()),
    )


def load_languages(names: Optional[Dict[str, str]] = None) -> Dict[str, LanguageConfig]:
    """
    Load every enabled language once at startup.

    Args:
        names: code block language -> lexer alias (defaults to config.LANGUAGES)

    Returns:
        Mapping of code block language to its configuration
    """
    names = names if names is not None else LANGUAGES
    languages = {}
    by_alias = {}
    for name, alias in names.items():
        if alias not in by_alias:
            try:
                by_alias[alias] = build_language(alias, alias)
            except ClassNotFound:
                logger.warning(f"No Pygments lexer for '{alias}', skipping '{name}'")
                continue
        languages[name] = by_alias[alias]
    logger.info(f"Loaded {len(languages)} languages ({len(by_alias)} lexers)")
    return languages


# ============================================================================
# HIGHLIGHTER
# ============================================================================

class Highlighter:
    """Produces highlight event streams for configured languages"""

    def __init__(self):
        self._lock = threading.Lock()
        self.stats = {
            'runs': 0,
            'faults': 0,
            'spans': 0,
        }

    def highlight(self, language: LanguageConfig, code: str) -> List[HighlightEvent]:
        """
        Highlight code into a complete event list.

        The whole stream is produced before returning so a lexer fault can
        never leave a half-rendered request behind.

        Raises:
            HighlighterFault: the lexer failed internally
        """
        try:
            events = self._collect(language, code)
        except Exception as e:
            with self._lock:
                self.stats['faults'] += 1
            logger.exception(f"Lexer '{language.name}' failed")
            raise HighlighterFault(f"{language.name} lexer failed: {e}") from e

        with self._lock:
            self.stats['runs'] += 1
            self.stats['spans'] += sum(1 for e in events if isinstance(e, TextSpan))
        return events

    def _collect(self, language: LanguageConfig, code: str) -> List[HighlightEvent]:
        events: List[HighlightEvent] = []
        pos = 0
        byte_pos = 0

        for index, ttype, value in language.lexer.get_tokens_unprocessed(code):
            end = min(index + len(value), len(code))
            # Drop anything already covered
            index = max(index, pos)
            if end <= index:
                continue

            if index > pos:
                byte_pos = self._span(events, code, pos, index, byte_pos)

            scopes = language.scopes(ttype)
            for category in scopes:
                events.append(EnterCategory(category))
            byte_pos = self._span(events, code, index, end, byte_pos)
            events.extend(EXIT for _ in scopes)
            pos = end

        if pos < len(code):
            self._span(events, code, pos, len(code), byte_pos)

        return events

    @staticmethod
    def _span(events: List[HighlightEvent], code: str, start: int, end: int, byte_pos: int) -> int:
        byte_end = byte_pos + len(code[start:end].encode('utf-8'))
        events.append(TextSpan(byte_pos, byte_end))
        return byte_end

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            return dict(self.stats)
