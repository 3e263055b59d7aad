#!/usr/bin/env python3
"""
🐧 PNGN Hilite - Configuration Module
=====================================
Copyright (c) 2025 PNGN-Tec LLC

Centralized Configuration System
=================================
Complete configuration for syntax highlight projection including:
- Display palette with synchronized ANSI and RGBA representations
- Category to color table shared by every language
- Enabled languages and their Pygments lexers
- Image layout constants (scale, radius, border, spacing)
- Request limits (message size, upload size, pixel area)
- Cache sizing for glyph and metric caches

Configuration Overview
======================
Values live in dataclass sections that validate themselves. A thread-safe
singleton manager applies environment overrides (``HILITE_*``), supports
runtime reloads and notifies registered callbacks.

The core rendering code never reads this module's global state directly:
``RenderSettings.from_config()`` produces an immutable snapshot that the
service passes into the core entry points.

Color System
============
The palette mirrors the colors Discord uses for the basic ANSI codes. Each
color keeps its SGR parameters and RGBA value side by side so the text and
image projections can never drift apart.
"""

import copy
import threading
import logging
import os
from typing import Tuple, Dict, Any, Optional, Callable
from dataclasses import dataclass, field
from enum import Enum

# Configure logging
logger = logging.getLogger('hilite.config')

# Type alias for colors
RGBAColor = Tuple[int, int, int, int]

# ============================================================================
# PALETTE
# ============================================================================

@dataclass(frozen=True)
class Color:
    """
    Display color with a terminal and a pixel representation.

    Attributes:
        name: Palette name
        sgr: SGR parameters, e.g. (31, 4) for red underlined
        rgba: Pixel value used by the image projection
    """
    name: str
    sgr: Tuple[int, ...]
    rgba: RGBAColor

    @property
    def ansi(self) -> str:
        """Terminal control sequence selecting this color"""
        return "\033[" + ";".join(str(p) for p in self.sgr) + "m"

    @property
    def sticky(self) -> bool:
        """True when the sequence sets attributes a later color code won't clear"""
        return len(self.sgr) > 1


def hex_color(value: str) -> RGBAColor:
    """Parse 'rrggbb' or 'rrggbbaa' into an RGBA tuple"""
    value = value.lstrip('#')
    if len(value) == 6:
        value += 'ff'
    if len(value) != 8:
        raise ValueError(f"Invalid hex color: {value!r}")
    return tuple(int(value[i:i + 2], 16) for i in range(0, 8, 2))


# Note these are not the ANSI names, they are names that fit the specific
# colors Discord uses for the relevant ANSI code.
ERROR = Color('error', (31, 4), hex_color('ff0000ff'))
RESET = Color('reset', (0,), hex_color('b9bbbeff'))
GRAY = Color('gray', (30,), hex_color('4f545cff'))
RED = Color('red', (31,), hex_color('dc322fff'))
GREEN = Color('green', (32,), hex_color('859900ff'))
YELLOW = Color('yellow', (33,), hex_color('b58900ff'))
BLUE = Color('blue', (34,), hex_color('268bd2ff'))
PINK = Color('pink', (35,), hex_color('d33682ff'))
CYAN = Color('cyan', (36,), hex_color('2aa198ff'))
WHITE = Color('white', (37,), hex_color('ffffffff'))

PALETTE: Dict[str, Color] = {
    color.name: color
    for color in (ERROR, RESET, GRAY, RED, GREEN, YELLOW, BLUE, PINK, CYAN, WHITE)
}

# Canvas colors
BACKGROUND = hex_color('2f3136ff')
BORDER = hex_color('202225ff')

# ============================================================================
# CATEGORY TABLE
# ============================================================================

# Ordered: a category's position is the id carried by EnterCategory events.
# 'error' is always first so lexer error tokens stand out in every language.
CATEGORY_COLORS: Dict[str, Color] = {
    'error': ERROR,
    'comment': GRAY,
    'comment.preproc': PINK,
    'keyword': PINK,
    'keyword.constant': CYAN,
    'keyword.type': YELLOW,
    'name.builtin': YELLOW,
    'name.function': YELLOW,
    'name.class': YELLOW,
    'name.label': YELLOW,
    'name.decorator': PINK,
    'name.tag': BLUE,
    'name.attribute': RED,
    'name.constant': CYAN,
    'name.variable': WHITE,
    'literal.string': CYAN,
    'literal.string.escape': RED,
    'literal.string.interpol': PINK,
    'literal.number': CYAN,
    'operator': GRAY,
    'operator.word': PINK,
    'punctuation': GRAY,
    'generic.inserted': GREEN,
    'generic.deleted': RED,
    'generic.heading': BLUE,
}

# Enabled code block languages -> Pygments lexer alias
LANGUAGES: Dict[str, str] = {
    'python': 'python',
    'py': 'python',
    'rust': 'rust',
    'rs': 'rust',
    'c': 'c',
    'cpp': 'cpp',
    'js': 'javascript',
    'javascript': 'javascript',
    'ts': 'typescript',
    'typescript': 'typescript',
    'json': 'json',
    'sh': 'bash',
    'bash': 'bash',
    'toml': 'toml',
    'asm': 'nasm',
    'diff': 'diff',
}

# Languages that are only highlighted with an explicit +highlight prefix.
# Empty, but kept in case another bot claims plain code blocks.
NO_HIGHLIGHT_BY_DEFAULT: Tuple[str, ...] = ()

# ============================================================================
# CONFIGURATION ENUMS
# ============================================================================

class FrameStyle(Enum):
    """Decorative frame around rendered code"""
    ROUNDED = "rounded"
    NINE_SLICE = "nine_slice"


# ============================================================================
# CACHE CONFIGURATION
# ============================================================================

@dataclass
class CacheConfig:
    """
    Cache configuration parameters.

    Attributes:
        default_size: Entries kept by the glyph and metric caches
        enable_caching: Master switch for caching
    """

    default_size: int = 1024
    enable_caching: bool = True

    def validate(self) -> bool:
        """Validate cache configuration"""
        if self.default_size <= 0:
            raise ValueError("Cache size must be positive")
        return True


# ============================================================================
# RENDERING CONFIGURATION
# ============================================================================

@dataclass
class RenderingConfig:
    """Image layout configuration (values before global scaling)"""

    global_scale: int = 2
    base_font_size: float = 14.0  # discord value

    radius: int = 4
    border_width: int = 1
    line_spacing: int = 4

    frame_style: FrameStyle = FrameStyle.ROUNDED

    # Assets (None = discover)
    font_path: Optional[str] = None
    border_asset_path: Optional[str] = None

    def validate(self) -> bool:
        """Validate rendering configuration"""
        if self.global_scale <= 0:
            raise ValueError("Global scale must be positive")
        if self.base_font_size <= 0:
            raise ValueError("Font size must be positive")
        if self.radius < 0 or self.border_width < 0 or self.line_spacing < 0:
            raise ValueError("Layout constants must not be negative")
        return True


# ============================================================================
# LIMITS CONFIGURATION
# ============================================================================

@dataclass
class LimitsConfig:
    """Request limits and worker resources"""

    # Chat platform ceilings
    message_limit: int = 2000
    upload_limit: int = 8_000_000

    # Pre-allocation guard
    max_render_pixels: int = 1000 * 1000

    # Thread settings
    max_worker_threads: int = 4

    def validate(self) -> bool:
        """Validate limits configuration"""
        if self.message_limit <= 0:
            raise ValueError("Message limit must be positive")
        if self.upload_limit <= 0:
            raise ValueError("Upload limit must be positive")
        if self.max_render_pixels <= 0:
            raise ValueError("Max render pixels must be positive")
        if self.max_worker_threads <= 0:
            raise ValueError("Max worker threads must be positive")
        return True


# ============================================================================
# MAIN CONFIGURATION CLASS
# ============================================================================

@dataclass
class HiliteConfig:
    """Complete system configuration"""

    # Sub-configurations
    cache: CacheConfig = field(default_factory=CacheConfig)
    rendering: RenderingConfig = field(default_factory=RenderingConfig)
    limits: LimitsConfig = field(default_factory=LimitsConfig)

    # System-wide settings
    debug_mode: bool = False
    log_level: str = "INFO"

    def validate(self) -> bool:
        """Validate entire configuration"""
        self.cache.validate()
        self.rendering.validate()
        self.limits.validate()
        return True


@dataclass(frozen=True)
class RenderSettings:
    """
    Immutable, scale-applied snapshot handed to the rendering core.

    All pixel values already include the global scale.
    """
    font_size: float
    radius: int
    border_width: int
    line_spacing: int
    frame_style: FrameStyle = FrameStyle.ROUNDED
    background: RGBAColor = BACKGROUND
    border: RGBAColor = BORDER
    max_render_pixels: int = 1000 * 1000
    upload_limit: int = 8_000_000
    cache_size: int = 1024

    @property
    def border_radius(self) -> int:
        """Outer radius, which is also the content inset of the rounded frame"""
        return self.radius + self.border_width

    @classmethod
    def from_config(cls, config: HiliteConfig) -> 'RenderSettings':
        rendering = config.rendering
        scale = rendering.global_scale
        return cls(
            font_size=rendering.base_font_size * scale,
            radius=rendering.radius * scale,
            border_width=rendering.border_width * scale,
            line_spacing=rendering.line_spacing * scale,
            frame_style=rendering.frame_style,
            max_render_pixels=config.limits.max_render_pixels,
            upload_limit=config.limits.upload_limit,
            cache_size=config.cache.default_size if config.cache.enable_caching else 1,
        )


# ============================================================================
# CONFIGURATION MANAGER (SINGLETON)
# ============================================================================

class ConfigurationManager:
    """
    Singleton configuration manager with runtime reloading.
    Thread-safe management of global configuration with change notifications.
    """

    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = super().__new__(cls)
                    cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._config = HiliteConfig()
        self._callbacks = []
        self._config_lock = threading.RLock()
        self._load_environment_overrides(self._config)

        self._initialized = True
        logger.info("Configuration manager initialized")

    def _load_environment_overrides(self, config: HiliteConfig):
        """Apply configuration overrides from environment variables to config"""

        # Cache settings
        if 'HILITE_CACHE_SIZE' in os.environ:
            config.cache.default_size = int(os.environ['HILITE_CACHE_SIZE'])

        # Rendering settings
        if 'HILITE_GLOBAL_SCALE' in os.environ:
            config.rendering.global_scale = int(os.environ['HILITE_GLOBAL_SCALE'])
        if 'HILITE_FRAME_STYLE' in os.environ:
            config.rendering.frame_style = FrameStyle(os.environ['HILITE_FRAME_STYLE'].lower())
        if 'HILITE_FONT_PATH' in os.environ:
            config.rendering.font_path = os.environ['HILITE_FONT_PATH']
        if 'HILITE_BORDER_ASSET' in os.environ:
            config.rendering.border_asset_path = os.environ['HILITE_BORDER_ASSET']

        # Limits
        if 'HILITE_MESSAGE_LIMIT' in os.environ:
            config.limits.message_limit = int(os.environ['HILITE_MESSAGE_LIMIT'])
        if 'HILITE_UPLOAD_LIMIT' in os.environ:
            config.limits.upload_limit = int(os.environ['HILITE_UPLOAD_LIMIT'])
        if 'HILITE_MAX_PIXELS' in os.environ:
            config.limits.max_render_pixels = int(os.environ['HILITE_MAX_PIXELS'])
        if 'HILITE_MAX_THREADS' in os.environ:
            config.limits.max_worker_threads = int(os.environ['HILITE_MAX_THREADS'])

        # Debug mode
        if 'HILITE_DEBUG' in os.environ:
            config.debug_mode = os.environ['HILITE_DEBUG'].lower() in ('true', '1', 'yes')
        if 'HILITE_LOG_LEVEL' in os.environ:
            config.log_level = os.environ['HILITE_LOG_LEVEL'].upper()

    @property
    def config(self) -> HiliteConfig:
        """Get current configuration"""
        with self._config_lock:
            return self._config

    def reload(self, new_config: Optional[HiliteConfig] = None) -> bool:
        """
        Reload configuration and notify callbacks.

        Args:
            new_config: New configuration to apply (reloads from env if None)

        Returns:
            True if reload successful
        """
        with self._config_lock:
            old_config = self._config

            try:
                if new_config is None:
                    # Environment overrides are applied to a copy of the live config
                    new_config = copy.deepcopy(old_config)
                    self._load_environment_overrides(new_config)
                new_config.validate()
            except ValueError as e:
                logger.error(f"Configuration reload failed: {e}")
                return False

            self._config = new_config
            self._notify_callbacks(old_config, new_config)
            logger.info("Configuration reloaded successfully")
            return True

    def register_callback(self, callback: Callable[[HiliteConfig, HiliteConfig], None]):
        """
        Register callback for configuration changes.

        Args:
            callback: Function called with (old_config, new_config)
        """
        self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable):
        """Remove a registered callback"""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self, old_config: HiliteConfig, new_config: HiliteConfig):
        """Notify all registered callbacks of configuration change"""
        for callback in self._callbacks:
            try:
                callback(old_config, new_config)
            except Exception:
                logger.exception("Callback notification failed")


# ============================================================================
# PUBLIC API FUNCTIONS
# ============================================================================

_manager = ConfigurationManager()

def get_config() -> HiliteConfig:
    """Get current system configuration"""
    return _manager.config

def reload_config(new_config: Optional[HiliteConfig] = None) -> bool:
    """Reload system configuration"""
    return _manager.reload(new_config)

def register_config_callback(callback: Callable[[HiliteConfig, HiliteConfig], None]):
    """Register for configuration change notifications"""
    _manager.register_callback(callback)

def unregister_config_callback(callback: Callable):
    """Unregister a configuration change callback"""
    _manager.unregister_callback(callback)

def describe_config() -> Dict[str, Any]:
    """Flat summary used in startup logs and CLI --verbose output"""
    cfg = _manager.config
    return {
        'global_scale': cfg.rendering.global_scale,
        'frame_style': cfg.rendering.frame_style.value,
        'message_limit': cfg.limits.message_limit,
        'upload_limit': cfg.limits.upload_limit,
        'max_render_pixels': cfg.limits.max_render_pixels,
        'max_worker_threads': cfg.limits.max_worker_threads,
        'cache_size': cfg.cache.default_size,
        'languages': len(LANGUAGES),
        'categories': len(CATEGORY_COLORS),
    }
