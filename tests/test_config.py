import pytest

from config import (
    CATEGORY_COLORS, ERROR, PALETTE, RESET, FrameStyle, HiliteConfig,
    RenderSettings, get_config, hex_color, register_config_callback,
    reload_config, unregister_config_callback,
)


def test_colors():
    assert ERROR.ansi == "\x1b[31;4m"
    assert RESET.ansi == "\x1b[0m"
    assert ERROR.sticky and not RESET.sticky
    assert RESET.rgba == (0xb9, 0xbb, 0xbe, 0xff)
    assert hex_color("#2f3136") == (0x2f, 0x31, 0x36, 0xff)
    with pytest.raises(ValueError):
        hex_color("12345")


def test_category_table_uses_palette_colors():
    assert next(iter(CATEGORY_COLORS)) == 'error'
    assert all(color in PALETTE.values() for color in CATEGORY_COLORS.values())


def test_render_settings_apply_global_scale():
    settings = RenderSettings.from_config(HiliteConfig())
    assert settings.font_size == 28
    assert settings.radius == 8
    assert settings.border_width == 2
    assert settings.line_spacing == 8
    assert settings.border_radius == 10
    assert settings.frame_style == FrameStyle.ROUNDED
    assert settings.max_render_pixels == 1000 * 1000
    assert settings.upload_limit == 8_000_000


def test_validation():
    config = HiliteConfig()
    config.limits.message_limit = 0
    with pytest.raises(ValueError):
        config.validate()


def test_reload_notifies_callbacks_and_rejects_invalid_config():
    seen = []

    def callback(old, new):
        seen.append(new.limits.message_limit)

    register_config_callback(callback)
    try:
        new = HiliteConfig()
        new.limits.message_limit = 1500
        assert reload_config(new)
        assert get_config().limits.message_limit == 1500

        bad = HiliteConfig()
        bad.limits.upload_limit = -1
        assert not reload_config(bad)
        assert get_config().limits.message_limit == 1500
    finally:
        unregister_config_callback(callback)
        reload_config(HiliteConfig())
    assert seen == [1500]


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv('HILITE_FRAME_STYLE', 'nine_slice')
    monkeypatch.setenv('HILITE_MAX_PIXELS', '2000000')
    try:
        assert reload_config()
        config = get_config()
        assert config.rendering.frame_style == FrameStyle.NINE_SLICE
        assert config.limits.max_render_pixels == 2_000_000
    finally:
        reload_config(HiliteConfig())


def test_invalid_environment_override_keeps_live_config(monkeypatch):
    reload_config(HiliteConfig())
    monkeypatch.setenv('HILITE_MESSAGE_LIMIT', '0')
    try:
        assert not reload_config()
        assert get_config().limits.message_limit == 2000
    finally:
        monkeypatch.delenv('HILITE_MESSAGE_LIMIT')
        reload_config(HiliteConfig())


def test_environment_reload_passes_distinct_configs(monkeypatch):
    seen = []

    def callback(old, new):
        seen.append((old, new))

    monkeypatch.setenv('HILITE_MESSAGE_LIMIT', '1500')
    register_config_callback(callback)
    try:
        assert reload_config()
    finally:
        unregister_config_callback(callback)
        reload_config(HiliteConfig())

    (old, new), = seen
    assert old is not new
    assert new.limits.message_limit == 1500
