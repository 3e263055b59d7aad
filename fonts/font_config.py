# Font discovery configuration for PNGN Hilite
import os

FONTS_DIR = os.path.dirname(os.path.abspath(__file__))

# Monospace faces in order of preference
FONT_FILES = [
    "DejaVuSansMono.ttf",
    "JetBrainsMono-Regular.ttf",
    "LiberationMono-Regular.ttf",
    "ShareTechMono-Regular.ttf",
]

# Bundled fonts first, then system locations (Linux, Termux, macOS, Windows)
FONT_DIRS = [
    FONTS_DIR,
    "/usr/share/fonts/truetype/dejavu",
    "/usr/share/fonts/dejavu",
    "/usr/share/fonts/TTF",
    "/usr/share/fonts/truetype/liberation",
    "/data/data/com.termux/files/usr/share/fonts/TTF",
    "/Library/Fonts",
    "C:/Windows/Fonts",
]

# Optional 9-slice frame asset looked up in FONTS_DIR
BORDER_ASSET_FILE = "border.png"
