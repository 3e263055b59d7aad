import pytest
from PIL import ImageFont

from config import HiliteConfig, RenderSettings
from hilite_highlight import load_languages
from hilite_service import HighlightService, RenderAssets, RenderGate
from hilite_width import FontMetrics


@pytest.fixture(scope="session")
def font():
    # Pillow's bundled font at the default scaled size
    return ImageFont.load_default(size=28)


@pytest.fixture
def metrics(font):
    return FontMetrics(font)


@pytest.fixture
def settings():
    return RenderSettings.from_config(HiliteConfig())


@pytest.fixture(scope="session")
def languages():
    return load_languages({'py': 'python', 'rust': 'rust'})


@pytest.fixture
def service(font, metrics, languages):
    service = HighlightService(languages, RenderAssets(font, metrics), RenderGate(), HiliteConfig())
    yield service
    service.shutdown()
