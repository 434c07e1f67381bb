import json
from pathlib import Path

import pytest

from comfy_link.graph import NodeTypeCatalog

FIXTURES = Path(__file__).parent / "fixtures"


@pytest.fixture
def object_info() -> dict:
    return json.loads((FIXTURES / "object_info.json").read_text())


@pytest.fixture
def catalog(object_info) -> NodeTypeCatalog:
    return NodeTypeCatalog.from_object_info(object_info)


@pytest.fixture
def txt2img_path() -> Path:
    return FIXTURES / "txt2img.json"


@pytest.fixture
def txt2img(txt2img_path) -> dict:
    return json.loads(txt2img_path.read_text())


@pytest.fixture(autouse=True)
def clear_comfy_env(monkeypatch):
    """Keep COMFY_* variables of the host out of the tests."""
    for name in ("COMFY_URL", "COMFY_MAX_RECONNECT_DELAY", "COMFY_REQUEST_TIMEOUT"):
        monkeypatch.delenv(name, raising=False)
    yield
