import pathlib
import sys

import pytest

PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from voice_assistant.config import get_settings  # noqa: E402

_BACKEND_ENV = (
    "OPENAI_API_KEY",
    "OPENAI_BASE_URL",
    "STT_API_KEY",
    "TTS_API_KEY",
    "LOCAL_MODEL_URL",
    "AUDIO_CACHE_DIR",
    "AUDIO_CACHE_TTL",
    "INFERENCE_TIMEOUT",
)


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch):
    """Keep developer credentials from selecting real backends."""
    for name in _BACKEND_ENV:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
