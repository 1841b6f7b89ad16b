import os
import sys
import time
from pathlib import Path
from types import SimpleNamespace

import pytest

ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)


COMPONENT_TEXT = "JSX:\n<button>Click</button>\n\nCSS:\n.button{color:blue;}"


class StubLLM:
    """Stands in for the backend: returns canned text or raises."""

    def __init__(self, reply=COMPONENT_TEXT, error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    def invoke(self, messages):
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        if isinstance(self.reply, str):
            return SimpleNamespace(content=self.reply)
        return self.reply


@pytest.fixture(autouse=True)
def _reset_singletons(monkeypatch, tmp_path):
    """Give every test a fresh in-memory store and no shared service state."""
    from src.studio.infrastructure import image_store, session_store
    from src.studio.services import generation_client, session_orchestrator, session_service

    monkeypatch.delenv("STUDIO_SESSION_STORE_IMPL", raising=False)
    monkeypatch.delenv("STUDIO_PUBLIC_MODE", raising=False)
    monkeypatch.setenv("STUDIO_UPLOAD_DIR", str(tmp_path / "uploads"))
    monkeypatch.setattr(session_store, "_store", None, raising=False)
    monkeypatch.setattr(image_store, "_image_store", None, raising=False)
    monkeypatch.setattr(generation_client, "_client", None, raising=False)
    monkeypatch.setattr(session_orchestrator, "_orchestrator", None, raising=False)
    monkeypatch.setattr(session_service, "_service", None, raising=False)


@pytest.fixture
def local_timezone():
    """Switch the process-local timezone (POSIX TZ string) for one test."""
    original = os.environ.get("TZ")

    def _set(tz):
        os.environ["TZ"] = tz
        time.tzset()

    yield _set
    if original is None:
        os.environ.pop("TZ", None)
    else:
        os.environ["TZ"] = original
    time.tzset()


@pytest.fixture
def stub_llm(monkeypatch):
    """Install a generation client whose backend is a StubLLM."""
    from src.studio.services import generation_client
    from src.studio.services.model_router import ModelRouter

    llm = StubLLM()
    client = generation_client.GenerationClient(
        router=ModelRouter(env={"GEMINI_API_KEY": "test-key"}),
        cfg=generation_client.GenerationConfig(timeout_s=5.0),
        llm_factory=lambda selection, cfg: llm,
    )
    monkeypatch.setattr(generation_client, "_client", client, raising=False)
    return llm
