import os
from types import SimpleNamespace

import pytest
import requests
from fastapi.testclient import TestClient

from src.studio.api.main import app
from .utils import headers_for


client = TestClient(app)


def _new_session(user="alice"):
    r = client.post("/sessions", headers=headers_for(user))
    assert r.status_code == 201
    return r.json()


def test_generate_blue_button_persists_both_turns(stub_llm):
    sess = _new_session()
    r = client.post(
        "/generate",
        data={"session_id": sess["id"], "message": "Make a blue button"},
        headers=headers_for("alice"),
    )
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["message"] == "Component generated successfully"
    assert body["code"] == {"markup": "<button>Click</button>", "style": ".button{color:blue;}"}
    assert body["user_turn"]["role"] == "user"
    assert body["assistant_turn"]["artifact"] == body["code"]
    assert body["session_version"] == 2

    detail = client.get(f"/sessions/{sess['id']}", headers=headers_for("alice")).json()
    assert [t["role"] for t in detail["transcript"]] == ["user", "assistant"]
    assert detail["current_artifact"] == body["code"]
    assert detail["preview_artifact"] == body["code"]

    listed = client.get("/sessions", headers=headers_for("alice")).json()
    assert listed[0]["display_name"] == "Make a blue button"


def test_generate_under_api_prefix(stub_llm):
    sess = _new_session()
    r = client.post(
        "/api/generate",
        data={"session_id": sess["id"], "message": "A card"},
        headers=headers_for("alice"),
    )
    assert r.status_code == 200
    assert len(stub_llm.calls) == 1


def test_generate_requires_message_or_image(stub_llm):
    sess = _new_session()
    r = client.post("/generate", data={"session_id": sess["id"], "message": "  "}, headers=headers_for("alice"))
    assert r.status_code == 422
    assert r.json()["error"] == {"kind": "ValidationError", "message": "Message or image is required"}
    assert stub_llm.calls == []


def test_generate_rejects_malformed_and_foreign_sessions(stub_llm):
    r = client.post("/generate", data={"session_id": "123", "message": "hi"}, headers=headers_for("alice"))
    assert r.status_code == 400
    assert r.json()["error"]["kind"] == "InvalidId"

    sess = _new_session("alice")
    r = client.post("/generate", data={"session_id": sess["id"], "message": "hi"}, headers=headers_for("mallory"))
    assert r.status_code == 404
    assert stub_llm.calls == []


def test_generate_requires_auth(stub_llm):
    r = client.post("/generate", data={"session_id": "0123456789abcdef01234567", "message": "hi"})
    assert r.status_code == 401


def test_backend_failure_returns_502_and_keeps_session(stub_llm):
    sess = _new_session()
    stub_llm.error = requests.exceptions.ConnectionError("backend down")
    r = client.post(
        "/generate",
        data={"session_id": sess["id"], "message": "Make a blue button"},
        headers=headers_for("alice"),
    )
    assert r.status_code == 502
    assert r.json()["error"]["kind"] == "BackendError"

    detail = client.get(f"/sessions/{sess['id']}", headers=headers_for("alice")).json()
    assert detail["transcript"] == []
    assert detail["version"] == 1


def test_backend_failure_removes_the_uploaded_image(stub_llm, tmp_path):
    sess = _new_session()
    stub_llm.error = RuntimeError("backend down")
    r = client.post(
        "/generate",
        data={"session_id": sess["id"], "message": "copy this layout"},
        files={"image": ("ref.png", b"png-bytes", "image/png")},
        headers=headers_for("alice"),
    )
    assert r.status_code == 502
    assert r.json()["error"]["kind"] == "BackendError"
    assert list((tmp_path / "uploads").iterdir()) == []

    detail = client.get(f"/sessions/{sess['id']}", headers=headers_for("alice")).json()
    assert detail["transcript"] == []


def test_unparseable_reply_still_records_the_turn(stub_llm):
    sess = _new_session()
    stub_llm.reply = "I would rather not."
    r = client.post("/generate", data={"session_id": sess["id"], "message": "???"}, headers=headers_for("alice"))
    assert r.status_code == 200
    assert r.json()["code"] == {"markup": "", "style": ""}
    assert r.json()["assistant_turn"]["artifact"] is None


def test_image_upload_is_stored_and_referenced(stub_llm, tmp_path):
    sess = _new_session()
    r = client.post(
        "/generate",
        data={"session_id": sess["id"], "message": ""},
        files={"image": ("mock.png", b"\x89PNG\r\n\x1a\nfake", "image/png")},
        headers=headers_for("alice"),
    )
    assert r.status_code == 200, r.text
    ref = r.json()["user_turn"]["image"]
    assert ref.startswith("/uploads/") and ref.endswith(".png")
    stored = os.listdir(tmp_path / "uploads")
    assert stored == [ref.rsplit("/", 1)[1]]


def test_image_for_foreign_session_is_not_stored(stub_llm, tmp_path):
    sess = _new_session("alice")
    r = client.post(
        "/generate",
        data={"session_id": sess["id"], "message": "copy this"},
        files={"image": ("mock.png", b"png-bytes", "image/png")},
        headers=headers_for("mallory"),
    )
    assert r.status_code == 404
    assert not (tmp_path / "uploads").exists()


def test_unsupported_image_type_is_rejected(stub_llm):
    sess = _new_session()
    r = client.post(
        "/generate",
        data={"session_id": sess["id"], "message": "hi"},
        files={"image": ("notes.txt", b"hello", "text/plain")},
        headers=headers_for("alice"),
    )
    assert r.status_code == 422
    assert stub_llm.calls == []


def test_unexpected_failure_is_a_generic_server_error(stub_llm, monkeypatch):
    from src.studio.services import session_orchestrator

    def explode(*args, **kwargs):
        raise KeyError("internal detail")

    sess = _new_session()
    monkeypatch.setattr(session_orchestrator.SessionOrchestrator, "submit_turn", explode)
    quiet = TestClient(app, raise_server_exceptions=False)
    r = quiet.post("/generate", data={"session_id": sess["id"], "message": "hi"}, headers=headers_for("alice"))
    assert r.status_code == 500
    assert r.json()["error"]["kind"] == "ServerError"
    assert "internal detail" not in r.text


def test_oversized_image_is_rejected_before_storage(stub_llm, tmp_path, monkeypatch):
    monkeypatch.setenv("STUDIO_MAX_IMAGE_BYTES", "16")
    sess = _new_session()
    r = client.post(
        "/generate",
        data={"session_id": sess["id"], "message": "hi"},
        files={"image": ("big.png", b"x" * 4096, "image/png")},
        headers=headers_for("alice"),
    )
    assert r.status_code == 422
    assert "too large" in r.json()["error"]["message"]
    assert not (tmp_path / "uploads").exists()
    assert stub_llm.calls == []


def test_upload_read_is_bounded_by_the_size_limit(stub_llm, monkeypatch):
    from src.studio.api.routers.generate import generate_component
    from src.studio.domain.errors import ValidationError
    from src.studio.infrastructure.session_store import get_session_store
    from src.studio.security.auth import User

    class _RecordingFile:
        def __init__(self, data):
            self.data = data
            self.sizes = []

        def read(self, size=-1):
            self.sizes.append(size)
            return self.data if size < 0 else self.data[:size]

    monkeypatch.setenv("STUDIO_MAX_IMAGE_BYTES", "16")
    sess = get_session_store().create_session("alice")
    upload = _RecordingFile(b"x" * 4096)
    with pytest.raises(ValidationError):
        generate_component(
            session_id=sess.id,
            message="hi",
            image=SimpleNamespace(filename="big.png", file=upload),
            user=User(id="alice"),
        )
    assert upload.sizes == [17]
