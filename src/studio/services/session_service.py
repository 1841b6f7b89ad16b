from __future__ import annotations

from threading import Lock
from typing import List, Optional

from ..domain.errors import ValidationError
from ..domain.session_models import (
    Artifact,
    Session,
    SessionDetail,
    SessionSummary,
    SessionUpdate,
)
from ..infrastructure.session_store import SessionStore, get_session_store


DISPLAY_NAME_LIMIT = 50


def display_name(session: Session) -> str:
    """Label for list views: the latest user request, else the stored name."""
    for turn in reversed(session.transcript):
        if turn.role == "user" and turn.content:
            text = turn.content
            if len(text) > DISPLAY_NAME_LIMIT:
                return text[:DISPLAY_NAME_LIMIT] + "..."
            return text
    if session.name:
        return session.name
    return "Session " + session.created_at.strftime("%m/%d/%Y %H:%M")


def preview_artifact(session: Session, selected_turn_id: Optional[str] = None) -> Optional[Artifact]:
    if selected_turn_id:
        for turn in session.transcript:
            if turn.turn_id == selected_turn_id and turn.artifact is not None:
                return turn.artifact
    if not session.current_artifact.is_empty:
        return session.current_artifact
    for turn in reversed(session.transcript):
        if turn.role == "assistant" and turn.artifact is not None:
            return turn.artifact
    return None


def to_detail(s: Session, selected_turn_id: Optional[str] = None) -> SessionDetail:
    return SessionDetail(
        id=s.id,
        name=s.name,
        transcript=s.transcript,
        current_artifact=s.current_artifact,
        created_at=s.created_at,
        updated_at=s.updated_at,
        version=s.version,
        selected_turn_id=selected_turn_id,
        preview_artifact=preview_artifact(s, selected_turn_id),
    )


class SessionService:
    def __init__(self, store: Optional[SessionStore] = None) -> None:
        self._store = store or get_session_store()

    def create_session(self, owner_id: str, name: Optional[str] = None) -> Session:
        return self._store.create_session(owner_id, (name or "").strip() or None)

    def list_sessions(self, owner_id: str) -> List[SessionSummary]:
        return [
            SessionSummary(
                id=s.id,
                name=s.name,
                display_name=display_name(s),
                created_at=s.created_at,
                updated_at=s.updated_at,
            )
            for s in self._store.list_sessions(owner_id)
        ]

    def get_session(self, owner_id: str, session_id: str, selected_turn_id: Optional[str] = None) -> SessionDetail:
        return to_detail(self._store.get_session(owner_id, session_id), selected_turn_id)

    def rename_session(self, owner_id: str, session_id: str, name: str) -> Session:
        cleaned = (name or "").strip()
        if not cleaned:
            raise ValidationError("Session name must not be empty")
        return self._store.replace_session(owner_id, session_id, name=cleaned)

    def update_session(self, owner_id: str, session_id: str, payload: SessionUpdate) -> Session:
        if payload.name is None and payload.transcript is None and payload.current_artifact is None:
            raise ValidationError("At least one field (transcript, current_artifact, or name) must be provided")
        name = payload.name.strip() if payload.name is not None else None
        if name == "":
            raise ValidationError("Session name must not be empty")
        return self._store.replace_session(
            owner_id,
            session_id,
            name=name,
            transcript=payload.transcript,
            current_artifact=payload.current_artifact,
            expected_version=payload.expected_version,
        )

    def delete_session(self, owner_id: str, session_id: str) -> str:
        return self._store.delete_session(owner_id, session_id)


_service: SessionService | None = None
_service_lock = Lock()


def get_session_service() -> SessionService:
    global _service
    if _service is None:
        with _service_lock:
            if _service is None:
                _service = SessionService()
    return _service
