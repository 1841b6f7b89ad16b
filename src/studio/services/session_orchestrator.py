from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Callable, Optional
from threading import Lock
import logging
import os
import uuid

from ..domain.errors import ConflictError, ValidationError
from ..domain.session_models import Artifact, ChatTurn, Session
from ..infrastructure.session_store import SessionStore, get_session_store, validate_session_id
from .generation_client import GenerationClient, get_generation_client


logger = logging.getLogger("studio.orchestrator")


class TurnState(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"


@dataclass
class TurnResult:
    user_turn: ChatTurn
    assistant_turn: ChatTurn
    artifact: Artifact
    session: Session


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _max_attempts_from_env() -> int:
    try:
        value = int(os.getenv("STUDIO_SUBMIT_MAX_ATTEMPTS", "3"))
    except ValueError:
        return 3
    return value if value > 0 else 3


class SessionOrchestrator:
    """Runs one chat turn: validate, generate, append both turns, persist.

    The user turn, the assistant turn and the current-artifact pointer are
    written in a single versioned ``replace_session`` call, so readers never
    see one without the others. A backend failure leaves the session as it was.
    """

    def __init__(
        self,
        store: Optional[SessionStore] = None,
        generator: Optional[GenerationClient] = None,
        clock: Optional[Callable[[], datetime]] = None,
        max_attempts: Optional[int] = None,
    ) -> None:
        self._store = store or get_session_store()
        self._generator = generator or get_generation_client()
        self._clock = clock or _utc_now
        self._max_attempts = max_attempts or _max_attempts_from_env()

    def submit_turn(
        self,
        owner_id: str,
        session_id: str,
        content: Optional[str],
        image: Optional[str] = None,
    ) -> TurnResult:
        validate_session_id(session_id)
        content = content or ""
        if not content.strip() and not image:
            raise ValidationError()

        session = self._store.get_session(owner_id, session_id)

        logger.info("turn_state", extra={"session_id": session_id, "state": TurnState.GENERATING.value})
        try:
            artifact = self._generator.generate(content)
        finally:
            logger.info("turn_state", extra={"session_id": session_id, "state": TurnState.IDLE.value})

        user_at = self._clock()
        user_turn = ChatTurn(
            turn_id=uuid.uuid4().hex,
            role="user",
            content=content,
            timestamp=user_at,
            image=image,
        )
        assistant_turn = ChatTurn(
            turn_id=uuid.uuid4().hex,
            role="assistant",
            content=content,
            timestamp=max(self._clock(), user_at),
            artifact=None if artifact.is_empty else artifact,
        )

        attempt = 1
        while True:
            try:
                saved = self._store.replace_session(
                    owner_id,
                    session_id,
                    transcript=[*session.transcript, user_turn, assistant_turn],
                    current_artifact=artifact,
                    expected_version=session.version,
                )
                break
            except ConflictError:
                if attempt >= self._max_attempts:
                    logger.warning("Giving up on session %s after %d conflicting writes", session_id, attempt)
                    raise
                attempt += 1
                logger.info("Session %s changed during generation; reloading (attempt %d)", session_id, attempt)
                session = self._store.get_session(owner_id, session_id)

        return TurnResult(user_turn=user_turn, assistant_turn=assistant_turn, artifact=artifact, session=saved)


_orchestrator: SessionOrchestrator | None = None
_orchestrator_lock = Lock()


def get_orchestrator() -> SessionOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        with _orchestrator_lock:
            if _orchestrator is None:
                _orchestrator = SessionOrchestrator()
    return _orchestrator
