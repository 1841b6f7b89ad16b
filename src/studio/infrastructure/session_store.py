from __future__ import annotations

from datetime import UTC, datetime, timedelta
from threading import RLock
from typing import Any, Callable, Dict, Iterable, List, Optional, Protocol
import logging
import os
import re

from bson import ObjectId

from ..domain.errors import ConflictError, InvalidIdError, NotFoundError
from ..domain.session_models import Artifact, ChatTurn, Session


logger = logging.getLogger("studio.store")


class SessionStore(Protocol):
    def create_session(self, owner_id: str, name: Optional[str] = None) -> Session: ...

    def get_session(self, owner_id: str, session_id: str) -> Session: ...

    def list_sessions(self, owner_id: str) -> List[Session]: ...

    def replace_session(
        self,
        owner_id: str,
        session_id: str,
        *,
        name: Optional[str] = None,
        transcript: Optional[List[ChatTurn]] = None,
        current_artifact: Optional[Artifact] = None,
        expected_version: Optional[int] = None,
    ) -> Session: ...

    def delete_session(self, owner_id: str, session_id: str) -> str: ...


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _ensure_utc(value: Any) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)
    return _utc_now()


def validate_session_id(session_id: str) -> str:
    """Reject anything that is not a 24-hex-digit ObjectId string."""
    if not isinstance(session_id, str) or not ObjectId.is_valid(session_id) or len(session_id) != 24:
        raise InvalidIdError()
    return session_id


def new_session_id() -> str:
    return str(ObjectId())


def next_timestamp(now: datetime, previous: Optional[datetime], step: timedelta = timedelta(microseconds=1)) -> datetime:
    # updated_at must strictly increase even when the clock has not moved
    if previous is not None and now <= previous:
        return previous + step
    return now


def session_date_label(moment: datetime) -> str:
    # Server-local calendar date, so names do not roll over at UTC midnight
    return moment.astimezone().strftime("%m/%d/%Y")


def default_session_name(moment: datetime, taken_names: Iterable[str]) -> str:
    """Return ``Session MM/DD/YYYY`` with an ordinal suffix for repeats on the same date."""
    date_str = session_date_label(moment)
    base = f"Session {date_str}"
    pattern = default_name_pattern(date_str)
    taken = {n.lower() for n in taken_names if n and pattern.match(n)}
    ordinal = len(taken) + 1
    while True:
        candidate = base if ordinal == 1 else f"{base} {ordinal}"
        if candidate.lower() not in taken:
            return candidate
        ordinal += 1


def default_name_pattern(date_str: str) -> "re.Pattern[str]":
    return re.compile(rf"^Session {re.escape(date_str)}( \d+)?$", re.IGNORECASE)


class InMemorySessionStore:
    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._sessions: Dict[str, Session] = {}
        self._clock = clock or _utc_now
        self._lock = RLock()

    def _now(self) -> datetime:
        return _ensure_utc(self._clock())

    def _lookup(self, owner_id: str, session_id: str) -> Session:
        validate_session_id(session_id)
        sess = self._sessions.get(session_id)
        if sess is None or sess.owner_id != owner_id:
            raise NotFoundError()
        return sess

    def create_session(self, owner_id: str, name: Optional[str] = None) -> Session:
        with self._lock:
            now = self._now()
            if not name:
                owned = (s.name for s in self._sessions.values() if s.owner_id == owner_id)
                name = default_session_name(now, owned)
            sess = Session(
                id=new_session_id(),
                owner_id=owner_id,
                name=name,
                transcript=[],
                current_artifact=Artifact(),
                created_at=now,
                updated_at=now,
                version=1,
            )
            self._sessions[sess.id] = sess
            return sess.model_copy(deep=True)

    def get_session(self, owner_id: str, session_id: str) -> Session:
        with self._lock:
            return self._lookup(owner_id, session_id).model_copy(deep=True)

    def list_sessions(self, owner_id: str) -> List[Session]:
        with self._lock:
            out = [s.model_copy(deep=True) for s in self._sessions.values() if s.owner_id == owner_id]
            # Most recently active first
            return sorted(out, key=lambda s: s.updated_at, reverse=True)

    def replace_session(
        self,
        owner_id: str,
        session_id: str,
        *,
        name: Optional[str] = None,
        transcript: Optional[List[ChatTurn]] = None,
        current_artifact: Optional[Artifact] = None,
        expected_version: Optional[int] = None,
    ) -> Session:
        with self._lock:
            sess = self._lookup(owner_id, session_id)
            if expected_version is not None and expected_version != sess.version:
                raise ConflictError()
            changes: Dict[str, Any] = {
                "updated_at": next_timestamp(self._now(), sess.updated_at),
                "version": sess.version + 1,
            }
            if name is not None:
                changes["name"] = name
            if transcript is not None:
                changes["transcript"] = [t.model_copy(deep=True) for t in transcript]
            if current_artifact is not None:
                changes["current_artifact"] = current_artifact.model_copy()
            updated = sess.model_copy(update=changes)
            self._sessions[session_id] = updated
            return updated.model_copy(deep=True)

    def delete_session(self, owner_id: str, session_id: str) -> str:
        with self._lock:
            self._lookup(owner_id, session_id)
            del self._sessions[session_id]
            return session_id


_store: SessionStore | None = None
_store_lock = RLock()


def get_session_store() -> SessionStore:
    global _store
    if _store is not None:
        return _store
    with _store_lock:
        if _store is not None:
            return _store
        impl = os.getenv("STUDIO_SESSION_STORE_IMPL", "memory").lower()
        if impl == "mongo":
            from .session_store_mongo import MongoSessionStore

            _store = MongoSessionStore()
            return _store
        _store = InMemorySessionStore()
        return _store
