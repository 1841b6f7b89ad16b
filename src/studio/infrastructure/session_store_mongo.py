from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
import logging
import os

from bson import ObjectId
from pymongo import DESCENDING, MongoClient, ReturnDocument

from ..domain.errors import ConflictError, NotFoundError
from ..domain.session_models import Artifact, ChatTurn, Session
from .session_store import (
    InMemorySessionStore,
    _ensure_utc,
    _utc_now,
    default_name_pattern,
    default_session_name,
    new_session_id,
    next_timestamp,
    session_date_label,
    validate_session_id,
)


logger = logging.getLogger("studio.store")

# BSON dates keep millisecond precision
_MONGO_STEP = timedelta(milliseconds=1)
_MAX_CAS_ATTEMPTS = 5


def _truncate_ms(value):
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


class MongoSessionStore:
    """Mongo-backed session store, one document per session.

    If Mongo is unreachable and STUDIO_SESSION_STORE_REQUIRE_MONGO is not true,
    operations fall back to an internal in-memory store to avoid breaking dev/CI.
    """

    def __init__(self, client: Any = None, clock: Optional[Callable[[], datetime]] = None) -> None:
        self._clock = clock or _utc_now
        self._fallback = InMemorySessionStore(clock=clock)
        self._client = None
        self._sessions = None
        try:
            mongo_url = os.getenv("MONGO_URL", "mongodb://localhost:27017")
            mongo_db = os.getenv("MONGO_DB", "studio")
            self._client = client or MongoClient(mongo_url, serverSelectionTimeoutMS=500)
            # Trigger server selection
            self._client.server_info()
            self._sessions = self._client[mongo_db]["sessions"]
            self._sessions.create_index([("owner_id", 1), ("updated_at", DESCENDING)])
        except Exception:
            if os.getenv("STUDIO_SESSION_STORE_REQUIRE_MONGO", "false").lower() in ("1", "true", "yes"):
                raise
            logger.warning("Mongo unavailable; session store falling back to memory", exc_info=True)
            self._client = None
            self._sessions = None

    def _use_fallback(self) -> bool:
        return self._client is None or self._sessions is None

    def _now(self) -> datetime:
        return _truncate_ms(_ensure_utc(self._clock()))

    def create_session(self, owner_id: str, name: Optional[str] = None) -> Session:
        if self._use_fallback():
            return self._fallback.create_session(owner_id, name)
        now = self._now()
        if not name:
            pattern = default_name_pattern(session_date_label(now))
            cursor = self._sessions.find(
                {"owner_id": owner_id, "name": {"$regex": pattern.pattern, "$options": "i"}},
                {"name": 1},
            )
            name = default_session_name(now, (str(d.get("name", "")) for d in cursor))
        sid = new_session_id()
        doc = {
            "_id": ObjectId(sid),
            "owner_id": owner_id,
            "name": name,
            "transcript": [],
            "current_artifact": Artifact().model_dump(),
            "created_at": now,
            "updated_at": now,
            "version": 1,
        }
        self._sessions.insert_one(doc)
        return self._to_session(doc)

    def get_session(self, owner_id: str, session_id: str) -> Session:
        if self._use_fallback():
            return self._fallback.get_session(owner_id, session_id)
        return self._to_session(self._find(owner_id, session_id))

    def list_sessions(self, owner_id: str) -> List[Session]:
        if self._use_fallback():
            return self._fallback.list_sessions(owner_id)
        cursor = self._sessions.find({"owner_id": owner_id}).sort("updated_at", DESCENDING)
        return [self._to_session(doc) for doc in cursor]

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
        if self._use_fallback():
            return self._fallback.replace_session(
                owner_id,
                session_id,
                name=name,
                transcript=transcript,
                current_artifact=current_artifact,
                expected_version=expected_version,
            )
        fields: Dict[str, Any] = {}
        if name is not None:
            fields["name"] = name
        if transcript is not None:
            fields["transcript"] = [t.model_dump() for t in transcript]
        if current_artifact is not None:
            fields["current_artifact"] = current_artifact.model_dump()

        for _ in range(_MAX_CAS_ATTEMPTS):
            doc = self._find(owner_id, session_id)
            version = int(doc.get("version", 1))
            if expected_version is not None and expected_version != version:
                raise ConflictError()
            previous = _ensure_utc(doc.get("updated_at"))
            now = self._now()
            update = dict(fields)
            update["updated_at"] = next_timestamp(now, previous, step=_MONGO_STEP)
            updated = self._sessions.find_one_and_update(
                {"_id": doc["_id"], "owner_id": owner_id, "version": version},
                {"$set": update, "$inc": {"version": 1}},
                return_document=ReturnDocument.AFTER,
            )
            if updated:
                return self._to_session(updated)
            if expected_version is not None:
                raise ConflictError()
        raise ConflictError()

    def delete_session(self, owner_id: str, session_id: str) -> str:
        if self._use_fallback():
            return self._fallback.delete_session(owner_id, session_id)
        validate_session_id(session_id)
        deleted = self._sessions.find_one_and_delete({"_id": ObjectId(session_id), "owner_id": owner_id})
        if not deleted:
            raise NotFoundError()
        return session_id

    def _find(self, owner_id: str, session_id: str) -> Dict[str, Any]:
        validate_session_id(session_id)
        doc = self._sessions.find_one({"_id": ObjectId(session_id), "owner_id": owner_id})
        if not doc:
            raise NotFoundError()
        return doc

    def _to_session(self, doc: Dict[str, Any]) -> Session:
        data = dict(doc)
        transcript = []
        for raw in data.get("transcript") or []:
            turn = dict(raw)
            turn["timestamp"] = _ensure_utc(turn.get("timestamp"))
            transcript.append(ChatTurn(**turn))
        return Session(
            id=str(data.get("_id")),
            owner_id=str(data.get("owner_id")),
            name=str(data.get("name", "Untitled Session")),
            transcript=transcript,
            current_artifact=Artifact(**(data.get("current_artifact") or {})),
            created_at=_ensure_utc(data.get("created_at")),
            updated_at=_ensure_utc(data.get("updated_at")),
            version=int(data.get("version", 1)),
        )
