from __future__ import annotations

from typing import List, Optional
from fastapi import APIRouter, Depends, Query, status

from ...security.auth import User, get_current_user
from ...domain.session_models import (
    SessionCreate,
    SessionDeleted,
    SessionDetail,
    SessionRename,
    SessionSummary,
    SessionUpdate,
)
from ...services.session_service import get_session_service, to_detail


router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.get("", response_model=List[SessionSummary])
def list_sessions(user: User = Depends(get_current_user)) -> List[SessionSummary]:
    return get_session_service().list_sessions(user.id)


@router.post("", response_model=SessionDetail, status_code=status.HTTP_201_CREATED)
def create_session(req: Optional[SessionCreate] = None, user: User = Depends(get_current_user)) -> SessionDetail:
    sess = get_session_service().create_session(user.id, req.name if req else None)
    return to_detail(sess)


@router.get("/{session_id}", response_model=SessionDetail)
def get_session(
    session_id: str,
    selected_turn_id: Optional[str] = Query(None),
    user: User = Depends(get_current_user),
) -> SessionDetail:
    return get_session_service().get_session(user.id, session_id, selected_turn_id=selected_turn_id)


@router.put("/{session_id}", response_model=SessionDetail)
def update_session(session_id: str, req: SessionUpdate, user: User = Depends(get_current_user)) -> SessionDetail:
    return to_detail(get_session_service().update_session(user.id, session_id, req))


@router.patch("/{session_id}/name", response_model=SessionDetail)
def rename_session(session_id: str, req: SessionRename, user: User = Depends(get_current_user)) -> SessionDetail:
    return to_detail(get_session_service().rename_session(user.id, session_id, req.name))


@router.delete("/{session_id}", response_model=SessionDeleted)
def delete_session(session_id: str, user: User = Depends(get_current_user)) -> SessionDeleted:
    deleted_id = get_session_service().delete_session(user.id, session_id)
    return SessionDeleted(deleted_id=deleted_id)
