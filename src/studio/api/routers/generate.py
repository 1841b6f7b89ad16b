from __future__ import annotations

from typing import Optional
import logging

from fastapi import APIRouter, Depends, File, Form, UploadFile

from ...security.auth import User, get_current_user
from ...domain.errors import ValidationError
from ...domain.session_models import GenerateResponse
from ...infrastructure.image_store import get_image_store
from ...infrastructure.session_store import get_session_store, validate_session_id
from ...services.session_orchestrator import get_orchestrator


logger = logging.getLogger("studio.api")

router = APIRouter(prefix="/generate", tags=["generate"])


@router.post("", response_model=GenerateResponse)
def generate_component(
    session_id: str = Form(...),
    message: str = Form(""),
    image: Optional[UploadFile] = File(None),
    user: User = Depends(get_current_user),
) -> GenerateResponse:
    validate_session_id(session_id)
    has_image = image is not None and bool(image.filename)
    if not message.strip() and not has_image:
        raise ValidationError()

    images = get_image_store()
    image_ref: Optional[str] = None
    if has_image:
        # Ownership is checked before anything is written to upload storage
        get_session_store().get_session(user.id, session_id)
        # One byte past the limit is enough for save_image to reject oversized uploads
        data = image.file.read(images.max_bytes + 1)
        image_ref = images.save_image(image.filename or "upload", data)

    try:
        result = get_orchestrator().submit_turn(user.id, session_id, message, image=image_ref)
    except Exception:
        # A failed turn persists nothing, so the upload has no owner
        if image_ref is not None:
            images.delete_image(image_ref)
        raise

    logger.info(
        "Generated component for session %s (markup=%d chars, style=%d chars)",
        session_id,
        len(result.artifact.markup),
        len(result.artifact.style),
    )
    return GenerateResponse(
        code=result.artifact,
        user_turn=result.user_turn,
        assistant_turn=result.assistant_turn,
        session_version=result.session.version,
    )
