from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, model_validator


Role = Literal["user", "assistant"]


class Artifact(BaseModel):
    markup: str = ""
    style: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.markup and not self.style


class ChatTurn(BaseModel):
    turn_id: str
    role: Role
    content: str = ""
    timestamp: datetime
    image: Optional[str] = None
    artifact: Optional[Artifact] = None

    @model_validator(mode="after")
    def _check_role_fields(self) -> "ChatTurn":
        if self.role == "assistant" and self.image is not None:
            raise ValueError("image is only allowed on user turns")
        if self.role == "user" and self.artifact is not None:
            raise ValueError("artifact is only allowed on assistant turns")
        return self


class Session(BaseModel):
    id: str
    owner_id: str
    name: str
    transcript: List[ChatTurn] = Field(default_factory=list)
    current_artifact: Artifact = Field(default_factory=Artifact)
    created_at: datetime
    updated_at: datetime
    version: int = 1


class SessionSummary(BaseModel):
    id: str
    name: str
    display_name: str
    created_at: datetime
    updated_at: datetime


class SessionDetail(BaseModel):
    id: str
    name: str
    transcript: List[ChatTurn]
    current_artifact: Artifact
    created_at: datetime
    updated_at: datetime
    version: int
    selected_turn_id: Optional[str] = None
    preview_artifact: Optional[Artifact] = None


class SessionCreate(BaseModel):
    name: Optional[str] = None


class SessionRename(BaseModel):
    name: str = Field(min_length=1)


class SessionUpdate(BaseModel):
    name: Optional[str] = None
    transcript: Optional[List[ChatTurn]] = None
    current_artifact: Optional[Artifact] = None
    expected_version: Optional[int] = None


class SessionDeleted(BaseModel):
    message: str = "Session deleted successfully"
    deleted_id: str


class GenerateResponse(BaseModel):
    message: str = "Component generated successfully"
    code: Artifact
    user_turn: ChatTurn
    assistant_turn: ChatTurn
    session_version: int
