from __future__ import annotations

from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field

ModelType = Literal["1", "2", "3", "4"]


class _Wire(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class NewSessionMessage(_Wire):
    message: str = Field(min_length=1)
    model_type: ModelType = Field(default="1", alias="modelType")


class SessionMessage(NewSessionMessage):
    session_id: str = Field(min_length=1, alias="sessionId")


class HistoryRequest(_Wire):
    session_id: str = Field(min_length=1, alias="sessionId")


class SessionItem(_Wire):
    session_id: str = Field(alias="sessionId")
    name: str


class SessionsResponse(_Wire):
    sessions: List[SessionItem]


class NewSessionResponse(_Wire):
    session_id: str = Field(alias="sessionId")
    response: str


class SendResponse(_Wire):
    response: str


class HistoryItem(_Wire):
    is_user: bool
    content: str


class HistoryResponse(_Wire):
    history: List[HistoryItem]
