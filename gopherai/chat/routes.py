from __future__ import annotations

from typing import NoReturn

from fastapi import APIRouter, Depends, Path, Request
from fastapi.responses import StreamingResponse

from gopherai.ai.contracts import ModelFailure, OnChunk
from gopherai.chat.schemas import (
    HistoryItem,
    HistoryRequest,
    HistoryResponse,
    NewSessionMessage,
    NewSessionResponse,
    SendResponse,
    SessionItem,
    SessionMessage,
    SessionsResponse,
)
from gopherai.chat.session_service import SessionNotFound, SessionService
from gopherai.chat.sse import SESSION_NOT_FOUND_MESSAGE, turn_events
from gopherai.common.error_envelope import error_response
from gopherai.identity.auth import get_auth_context
from gopherai.identity.jwt_service import AuthContext
from gopherai.services import get_services

router = APIRouter(prefix="/api/v1/AI/chat", tags=["chat"])

SSE_HEADERS = {"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"}


def get_session_service(request: Request) -> SessionService:
    return get_services(request).session_service


def _not_found(exc: SessionNotFound) -> NoReturn:
    error_response(
        "chat.session_not_found",
        SESSION_NOT_FOUND_MESSAGE,
        status_code=404,
        resource_kind="session",
        details={"session_id": exc.session_id},
    )


def _model_failed(exc: ModelFailure) -> NoReturn:
    error_response(
        "chat.model_failure",
        str(exc),
        status_code=502,
        resource_kind="model",
        details={"model_type": exc.model_type},
    )


@router.get("/sessions", response_model=SessionsResponse)
async def list_sessions(
    auth: AuthContext = Depends(get_auth_context),
    service: SessionService = Depends(get_session_service),
):
    summaries = await service.list_sessions(auth.user_name)
    return SessionsResponse(sessions=[SessionItem(session_id=s.session_id, name=s.title) for s in summaries])


@router.post("/send-new-session", response_model=NewSessionResponse)
async def send_new_session(
    payload: NewSessionMessage,
    auth: AuthContext = Depends(get_auth_context),
    service: SessionService = Depends(get_session_service),
):
    try:
        result = await service.create_session_and_send(auth.user_name, payload.message, payload.model_type)
    except ModelFailure as exc:
        _model_failed(exc)
    return NewSessionResponse(session_id=result.session_id, response=result.response)


@router.post("/send", response_model=SendResponse)
async def send(
    payload: SessionMessage,
    auth: AuthContext = Depends(get_auth_context),
    service: SessionService = Depends(get_session_service),
):
    try:
        reply = await service.send(auth.user_name, payload.session_id, payload.message, payload.model_type)
    except SessionNotFound as exc:
        _not_found(exc)
    except ModelFailure as exc:
        _model_failed(exc)
    return SendResponse(response=reply)


@router.post("/send-stream-new-session")
async def send_stream_new_session(
    payload: NewSessionMessage,
    auth: AuthContext = Depends(get_auth_context),
    service: SessionService = Depends(get_session_service),
):
    async def run(on_chunk: OnChunk):
        result = await service.create_session_and_stream(
            auth.user_name, payload.message, payload.model_type, on_chunk
        )
        return {"sessionId": result.session_id, "done": True}

    return StreamingResponse(turn_events(run), media_type="text/event-stream", headers=SSE_HEADERS)


@router.post("/send-stream")
async def send_stream(
    payload: SessionMessage,
    auth: AuthContext = Depends(get_auth_context),
    service: SessionService = Depends(get_session_service),
):
    async def run(on_chunk: OnChunk):
        await service.stream(auth.user_name, payload.session_id, payload.message, payload.model_type, on_chunk)
        return {"done": True}

    return StreamingResponse(turn_events(run), media_type="text/event-stream", headers=SSE_HEADERS)


@router.post("/history", response_model=HistoryResponse)
async def history(
    payload: HistoryRequest,
    auth: AuthContext = Depends(get_auth_context),
    service: SessionService = Depends(get_session_service),
):
    try:
        messages = await service.history(auth.user_name, payload.session_id)
    except SessionNotFound as exc:
        _not_found(exc)
    return HistoryResponse(history=[HistoryItem(is_user=m.is_user, content=m.content) for m in messages])


@router.delete("/sessions/{session_id}")
async def delete_session(
    session_id: str = Path(..., min_length=1),
    auth: AuthContext = Depends(get_auth_context),
    service: SessionService = Depends(get_session_service),
):
    try:
        await service.delete_session(auth.user_name, session_id)
    except SessionNotFound as exc:
        _not_found(exc)
    return {"status": "deleted", "sessionId": session_id}
