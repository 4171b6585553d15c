from __future__ import annotations

from fastapi import APIRouter, Depends, File, Request, UploadFile

from gopherai.common.error_envelope import error_response
from gopherai.files.service import MAX_UPLOAD_BYTES, FileTooLarge, InvalidFileType
from gopherai.identity.auth import get_auth_context
from gopherai.identity.jwt_service import AuthContext
from gopherai.services import get_services

router = APIRouter(prefix="/api/v1/file", tags=["file"])


@router.post("/upload")
async def upload_file(
    request: Request,
    file: UploadFile = File(...),
    auth: AuthContext = Depends(get_auth_context),
):
    data = await file.read()
    try:
        stored = await get_services(request).files.upload(auth.user_name, file.filename or "", data)
    except InvalidFileType:
        error_response(
            "file.invalid_type",
            "only .md and .txt files are accepted",
            status_code=400,
            resource_kind="file",
            details={"filename": file.filename},
        )
    except FileTooLarge:
        error_response(
            "file.too_large",
            f"file exceeds {MAX_UPLOAD_BYTES} bytes",
            status_code=413,
            resource_kind="file",
        )
    return {"filename": stored, "message": "uploaded"}
