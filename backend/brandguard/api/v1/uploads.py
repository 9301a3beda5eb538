from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status

from brandguard.core.dependencies import require_auth
from brandguard.services.auth_service import UserRecord
from brandguard.services.upload_service import (
    UploadCapabilities,
    UploadProcessResponse,
    process_uploads,
    upload_capabilities,
)

router = APIRouter(prefix="/api/user/upload", tags=["Uploads"])


@router.get("/process", response_model=UploadCapabilities)
def get_capabilities(_: UserRecord = Depends(require_auth)) -> UploadCapabilities:
    return upload_capabilities()


@router.post("/process", response_model=UploadProcessResponse)
async def process(
    files: list[UploadFile] | None = File(default=None),
    current_user: UserRecord = Depends(require_auth),
) -> UploadProcessResponse:
    try:
        return await process_uploads(current_user, files or [])
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
