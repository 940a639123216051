"""Signed downloads for the filesystem storage backend.

MinIO hands out its own presigned URLs; with the filesystem backend the
API serves the bytes itself, guarded by an HMAC signature and expiry
(see ``StorageService.create_signed_url``).
"""

from __future__ import annotations

import mimetypes

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import FileResponse

from receiptly.api.dependencies import get_storage
from receiptly.core.errors import StorageError
from receiptly.services.storage_service import StorageService

router = APIRouter(prefix="/storage", tags=["storage"])


@router.get("/{bucket}/{path:path}")
async def download_signed(
    bucket: str,
    path: str,
    exp: int = Query(...),
    sig: str = Query(...),
    storage: StorageService = Depends(get_storage),
) -> FileResponse:
    if storage.backend != "filesystem":
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    if not storage.verify_signed_url(bucket, path, exp, sig):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired signature")
    try:
        full_path = storage.local_path(bucket, path)
    except StorageError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    if not full_path.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    media_type, _ = mimetypes.guess_type(full_path.name)
    return FileResponse(full_path, media_type=media_type or "application/octet-stream")
