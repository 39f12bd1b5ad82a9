import logging

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from jobportal.api import deps
from jobportal.services.storage import BlobStorage, verify_signed_path

logger = logging.getLogger("jp.api.files")

router = APIRouter(prefix="/files", tags=["files"])


@router.get("/{path:path}")
async def download_file(
    path: str,
    expires: int = Query(...),
    signature: str = Query(...),
    storage: BlobStorage = Depends(deps.get_storage),
):
    if not verify_signed_path(path, expires, signature):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Link expired or invalid")
    try:
        data, content_type = await storage.download(path)
    except (FileNotFoundError, ValueError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    return Response(content=data, media_type=content_type, headers={"Cache-Control": "private, no-store"})
