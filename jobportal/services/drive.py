from __future__ import annotations

import io
import os
from typing import Iterable

import anyio
import google.auth
from google.oauth2.service_account import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from googleapiclient.http import MediaIoBaseDownload, MediaIoBaseUpload

from jobportal.core.config import settings
from jobportal.core.paths import resolve_repo_path
from jobportal.services.storage import sign_path

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"


def _drive_client():
    scopes = ["https://www.googleapis.com/auth/drive"]

    service_account_path = settings.google_application_credentials or os.environ.get("GOOGLE_APPLICATION_CREDENTIALS")
    if service_account_path and resolve_repo_path(service_account_path).exists():
        credentials = Credentials.from_service_account_file(str(resolve_repo_path(service_account_path)), scopes=scopes)
    else:
        credentials, _ = google.auth.default(scopes=scopes)

    return build("drive", "v3", credentials=credentials, cache_discovery=False)


def _find_folder_id(service, *, name: str, parent_id: str) -> str | None:
    escaped = name.replace("'", "\\'")
    query = (
        f"mimeType='{FOLDER_MIME_TYPE}' "
        f"and name='{escaped}' "
        f"and '{parent_id}' in parents "
        "and trashed=false"
    )
    resp = (
        service.files()
        .list(
            q=query,
            fields="files(id,name)",
            pageSize=1,
            supportsAllDrives=True,
            includeItemsFromAllDrives=True,
            corpora="allDrives",
        )
        .execute()
    )
    files = resp.get("files", [])
    if not files:
        return None
    return files[0]["id"]


def _ensure_folder(service, *, name: str, parent_id: str) -> str:
    existing = _find_folder_id(service, name=name, parent_id=parent_id)
    if existing:
        return existing
    file_metadata = {
        "name": name,
        "mimeType": FOLDER_MIME_TYPE,
        "parents": [parent_id],
    }
    created = service.files().create(body=file_metadata, fields="id", supportsAllDrives=True).execute()
    return created["id"]


def _root_folder_id() -> str:
    root_id = settings.drive_root_folder_id or os.environ.get("ROOT_FOLDER_ID", "")
    if not root_id:
        raise ValueError("Missing ROOT_FOLDER_ID (or JP_DRIVE_ROOT_FOLDER_ID)")
    return root_id


def upload_blob(path: str, *, content_type: str, data: bytes) -> str:
    """
    Uploads into /<root>/<bucket>/<owner>/<name> for a path "bucket/owner/name".
    Returns the Drive file id, which is the blob handle from then on.
    """
    service = _drive_client()
    *folders, filename = [part for part in path.split("/") if part]
    parent_id = _root_folder_id()
    for folder in folders:
        parent_id = _ensure_folder(service, name=folder, parent_id=parent_id)

    media = MediaIoBaseUpload(io.BytesIO(data), mimetype=content_type or "application/octet-stream", resumable=False)
    file_metadata = {"name": filename, "parents": [parent_id]}
    created = (
        service.files()
        .create(body=file_metadata, media_body=media, fields="id", supportsAllDrives=True)
        .execute()
    )
    return created["id"]


def delete_blob(file_id: str) -> None:
    service = _drive_client()
    try:
        service.files().delete(fileId=file_id, supportsAllDrives=True).execute()
    except HttpError as exc:
        # Already gone.
        if exc.resp is not None and exc.resp.status == 404:
            return
        raise


def download_blob(file_id: str) -> tuple[bytes, str]:
    service = _drive_client()
    try:
        meta = service.files().get(fileId=file_id, fields="id,mimeType", supportsAllDrives=True).execute()
    except HttpError as exc:
        if exc.resp is not None and exc.resp.status == 404:
            raise FileNotFoundError(file_id) from exc
        raise
    request = service.files().get_media(fileId=file_id, supportsAllDrives=True)
    buffer = io.BytesIO()
    downloader = MediaIoBaseDownload(buffer, request)
    done = False
    while not done:
        _, done = downloader.next_chunk()
    return buffer.getvalue(), meta.get("mimeType") or "application/octet-stream"


class DriveBlobStorage:
    """Google Drive as the blob store. Handles are Drive file ids."""

    async def upload(self, path: str, data: bytes, *, content_type: str) -> str:
        return await anyio.to_thread.run_sync(lambda: upload_blob(path, content_type=content_type, data=data))

    async def remove(self, paths: Iterable[str]) -> None:
        for file_id in paths:
            await anyio.to_thread.run_sync(delete_blob, file_id)

    async def download(self, path: str) -> tuple[bytes, str]:
        return await anyio.to_thread.run_sync(download_blob, path)

    def signed_url(self, path: str, ttl_seconds: int) -> str:
        return sign_path(path, ttl_seconds)
