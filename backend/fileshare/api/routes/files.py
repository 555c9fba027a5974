import logging
from typing import Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from fastapi.responses import StreamingResponse
from prometheus_client import Counter
from sqlalchemy.orm import Session

from fileshare.api.deps import ShareContext, get_share_context
from fileshare.core.config import get_settings
from fileshare.core.errors import Expired, NotFound, StorageFailure, ValidationError
from fileshare.core.rate_limit import enforce_rate_limit
from fileshare.db.session import get_db_session
from fileshare.models.shared_file import SharedFile
from fileshare.schemas.shared_file import (
    DeleteResult,
    OwnedFileList,
    OwnedFileSummary,
    SharedFileInfo,
    UploadedFile,
)
from fileshare.services.access_gate import as_utc, evaluate, is_expired, raise_for_decision
from fileshare.services.blob_store import LocalBlobStore, get_blob_store
from fileshare.services.share_registry import ShareRegistry, parse_expires_in

router = APIRouter(prefix="/files", tags=["files"])

logger = logging.getLogger("fs.files")

_UPLOADS = Counter("fs_file_uploads_total", "Files uploaded")
_DOWNLOADS = Counter("fs_file_downloads_total", "Files downloaded", ["outcome"])

DEFAULT_MIME = "application/octet-stream"
# Primary keys are 32-bit INTEGER columns.
MAX_RECORD_ID = 2**31 - 1


def _content_disposition(filename: str) -> str:
    ascii_name = filename.encode("ascii", "ignore").decode("ascii").replace('"', "").replace("\\", "") or "download"
    return f"attachment; filename=\"{ascii_name}\"; filename*=UTF-8''{quote(filename, safe='')}"


def _summary(record: SharedFile, ctx: ShareContext) -> OwnedFileSummary:
    return OwnedFileSummary(
        id=record.id,
        original_name=record.original_name,
        size=int(record.size_bytes),
        mime_type=record.mime_type,
        share_token=record.share_token,
        share_link=ctx.share_link(record.share_token),
        download_count=int(record.download_count or 0),
        has_password=record.has_password,
        is_active=bool(record.is_active),
        uploaded_at=as_utc(record.created_at),
        expires_at=as_utc(record.expires_at) if record.expires_at else None,
    )


@router.post("", response_model=UploadedFile)
def upload_file(
    file: Optional[UploadFile] = File(default=None),
    password: Optional[str] = Form(default=None),
    expires_in: Optional[str] = Form(default=None, alias="expiresIn"),
    ctx: ShareContext = Depends(get_share_context),
    db: Session = Depends(get_db_session),
    blobs: LocalBlobStore = Depends(get_blob_store),
):
    """
    Store one file for the current user and return its share link.

    - `password`: optional download password (empty means none)
    - `expiresIn`: whole hours until the link expires, or "never" (default)
    """
    if file is None or not file.filename:
        raise ValidationError("No file uploaded")
    hours = parse_expires_in(expires_in)

    internal_name = blobs.write(file.file, file.filename)
    try:
        record = ShareRegistry(db).create(
            owner_id=ctx.user.id,
            original_name=file.filename,
            size_bytes=blobs.size(internal_name),
            mime_type=file.content_type or DEFAULT_MIME,
            internal_name=internal_name,
            password=password,
            expires_in_hours=hours,
        )
    except Exception:
        # Clean up the orphaned blob; the original error is what the caller sees.
        try:
            blobs.delete(internal_name)
        except StorageFailure:
            logger.exception("orphan blob cleanup failed name=%s", internal_name)
        raise

    _UPLOADS.inc()
    return UploadedFile(
        id=record.id,
        original_name=record.original_name,
        size=int(record.size_bytes),
        share_token=record.share_token,
        share_link=ctx.share_link(record.share_token),
        uploaded_at=as_utc(record.created_at),
        expires_at=as_utc(record.expires_at) if record.expires_at else None,
    )


@router.get("/mine", response_model=OwnedFileList)
def list_my_files(
    ctx: ShareContext = Depends(get_share_context),
    db: Session = Depends(get_db_session),
):
    records = ShareRegistry(db).list_by_owner(ctx.user.id)
    return OwnedFileList(files=[_summary(r, ctx) for r in records])


@router.get("/{token}", response_model=SharedFileInfo)
def file_info(token: str, db: Session = Depends(get_db_session)):
    """Public metadata for a share link (what a share page shows before download)."""
    record = ShareRegistry(db).get_by_token(token)
    if is_expired(record):
        raise Expired()

    return SharedFileInfo(
        original_name=record.original_name,
        size=int(record.size_bytes),
        mime_type=record.mime_type,
        download_count=int(record.download_count or 0),
        uploaded_at=as_utc(record.created_at),
        expires_at=as_utc(record.expires_at) if record.expires_at else None,
        has_password=record.has_password,
        uploaded_by=record.owner.display_name if record.owner else "unknown",
    )


@router.get("/{token}/content")
def download_file(
    token: str,
    request: Request,
    password: Optional[str] = Query(default=None),
    db: Session = Depends(get_db_session),
    blobs: LocalBlobStore = Depends(get_blob_store),
):
    settings = get_settings()
    enforce_rate_limit(
        request,
        scope="download",
        limit=settings.download_rl_ip_per_minute,
        window_seconds=60,
        discriminator=token,
    )

    registry = ShareRegistry(db)
    record = registry.get_by_token(token)
    decision = evaluate(record, password)
    _DOWNLOADS.labels(decision.value).inc()
    raise_for_decision(decision)

    filename = record.original_name
    media_type = record.mime_type or DEFAULT_MIME
    if not blobs.exists(record.internal_name):
        logger.error("blob missing for active record id=%s name=%s", record.id, record.internal_name)
        raise NotFound("File not found on disk")
    chunks = blobs.read(record.internal_name)
    try:
        registry.increment_download_count(token)
    except Exception:
        chunks.close()
        raise
    return StreamingResponse(
        chunks,
        media_type=media_type,
        headers={"Content-Disposition": _content_disposition(filename)},
    )


@router.delete("/{file_id}", response_model=DeleteResult)
def delete_file(
    file_id: str,
    ctx: ShareContext = Depends(get_share_context),
    db: Session = Depends(get_db_session),
    blobs: LocalBlobStore = Depends(get_blob_store),
):
    """Remove the blob, then the record. A failed blob delete keeps the record."""
    try:
        record_id = int(file_id)
    except ValueError:
        raise NotFound()
    if not 0 < record_id <= MAX_RECORD_ID:
        raise NotFound()

    registry = ShareRegistry(db)
    record = registry.get_by_id_for_owner(record_id, ctx.user.id)
    blobs.delete(record.internal_name)
    registry.delete(record.id, ctx.user.id)
    return DeleteResult(ok=True, id=record_id)
