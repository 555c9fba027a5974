from datetime import datetime
from typing import List, Optional

from pydantic import Field

from fileshare.schemas.base import CamelORMModel


class UploadedFile(CamelORMModel):
    """Returned to the uploader right after a successful upload."""
    id: int
    original_name: str
    size: int
    share_token: str
    share_link: str
    uploaded_at: datetime
    expires_at: Optional[datetime] = None


class OwnedFileSummary(CamelORMModel):
    """One row of the owner's listing. Never carries the blob's internal name."""
    id: int
    original_name: str
    size: int
    mime_type: str
    share_token: str
    share_link: str
    download_count: int
    has_password: bool
    is_active: bool
    uploaded_at: datetime
    expires_at: Optional[datetime] = None


class OwnedFileList(CamelORMModel):
    files: List[OwnedFileSummary] = Field(default_factory=list)


class SharedFileInfo(CamelORMModel):
    """Public metadata for a share token; the password itself is never included."""
    original_name: str
    size: int
    mime_type: str
    download_count: int
    uploaded_at: datetime
    expires_at: Optional[datetime] = None
    has_password: bool
    uploaded_by: str


class DeleteResult(CamelORMModel):
    ok: bool = True
    id: int
