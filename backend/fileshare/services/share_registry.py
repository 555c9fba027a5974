"""Persistence for shared-file records: creation, lookups, download counting, deletion."""
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from fileshare.core.errors import NotFound, StorageFailure, ValidationError
from fileshare.models.shared_file import ORIGINAL_NAME_MAX_LENGTH, SharedFile


logger = logging.getLogger("fs.registry")

NEVER = "never"
# 100 years; keeps expires_at inside the datetime range.
MAX_EXPIRES_IN_HOURS = 24 * 365 * 100
_TOKEN_ATTEMPTS = 3


def parse_expires_in(raw: Optional[str]) -> Optional[int]:
    """Parse the `expiresIn` form value: integer hours, or empty/"never" for no expiry."""
    if raw is None:
        return None
    value = raw.strip()
    if not value or value.lower() == NEVER:
        return None
    try:
        hours = int(value)
    except ValueError:
        raise ValidationError("expiresIn must be a whole number of hours or 'never'")
    if hours < 0:
        raise ValidationError("expiresIn must not be negative")
    if hours > MAX_EXPIRES_IN_HOURS:
        raise ValidationError(f"expiresIn must be at most {MAX_EXPIRES_IN_HOURS} hours")
    return hours


def new_share_token() -> str:
    return str(uuid.uuid4())


class ShareRegistry:
    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        *,
        owner_id: int,
        original_name: str,
        size_bytes: int,
        mime_type: str,
        internal_name: str,
        password: Optional[str] = None,
        expires_in_hours: Optional[int] = None,
    ) -> SharedFile:
        missing = [
            name
            for name, value in (
                ("owner_id", owner_id),
                ("original_name", original_name),
                ("size_bytes", size_bytes),
                ("mime_type", mime_type),
                ("internal_name", internal_name),
            )
            if value is None or value == ""
        ]
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")
        if size_bytes < 0:
            raise ValidationError("size_bytes must not be negative")
        if len(original_name) > ORIGINAL_NAME_MAX_LENGTH:
            raise ValidationError(f"File name too long (max {ORIGINAL_NAME_MAX_LENGTH} characters)")

        now = datetime.now(timezone.utc)
        expires_at = None
        if expires_in_hours is not None:
            try:
                expires_at = now + timedelta(hours=expires_in_hours)
            except OverflowError:
                raise ValidationError("expiresIn too large")

        # uuid4 collisions are not expected; the unique index is the real guarantee.
        for attempt in range(1, _TOKEN_ATTEMPTS + 1):
            record = SharedFile(
                owner_id=owner_id,
                original_name=original_name,
                internal_name=internal_name,
                size_bytes=size_bytes,
                mime_type=mime_type,
                share_token=new_share_token(),
                download_count=0,
                password=password or None,
                expires_at=expires_at,
                is_active=True,
                created_at=now,
            )
            self.db.add(record)
            try:
                self.db.commit()
            except IntegrityError as e:
                self.db.rollback()
                if self._internal_name_taken(internal_name):
                    raise ValidationError("internal name already registered") from e
                logger.warning("share token collision on attempt %d; retrying", attempt)
                continue
            except SQLAlchemyError as e:
                self.db.rollback()
                raise StorageFailure("Upload failed", detail=str(e)) from e
            self.db.refresh(record)
            logger.info("file registered id=%s owner=%s token=%s", record.id, owner_id, record.share_token)
            return record

        raise StorageFailure("Upload failed", detail="could not allocate a unique share token")

    def _internal_name_taken(self, internal_name: str) -> bool:
        return (
            self.db.query(SharedFile.id).filter(SharedFile.internal_name == internal_name).first() is not None
        )

    def list_by_owner(self, owner_id: int) -> List[SharedFile]:
        try:
            return (
                self.db.query(SharedFile)
                .filter(SharedFile.owner_id == owner_id, SharedFile.is_active.is_(True))
                .order_by(SharedFile.created_at.desc(), SharedFile.id.desc())
                .all()
            )
        except SQLAlchemyError as e:
            raise StorageFailure("Failed to fetch files", detail=str(e)) from e

    def get_by_token(self, token: str) -> SharedFile:
        try:
            record = (
                self.db.query(SharedFile)
                .filter(SharedFile.share_token == token, SharedFile.is_active.is_(True))
                .first()
            )
        except SQLAlchemyError as e:
            raise StorageFailure("Failed to get file info", detail=str(e)) from e
        if record is None:
            raise NotFound()
        return record

    def get_by_id_for_owner(self, file_id: int, owner_id: int) -> SharedFile:
        try:
            record = (
                self.db.query(SharedFile)
                .filter(SharedFile.id == file_id, SharedFile.owner_id == owner_id)
                .first()
            )
        except SQLAlchemyError as e:
            raise StorageFailure("Failed to get file", detail=str(e)) from e
        if record is None:
            raise NotFound()
        return record

    def increment_download_count(self, token: str) -> None:
        """Add one to the counter with a single UPDATE; no read-modify-write."""
        try:
            updated = (
                self.db.query(SharedFile)
                .filter(SharedFile.share_token == token)
                .update(
                    {SharedFile.download_count: SharedFile.download_count + 1},
                    synchronize_session=False,
                )
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageFailure("Download failed", detail=str(e)) from e
        if not updated:
            raise NotFound()

    def delete(self, file_id: int, owner_id: int) -> None:
        try:
            deleted = (
                self.db.query(SharedFile)
                .filter(SharedFile.id == file_id, SharedFile.owner_id == owner_id)
                .delete(synchronize_session=False)
            )
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise StorageFailure("Delete failed", detail=str(e)) from e
        if not deleted:
            raise NotFound()
        logger.info("file record deleted id=%s owner=%s", file_id, owner_id)
