from datetime import datetime, timezone

from sqlalchemy import BigInteger, Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from fileshare.db.base import Base


ORIGINAL_NAME_MAX_LENGTH = 255


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SharedFile(Base):
    """
    Metadata for one uploaded file and its public share token.

    The bytes live in the blob store under `internal_name`; `share_token` is the only
    handle given to unauthenticated callers.
    """

    __tablename__ = "shared_files"
    __table_args__ = (
        CheckConstraint("download_count >= 0", name="ck_shared_files_download_count_nonneg"),
    )

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    original_name = Column(String(ORIGINAL_NAME_MAX_LENGTH), nullable=False)
    internal_name = Column(String(64), unique=True, nullable=False)
    size_bytes = Column(BigInteger, nullable=False)
    mime_type = Column(String(255), nullable=False)
    share_token = Column(String(64), unique=True, nullable=False, index=True)
    download_count = Column(Integer, nullable=False, default=0, server_default="0")
    # Plaintext gate value; compared exactly (see DESIGN.md).
    password = Column(String(255), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="1")
    # Application-side, microsecond precision; listings order by it.
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    owner = relationship("User", back_populates="files")

    @property
    def has_password(self) -> bool:
        return bool(self.password)
