import enum
import hmac
from datetime import datetime, timezone
from typing import Optional

from fileshare.core.errors import Expired, PasswordMismatch, PasswordRequired
from fileshare.models.shared_file import SharedFile


class GateDecision(str, enum.Enum):
    ALLOW = "allow"
    EXPIRED = "expired"
    PASSWORD_REQUIRED = "password_required"
    PASSWORD_MISMATCH = "password_mismatch"


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; stored values are always UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def is_expired(record: SharedFile, now: Optional[datetime] = None) -> bool:
    if record.expires_at is None:
        return False
    now = now or datetime.now(timezone.utc)
    return as_utc(now) > as_utc(record.expires_at)


def evaluate(record: SharedFile, supplied_password: Optional[str], now: Optional[datetime] = None) -> GateDecision:
    """
    Decide whether `record` may be downloaded right now.

    Expiry wins over the password check. Passwords are compared exactly: no trimming,
    no case folding.
    """
    if is_expired(record, now):
        return GateDecision.EXPIRED

    if record.password:
        if supplied_password is None or supplied_password == "":
            return GateDecision.PASSWORD_REQUIRED
        if not hmac.compare_digest(supplied_password.encode("utf-8"), record.password.encode("utf-8")):
            return GateDecision.PASSWORD_MISMATCH

    return GateDecision.ALLOW


def raise_for_decision(decision: GateDecision) -> None:
    if decision is GateDecision.EXPIRED:
        raise Expired()
    if decision is GateDecision.PASSWORD_REQUIRED:
        raise PasswordRequired()
    if decision is GateDecision.PASSWORD_MISMATCH:
        raise PasswordMismatch()
