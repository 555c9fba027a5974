"""Blob storage on the local filesystem, keyed by a generated internal name."""
import logging
import os
import re
import uuid
from pathlib import Path
from typing import BinaryIO, Generator

from fileshare.core.config import get_settings
from fileshare.core.errors import NotFound, PayloadTooLarge, StorageFailure


logger = logging.getLogger("fs.storage")

CHUNK_SIZE = 1024 * 1024

_SAFE_EXT = re.compile(r"^\.[A-Za-z0-9]{1,16}$")
_SAFE_NAME = re.compile(r"^[0-9a-f]{32}(\.[A-Za-z0-9]{1,16})?$")


def _extension(original_name: str) -> str:
    ext = Path(original_name or "").suffix
    return ext if _SAFE_EXT.match(ext) else ""


class LocalBlobStore:
    """Stores raw upload bytes under `base_path/<uuid hex><ext>`."""

    def __init__(self, base_path: str | Path, max_bytes: int):
        self.base_path = Path(base_path)
        self.max_bytes = max_bytes
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _path(self, internal_name: str) -> Path:
        if not _SAFE_NAME.match(internal_name or ""):
            raise NotFound(detail=f"invalid blob name {internal_name!r}")
        return self.base_path / internal_name

    def write(self, stream: BinaryIO, original_name: str) -> str:
        """
        Copy `stream` into the store and return the new internal name.

        The payload is written to a temporary file and renamed into place only once
        it is complete and within `max_bytes`; nothing partial is left behind.
        """
        internal_name = f"{uuid.uuid4().hex}{_extension(original_name)}"
        final_path = self.base_path / internal_name
        tmp_path = self.base_path / f".{internal_name}.part"
        written = 0
        try:
            with open(tmp_path, "wb") as out:
                while True:
                    chunk = stream.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    written += len(chunk)
                    if written > self.max_bytes:
                        raise PayloadTooLarge(f"File too large (max {self.max_bytes} bytes)")
                    out.write(chunk)
            os.replace(tmp_path, final_path)
        except PayloadTooLarge:
            tmp_path.unlink(missing_ok=True)
            raise
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise StorageFailure(detail=f"blob write failed: {e}") from e

        logger.info("blob stored name=%s bytes=%d", internal_name, written)
        return internal_name

    def read(self, internal_name: str) -> Generator[bytes, None, None]:
        """
        Open the blob and return a generator over its chunks.

        The generator already owns the open handle: iterate it to the end or call
        `close()` on it.
        """
        path = self._path(internal_name)
        try:
            fh = open(path, "rb")
        except FileNotFoundError:
            raise NotFound(detail=f"blob {internal_name} missing on disk")
        except OSError as e:
            raise StorageFailure(detail=f"blob read failed: {e}") from e
        chunks = self._iter_chunks(fh)
        next(chunks)
        return chunks

    @staticmethod
    def _iter_chunks(fh: BinaryIO) -> Generator[bytes, None, None]:
        with fh:
            # Primed by read(); from here on close() releases the handle.
            yield b""
            while True:
                chunk = fh.read(CHUNK_SIZE)
                if not chunk:
                    break
                yield chunk

    def delete(self, internal_name: str) -> None:
        """Remove the blob. A blob that is already gone counts as deleted."""
        try:
            path = self._path(internal_name)
        except NotFound:
            logger.warning("ignoring delete of invalid blob name %r", internal_name)
            return
        try:
            path.unlink()
        except FileNotFoundError:
            logger.info("blob already absent name=%s", internal_name)
            return
        except OSError as e:
            raise StorageFailure(detail=f"blob delete failed: {e}") from e
        logger.info("blob deleted name=%s", internal_name)

    def size(self, internal_name: str) -> int:
        try:
            return self._path(internal_name).stat().st_size
        except FileNotFoundError:
            raise NotFound(detail=f"blob {internal_name} missing on disk")
        except OSError as e:
            raise StorageFailure(detail=f"blob stat failed: {e}") from e

    def exists(self, internal_name: str) -> bool:
        try:
            return self._path(internal_name).is_file()
        except NotFound:
            return False


def get_blob_store() -> LocalBlobStore:
    """FastAPI dependency; overridden in tests with a temp-dir store."""
    settings = get_settings()
    return LocalBlobStore(settings.blob_storage_path, settings.upload_max_bytes)
