import logging
import os
import time
import uuid
from pathlib import Path
from typing import BinaryIO

from fastapi import UploadFile

from .errors import IOFailure, TooLarge

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024  # 1MB
FALLBACK_NAME = "upload.bin"
# имя на диске <= 255 байт: префикс (~23 байта) + базовое имя
MAX_BASENAME_BYTES = 200
MAX_SUFFIX_BYTES = 16


def sanitize_filename(name: str | None) -> str:
    """Drop any directory part of a client-supplied name."""
    base = (name or "").replace("\\", "/").rsplit("/", 1)[-1].strip()
    if base in ("", ".", ".."):
        return FALLBACK_NAME
    return base


def truncate_filename(name: str, max_bytes: int = MAX_BASENAME_BYTES) -> str:
    """Shorten a name to at most ``max_bytes`` of UTF-8, keeping a short extension."""
    if len(name.encode("utf-8")) <= max_bytes:
        return name
    stem, dot, ext = name.rpartition(".")
    suffix = f".{ext}" if dot and stem and len(ext.encode("utf-8")) < MAX_SUFFIX_BYTES else ""
    if not suffix:
        stem = name
    budget = max_bytes - len(suffix.encode("utf-8"))
    return stem.encode("utf-8")[:budget].decode("utf-8", "ignore") + suffix


def make_stored_name(original_name: str | None) -> str:
    # миллисекунды + случайный токен: уникально даже для одновременных загрузок
    base = truncate_filename(sanitize_filename(original_name))
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}-{base}"


class BlobStore:
    """File bytes on local disk, addressed by a generated name under ``root``."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def ensure_root(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, name: str) -> Path:
        if not name or name in (".", "..") or "/" in name or "\\" in name or "\x00" in name:
            raise ValueError(f"Invalid blob name: {name!r}")
        path = self.root / name
        if path.resolve().parent != self.root.resolve():
            raise ValueError(f"Blob name escapes storage root: {name!r}")
        return path

    def put(self, name: str, data: bytes) -> None:
        path = self.path_for(name)
        try:
            with path.open("wb") as out:
                out.write(data)
        except OSError as e:
            self._discard(path)
            logger.error("Failed to store %s: %s", path, e)
            raise IOFailure("Failed to store file") from e

    async def save_upload(self, upload_file: UploadFile, name: str, max_bytes: int) -> int:
        """Stream an upload to disk and return its size.

        The partial file is removed on every unsuccessful exit, including
        cancellation, so no truncated blob is left behind.
        """
        path = self.path_for(name)
        size = 0
        try:
            with path.open("wb") as out:
                while True:
                    chunk = await upload_file.read(CHUNK_SIZE)
                    if not chunk:
                        break
                    size += len(chunk)
                    if size > max_bytes:
                        raise TooLarge(f"File {upload_file.filename or name} exceeds limit of {max_bytes} bytes")
                    out.write(chunk)
        except OSError as e:
            self._discard(path)
            logger.error("Failed to store %s: %s", path, e)
            raise IOFailure("Failed to store file") from e
        except BaseException:
            self._discard(path)
            raise
        finally:
            await upload_file.close()
        return size

    def stat(self, name: str) -> int | None:
        try:
            return self.path_for(name).stat().st_size
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.error("Failed to stat blob %s: %s", name, e)
            raise IOFailure("Failed to stat file") from e

    def open(self, name: str) -> BinaryIO | None:
        try:
            return self.path_for(name).open("rb")
        except FileNotFoundError:
            return None
        except OSError as e:
            logger.error("Failed to read blob %s: %s", name, e)
            raise IOFailure("Failed to read file") from e

    def delete(self, name: str) -> bool:
        """Remove a blob; ``False`` means it was already gone."""
        try:
            os.remove(self.path_for(name))
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error("Failed to delete blob %s: %s", name, e)
            raise IOFailure("Failed to delete file") from e
        return True

    def _discard(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
        except OSError:
            logger.exception("Failed to remove partial file %s", path)
