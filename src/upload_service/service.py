import datetime as dt
import logging
import mimetypes
import os
from dataclasses import dataclass
from typing import BinaryIO
from urllib.parse import quote

from fastapi import UploadFile
from fastapi.concurrency import run_in_threadpool

from .errors import (
    BlobMissing,
    FileStoreError,
    IOFailure,
    NoFilesUploaded,
    StoreUnavailable,
    TooLarge,
    UploadFailed,
)
from .models import FileRecord
from .repository import MetadataStore
from .schemas import FileEntry
from .storage import FALLBACK_NAME, BlobStore, make_stored_name

logger = logging.getLogger(__name__)

URL_PREFIX = "/uploads"


@dataclass
class Download:
    handle: BinaryIO
    size: int
    filename: str
    content_type: str


def blob_url(stored_name: str) -> str:
    return f"{URL_PREFIX}/{quote(stored_name)}"


class FileService:
    """Keeps blobs on disk and metadata records consistent.

    Upload writes the blob first and only then inserts the record. Delete
    removes the blob before the record, so an interruption leaves a visible
    record that a second Delete cleans up rather than an unreachable blob.
    List and Download tolerate records whose blob is gone.
    """

    def __init__(self, blobs: BlobStore, records: MetadataStore, max_upload_bytes: int,
                 max_files: int | None = None):
        self.blobs = blobs
        self.records = records
        self.max_upload_bytes = max_upload_bytes
        self.max_files = max_files

    async def upload(self, files: list[UploadFile]) -> list[FileRecord]:
        """Store every file of a batch or none of them."""
        if not files:
            raise NoFilesUploaded()
        if self.max_files is not None and len(files) > self.max_files:
            raise TooLarge(f"Too many files: at most {self.max_files} per request")

        created: list[FileRecord] = []
        try:
            for upload_file in files:
                created.append(await self._upload_one(upload_file))
        except FileStoreError:
            await run_in_threadpool(self._rollback, created)
            raise
        except BaseException:
            # отмена запроса: откатываем синхронно, без новых await
            self._rollback(created)
            raise
        return created

    async def _upload_one(self, upload_file: UploadFile) -> FileRecord:
        original_name = upload_file.filename or FALLBACK_NAME
        stored_name = make_stored_name(original_name)
        content_type = (
            upload_file.content_type
            or mimetypes.guess_type(original_name)[0]
            or "application/octet-stream"
        )

        try:
            size = await self.blobs.save_upload(upload_file, stored_name, self.max_upload_bytes)
        except TooLarge:
            logger.warning("Rejected %s: larger than %d bytes", original_name, self.max_upload_bytes)
            raise
        except IOFailure as e:
            logger.error("Blob write failed for %s: %s", stored_name, e)
            raise UploadFailed() from e

        try:
            record = await run_in_threadpool(
                self.records.insert,
                stored_name=stored_name,
                original_name=original_name,
                content_type=content_type,
                size=size,
                path=blob_url(stored_name),
            )
        except StoreUnavailable as e:
            logger.error("Metadata insert failed for %s: %s", stored_name, e)
            self._discard_blob(stored_name)
            raise UploadFailed() from e

        logger.info("Stored %s as %s (%d bytes, id=%s)", original_name, stored_name, size, record.id)
        return record

    def _rollback(self, created: list[FileRecord]) -> None:
        for record in created:
            logger.warning("Rolling back upload %s (id=%s)", record.stored_name, record.id)
            try:
                self.blobs.delete(record.stored_name)
                self.records.delete_by_id(record.id)
            except FileStoreError:
                logger.exception("Failed to roll back upload %s, orphan left behind", record.stored_name)

    def _discard_blob(self, stored_name: str) -> None:
        try:
            self.blobs.delete(stored_name)
        except IOFailure:
            logger.exception("Failed to remove blob %s, orphaned file", stored_name)

    def _entry(self, record: FileRecord) -> FileEntry:
        live_size = self.blobs.stat(record.stored_name)
        if live_size is None:
            logger.warning("Blob %s missing for record %s, using recorded size", record.stored_name, record.id)
        return FileEntry(
            id=record.id,
            name=record.original_name,
            size=record.size if live_size is None else live_size,
            uploaded=record.uploaded_at.replace(tzinfo=dt.timezone.utc),
            url=record.path,
        )

    def list_files(self) -> list[FileEntry]:
        return [self._entry(r) for r in self.records.list_all()]

    def get_file(self, file_id: str) -> FileEntry:
        return self._entry(self.records.find_by_id(file_id))

    def delete(self, file_id: str) -> None:
        record = self.records.find_by_id(file_id)
        if not self.blobs.delete(record.stored_name):
            logger.warning("Blob %s already absent while deleting %s", record.stored_name, file_id)
        self.records.delete_by_id(file_id)
        logger.info("Deleted %s (id=%s)", record.stored_name, file_id)

    def open_download(self, file_id: str) -> Download:
        record = self.records.find_by_id(file_id)
        handle = self.blobs.open(record.stored_name)
        if handle is None:
            logger.warning("Download of %s failed: blob %s missing", file_id, record.stored_name)
            raise BlobMissing()
        return Download(
            handle=handle,
            size=os.fstat(handle.fileno()).st_size,
            filename=record.original_name,
            content_type=record.content_type,
        )
