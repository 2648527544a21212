from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import NotFound, StoreUnavailable
from .models import FileRecord


class MetadataStore:
    """Durable, ordered collection of ``FileRecord`` rows.

    Each call touches one record and commits on its own; any database error
    rolls the session back and surfaces as ``StoreUnavailable``.
    """

    def __init__(self, db: Session):
        self.db = db

    def _fail(self, e: SQLAlchemyError) -> StoreUnavailable:
        self.db.rollback()
        return StoreUnavailable(f"Metadata store error: {e}")

    def insert(self, *, stored_name: str, original_name: str, size: int, path: str,
               content_type: str = "application/octet-stream") -> FileRecord:
        record = FileRecord(
            stored_name=stored_name,
            original_name=original_name,
            content_type=content_type,
            size=size,
            path=path,
        )
        try:
            self.db.add(record)
            self.db.commit()
            self.db.refresh(record)
        except SQLAlchemyError as e:
            raise self._fail(e) from e
        return record

    def list_all(self) -> list[FileRecord]:
        stmt = select(FileRecord).order_by(FileRecord.uploaded_at.desc(), FileRecord.seq.asc())
        try:
            return list(self.db.execute(stmt).scalars().all())
        except SQLAlchemyError as e:
            raise self._fail(e) from e

    def find_by_id(self, file_id: str) -> FileRecord:
        try:
            record = self.db.execute(select(FileRecord).where(FileRecord.id == file_id)).scalar_one_or_none()
        except SQLAlchemyError as e:
            raise self._fail(e) from e
        if record is None:
            raise NotFound()
        return record

    def delete_by_id(self, file_id: str) -> None:
        record = self.find_by_id(file_id)
        try:
            self.db.delete(record)
            self.db.commit()
        except SQLAlchemyError as e:
            raise self._fail(e) from e
