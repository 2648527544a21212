from typing import Iterator

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from .repository import MetadataStore
from .service import FileService


def get_db(request: Request) -> Iterator[Session]:
    db = request.app.state.database.session()
    try:
        yield db
    finally:
        db.close()


def get_file_service(request: Request, db: Session = Depends(get_db)) -> FileService:
    settings = request.app.state.settings
    return FileService(
        blobs=request.app.state.blobs,
        records=MetadataStore(db),
        max_upload_bytes=settings.max_upload_bytes,
        max_files=settings.max_files_per_request,
    )
