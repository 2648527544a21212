import io
from pathlib import Path
from typing import Generator

import pytest
from fastapi import UploadFile
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session
from starlette.datastructures import Headers

from upload_service.config import Settings
from upload_service.db import Database
from upload_service.main import create_app
from upload_service.repository import MetadataStore
from upload_service.service import FileService
from upload_service.storage import BlobStore


def make_upload(data: bytes, filename: str = "report.txt", content_type: str = "text/plain") -> UploadFile:
    return UploadFile(file=io.BytesIO(data), filename=filename, headers=Headers({"content-type": content_type}))


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(
        data_dir=str(tmp_path / "data"),
        files_dir=str(tmp_path / "uploads"),
        db_connect_retries=0,
        log_level="WARNING",
    )


@pytest.fixture()
def files_dir(settings: Settings) -> Path:
    return Path(settings.files_dir)


@pytest.fixture()
def app(settings: Settings):
    return create_app(settings)


@pytest.fixture()
def client(app) -> Generator[TestClient, None, None]:
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def database(tmp_path: Path) -> Generator[Database, None, None]:
    db = Database(f"sqlite:///{tmp_path}/meta.db")
    db.connect(retries=0)
    yield db
    db.dispose()


@pytest.fixture()
def session(database: Database) -> Generator[Session, None, None]:
    db = database.session()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def records(session: Session) -> MetadataStore:
    return MetadataStore(session)


@pytest.fixture()
def blobs(tmp_path: Path) -> BlobStore:
    store = BlobStore(tmp_path / "blobs")
    store.ensure_root()
    return store


@pytest.fixture()
def service(blobs: BlobStore, records: MetadataStore) -> FileService:
    return FileService(blobs, records, max_upload_bytes=16, max_files=3)
