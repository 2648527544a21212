import logging
from contextlib import asynccontextmanager
from pathlib import Path
from urllib.parse import quote

from fastapi import FastAPI, UploadFile, File, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles
from starlette.background import BackgroundTask
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import Settings, settings as default_settings
from .db import Database
from .dependencies import get_file_service
from .errors import FileStoreError, StoreUnavailable
from .logging_config import setup_logging
from .middleware import UploadSizeLimitMiddleware
from .schemas import ErrorResponse, FileEntry, MessageResponse, UploadResponse, UploadedFile
from .service import FileService
from .storage import CHUNK_SIZE, BlobStore, sanitize_filename

logger = logging.getLogger(__name__)

INDEX_FILE = Path(__file__).parent / "static" / "index.html"

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def content_disposition(filename: str) -> str:
    name = sanitize_filename(filename)
    quoted = quote(name, safe="")
    if quoted != name:
        return f"attachment; filename*=utf-8''{quoted}"
    return f'attachment; filename="{name}"'


def _iter_handle(handle):
    with handle:
        while True:
            chunk = handle.read(CHUNK_SIZE)
            if not chunk:
                break
            yield chunk


async def file_store_error_handler(request: Request, exc: FileStoreError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)}, headers=exc.headers)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": "Invalid request"})


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.log_level)
        Path(settings.data_dir).mkdir(parents=True, exist_ok=True)
        app.state.blobs.ensure_root()
        app.state.database.connect(
            retries=settings.db_connect_retries,
            backoff=settings.db_connect_backoff_seconds,
        )
        try:
            yield
        finally:
            app.state.database.dispose()

    app = FastAPI(title="File Upload Service", version="1.0.0", lifespan=lifespan)
    app.state.settings = settings
    app.state.database = Database(settings.db_url)
    app.state.blobs = BlobStore(settings.files_dir)

    app.add_middleware(
        UploadSizeLimitMiddleware,
        path="/api/upload",
        max_bytes=settings.max_request_bytes,
        timeout=settings.upload_timeout_seconds,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(FileStoreError, file_store_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    @app.get("/", include_in_schema=False)
    def index():
        return FileResponse(settings.index_file or str(INDEX_FILE), media_type="text/html")

    @app.get("/health")
    def health():
        app.state.database.ping()
        return {"status": "ok"}

    @app.get("/api/files", response_model=list[FileEntry], responses=ERROR_RESPONSES)
    def list_files(service: FileService = Depends(get_file_service)):
        try:
            return service.list_files()
        except StoreUnavailable as e:
            logger.error("Listing files failed: %s", e)
            raise StoreUnavailable("Failed to fetch files") from e

    @app.post("/api/upload", response_model=UploadResponse, responses=ERROR_RESPONSES)
    async def upload_files(
        files: list[UploadFile] | None = File(None),
        service: FileService = Depends(get_file_service),
    ):
        records = await service.upload(files or [])
        return UploadResponse(
            message="Files uploaded successfully",
            files=[UploadedFile(id=r.id, name=r.original_name, size=r.size, url=r.path) for r in records],
        )

    @app.get("/api/files/{file_id}", response_model=FileEntry, responses=ERROR_RESPONSES)
    def get_file(file_id: str, service: FileService = Depends(get_file_service)):
        return service.get_file(file_id)

    @app.delete("/api/files/{file_id}", response_model=MessageResponse, responses=ERROR_RESPONSES)
    def delete_file(file_id: str, service: FileService = Depends(get_file_service)):
        service.delete(file_id)
        return MessageResponse(message="File deleted successfully")

    @app.get("/api/files/{file_id}/download", responses=ERROR_RESPONSES)
    def download(file_id: str, service: FileService = Depends(get_file_service)):
        blob = service.open_download(file_id)
        return StreamingResponse(
            _iter_handle(blob.handle),
            media_type=blob.content_type,
            headers={
                "Content-Disposition": content_disposition(blob.filename),
                "Content-Length": str(blob.size),
            },
            background=BackgroundTask(blob.handle.close),
        )

    app.mount("/uploads", StaticFiles(directory=settings.files_dir, check_dir=False), name="uploads")
    return app


app = create_app()
