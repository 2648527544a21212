class FileStoreError(Exception):
    """Base error surfaced by the file store; carries the HTTP status it maps to."""

    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class IOFailure(FileStoreError):
    default_message = "Disk operation failed"


class NotFound(FileStoreError):
    status_code = 404
    default_message = "File not found"


class BlobMissing(FileStoreError):
    status_code = 404
    default_message = "File metadata exists but file is missing on disk"


class TooLarge(FileStoreError):
    status_code = 400
    default_message = "File too large"


class NoFilesUploaded(FileStoreError):
    status_code = 400
    default_message = "No files uploaded"


class UploadTimeout(FileStoreError):
    status_code = 408
    default_message = "Upload timed out"


class UploadFailed(FileStoreError):
    default_message = "Upload failed"


class StoreUnavailable(FileStoreError):
    default_message = "Metadata store unavailable"
