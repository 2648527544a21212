from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, extra="ignore")

    host: str = "0.0.0.0"
    port: int = 5000
    data_dir: str = "data"
    files_dir: str = "uploads"
    database_url: str | None = None

    max_upload_bytes: int = 10 * 1024 * 1024  # 10MB
    upload_timeout_seconds: float = 60.0
    max_files_per_request: int = 10

    db_connect_retries: int = 5
    db_connect_backoff_seconds: float = 0.5

    cors_origins: list[str] = ["*"]
    log_level: str = "INFO"
    index_file: str | None = None

    @property
    def db_url(self) -> str:
        if self.database_url:
            return self.database_url
        # sqlite файл
        return f"sqlite:///{self.data_dir.rstrip('/')}/file_uploads.db"

    @property
    def max_request_bytes(self) -> int:
        # все файлы по максимуму + запас на заголовки multipart
        return self.max_upload_bytes * self.max_files_per_request + 1024 * 1024


settings = Settings()
