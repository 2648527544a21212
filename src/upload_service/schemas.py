import datetime as dt
from pydantic import BaseModel


class FileEntry(BaseModel):
    id: str
    name: str
    size: int
    uploaded: dt.datetime
    url: str


class UploadedFile(BaseModel):
    id: str
    name: str
    size: int
    url: str


class UploadResponse(BaseModel):
    message: str
    files: list[UploadedFile]


class MessageResponse(BaseModel):
    message: str


class ErrorResponse(BaseModel):
    error: str
