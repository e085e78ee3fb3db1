from pydantic import BaseModel, Field
from typing import Optional


class StoredObject(BaseModel):
    key: str
    size: int = 0
    uploaded_at: Optional[float] = None # epoch seconds reported by the store

class FileEntry(BaseModel):
    name: str
    key: str
    url: Optional[str] = None # resolved from the store at read time when unset
    download_url: Optional[str] = None
    uploaded_at: float

class Room(BaseModel):
    code: str
    files: list[FileEntry] = Field(default_factory=list)
    created_at: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return self.expires_at < now

class CreateRoomResponse(BaseModel):
    code: str

class UploadResponse(BaseModel):
    code: str

class RoomFile(BaseModel):
    name: str
    url: str
    downloadUrl: Optional[str] = None

class ListRoomResponse(BaseModel):
    files: list[RoomFile]

class ErrorResponse(BaseModel):
    error: str
