from typing import Optional


class TransferError(Exception):
    """Base error for room operations. status_code is what the API answers with."""

    status_code = 500
    message = "Request failed"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)
        self.message = message or self.message


class MissingRoomCode(TransferError):
    status_code = 400
    message = "Please enter a room code"


class InvalidRoomCode(TransferError):
    status_code = 400
    message = "Room code format is invalid"


class EmptyUpload(TransferError):
    status_code = 400
    message = "No files to upload"


class RoomNotFound(TransferError):
    status_code = 404
    message = "Room not found or expired"


class FileTooLarge(TransferError):
    status_code = 413
    message = "File exceeds the maximum allowed size"


class StorageError(TransferError):
    status_code = 500
    message = "Storage backend failure"


class UploadFailed(TransferError):
    status_code = 500
    message = "Upload failed"


class FileNotFound(TransferError):
    status_code = 404
    message = "File not found or expired"
