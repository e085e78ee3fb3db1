import mimetypes
from typing import BinaryIO, List, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile
from fastapi.responses import StreamingResponse
from starlette.concurrency import run_in_threadpool

from coordinator import FileBlob, RetrievalCoordinator, UploadCoordinator
from dependencies import get_retrieval_coordinator, get_upload_coordinator
from logging_config import get_logger
from schemas.rooms import CreateRoomResponse, ErrorResponse, ListRoomResponse, UploadResponse

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/api", tags=["rooms"])
files_router = APIRouter(prefix="/files", tags=["files"])

CHUNK_SIZE = 1024 * 1024

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
}


def _client_host(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def _base_url(request: Request) -> str:
    return str(request.base_url).rstrip("/")


@rooms_router.post("/room", response_model=CreateRoomResponse, responses=ERROR_RESPONSES)
async def create_room(request: Request, uploads: UploadCoordinator = Depends(get_upload_coordinator)):
    # Response 200: { "code": "K7P2QX" }
    # The client then uploads with form field code=K7P2QX
    logger.info(f"Room allocation request from {_client_host(request)}")
    code = await run_in_threadpool(uploads.allocate_code)
    return CreateRoomResponse(code=code)


@rooms_router.post("/upload", response_model=UploadResponse, responses={**ERROR_RESPONSES, 413: {"model": ErrorResponse}})
async def upload_files(
    request: Request,
    files: Optional[List[UploadFile]] = File(None),
    code: Optional[str] = Form(None),
    uploads: UploadCoordinator = Depends(get_upload_coordinator),
):
    # multipart/form-data: files=<file>... [code=<allocated code>]
    # Response 200: { "code": "K7P2QX" }
    files = files or []
    logger.info(f"Upload request from {_client_host(request)} with {len(files)} files, code: {code}")
    blobs = [FileBlob(name=f.filename or "unnamed", stream=f.file) for f in files]
    room_code = await uploads.upload(blobs, _base_url(request), code=code)
    logger.info(f"Upload of {len(blobs)} files completed for room {room_code}")
    return UploadResponse(code=room_code)


@rooms_router.get("/download", response_model=ListRoomResponse, responses=ERROR_RESPONSES)
async def list_room(
    request: Request,
    code: Optional[str] = Query(None, description="Room code, case-insensitive"),
    retrieval: RetrievalCoordinator = Depends(get_retrieval_coordinator),
):
    # Response 200: { "files": [ { "name": "a.txt", "url": "...", "downloadUrl": "..." } ] }
    logger.info(f"Room lookup for {code} from {_client_host(request)}")
    files = await run_in_threadpool(retrieval.list_room, code, _base_url(request))
    return ListRoomResponse(files=files)


def _iter_chunks(stream: BinaryIO):
    try:
        while True:
            chunk = stream.read(CHUNK_SIZE)
            if not chunk:
                break
            yield chunk
    finally:
        stream.close()


@files_router.get("/{key:path}")
async def download_file(
    key: str,
    download: bool = False,
    retrieval: RetrievalCoordinator = Depends(get_retrieval_coordinator),
):
    name, stream = await run_in_threadpool(retrieval.open_file, key)
    media_type = mimetypes.guess_type(name)[0] or "application/octet-stream"
    disposition = "attachment" if download else "inline"
    headers = {"Content-Disposition": f"{disposition}; filename*=UTF-8''{quote(name)}"}
    return StreamingResponse(_iter_chunks(stream), media_type=media_type, headers=headers)
