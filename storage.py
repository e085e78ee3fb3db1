"""Content stores for uploaded blobs.

A store only knows keys and bytes. Room semantics live in the registry, which in
listing mode derives rooms from ``ContentStore.list``.
"""
import io
import os
import shutil
import threading
import time
from pathlib import Path
from typing import BinaryIO, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from constants import (
    AWS_ACCESS_KEY_ID,
    AWS_SECRET_ACCESS_KEY,
    MAX_FILE_SIZE_BYTES,
    ROOM_TTL_SECONDS,
    S3_BUCKET,
    S3_ENDPOINT_URL,
    S3_REGION,
    STORAGE_BACKEND,
    UPLOAD_DIR,
)
from errors import FileTooLarge, StorageError
from logging_config import get_logger
from object_keys import parse_object_key
from schemas.rooms import StoredObject

logger = get_logger(__name__)

CHUNK_SIZE = 1024 * 1024


def _stream_size(stream: BinaryIO) -> int:
    """Size of a seekable stream from its current position, position restored."""
    start = stream.tell()
    stream.seek(0, os.SEEK_END)
    end = stream.tell()
    stream.seek(start)
    return end - start


def _content_disposition(key: str) -> str:
    _, name = parse_object_key(key)
    return f"attachment; filename*=UTF-8''{quote(name)}"


class ContentStore:
    """Interface shared by every blob backend."""

    max_size: int = MAX_FILE_SIZE_BYTES

    def put(self, key: str, stream: BinaryIO) -> StoredObject:
        raise NotImplementedError

    def list(self, prefix: str) -> List[StoredObject]:
        raise NotImplementedError

    def open(self, key: str) -> Optional[BinaryIO]:
        raise NotImplementedError

    def url(self, key: str, base_url: str, download: bool = False) -> str:
        """URL served by this application's /files route."""
        url = f"{base_url.rstrip('/')}/files/{quote(key)}"
        return f"{url}?download=1" if download else url

    def _check_size(self, key: str, size: int) -> None:
        if size > self.max_size:
            logger.warning(f"Rejecting {key}: {size} bytes exceeds limit of {self.max_size}")
            raise FileTooLarge()


class MemoryContentStore(ContentStore):
    """Process-local store. Fine for tests and single-instance demos."""

    def __init__(self, clock: Callable[[], float] = time.time, max_size: int = MAX_FILE_SIZE_BYTES):
        self._clock = clock
        self.max_size = max_size
        self._objects: Dict[str, Tuple[bytes, float]] = {}
        self._lock = threading.Lock()

    def put(self, key: str, stream: BinaryIO) -> StoredObject:
        self._check_size(key, _stream_size(stream))
        data = stream.read()
        uploaded_at = self._clock()
        with self._lock:
            self._objects[key] = (data, uploaded_at)
        logger.debug(f"Stored {key} in memory ({len(data)} bytes)")
        return StoredObject(key=key, size=len(data), uploaded_at=uploaded_at)

    def list(self, prefix: str) -> List[StoredObject]:
        with self._lock:
            items = [(k, v) for k, v in self._objects.items() if k.startswith(prefix)]
        return [StoredObject(key=k, size=len(data), uploaded_at=ts) for k, (data, ts) in items]

    def open(self, key: str) -> Optional[BinaryIO]:
        with self._lock:
            item = self._objects.get(key)
        if item is None:
            return None
        return io.BytesIO(item[0])


class LocalContentStore(ContentStore):
    """Keys map onto a directory tree under root; file mtime is the upload time."""

    def __init__(self, root: str = UPLOAD_DIR, clock: Callable[[], float] = time.time,
                 max_size: int = MAX_FILE_SIZE_BYTES):
        self._root = Path(root).resolve()
        self._clock = clock
        self.max_size = max_size
        self._root.mkdir(parents=True, exist_ok=True)
        logger.info(f"Local content store rooted at {self._root}")

    def _path_for(self, key: str) -> Optional[Path]:
        path = (self._root / key).resolve()
        if self._root not in path.parents:
            return None
        return path

    def put(self, key: str, stream: BinaryIO) -> StoredObject:
        path = self._path_for(key)
        if path is None:
            raise StorageError(f"Invalid object key: {key}")
        self._check_size(key, _stream_size(stream))
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("wb") as fh:
                shutil.copyfileobj(stream, fh, CHUNK_SIZE)
            uploaded_at = self._clock()
            os.utime(path, (uploaded_at, uploaded_at))
            size = path.stat().st_size
        except OSError as e:
            logger.error(f"Failed to write {path}: {e}", exc_info=True)
            raise StorageError() from e
        logger.debug(f"Saved file: {path} ({size} bytes)")
        return StoredObject(key=key, size=size, uploaded_at=uploaded_at)

    def list(self, prefix: str) -> List[StoredObject]:
        # Prefixes used here always end at a directory boundary
        base = self._path_for(prefix)
        if base is None or not base.is_dir():
            return []
        objects = []
        try:
            for path in base.rglob("*"):
                if not path.is_file():
                    continue
                stat = path.stat()
                key = path.relative_to(self._root).as_posix()
                objects.append(StoredObject(key=key, size=stat.st_size, uploaded_at=stat.st_mtime))
        except OSError as e:
            logger.error(f"Failed to list {base}: {e}", exc_info=True)
            raise StorageError() from e
        return objects

    def open(self, key: str) -> Optional[BinaryIO]:
        path = self._path_for(key)
        if path is None or not path.is_file():
            return None
        return path.open("rb")


class S3ContentStore(ContentStore):
    """S3 (or S3-compatible) bucket. URLs are presigned and live as long as a room."""

    def __init__(
        self,
        bucket: str,
        region: Optional[str] = S3_REGION,
        endpoint_url: Optional[str] = S3_ENDPOINT_URL,
        access_key: Optional[str] = AWS_ACCESS_KEY_ID,
        secret_key: Optional[str] = AWS_SECRET_ACCESS_KEY,
        client=None,
        clock: Callable[[], float] = time.time,
        max_size: int = MAX_FILE_SIZE_BYTES,
        url_expires_in: int = ROOM_TTL_SECONDS,
    ):
        self._bucket = bucket
        self._region = region
        self._endpoint_url = endpoint_url
        self._access_key = access_key
        self._secret_key = secret_key
        self._client = client
        self._clock = clock
        self.max_size = max_size
        self._url_expires_in = url_expires_in

    def _get_client(self):
        if self._client is None:
            kwargs: dict = {"region_name": self._region}
            if self._endpoint_url:
                kwargs["endpoint_url"] = self._endpoint_url
            if self._access_key and self._secret_key:
                kwargs["aws_access_key_id"] = self._access_key
                kwargs["aws_secret_access_key"] = self._secret_key
            self._client = boto3.client("s3", **kwargs)
            logger.info(f"S3 client created for bucket {self._bucket}")
        return self._client

    def put(self, key: str, stream: BinaryIO) -> StoredObject:
        size = _stream_size(stream)
        self._check_size(key, size)
        try:
            self._get_client().upload_fileobj(stream, self._bucket, key)
        except (BotoCoreError, ClientError) as e:
            logger.error(f"S3 upload failed for {key}: {e}", exc_info=True)
            raise StorageError() from e
        return StoredObject(key=key, size=size, uploaded_at=self._clock())

    def list(self, prefix: str) -> List[StoredObject]:
        objects = []
        try:
            paginator = self._get_client().get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self._bucket, Prefix=prefix):
                for obj in page.get("Contents", []):
                    last_modified = obj.get("LastModified")
                    objects.append(StoredObject(
                        key=obj["Key"],
                        size=obj.get("Size", 0),
                        uploaded_at=last_modified.timestamp() if last_modified else None,
                    ))
        except (BotoCoreError, ClientError) as e:
            logger.error(f"S3 list failed for prefix {prefix}: {e}", exc_info=True)
            raise StorageError() from e
        return objects

    def open(self, key: str) -> Optional[BinaryIO]:
        try:
            return self._get_client().get_object(Bucket=self._bucket, Key=key)["Body"]
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                return None
            logger.error(f"S3 get failed for {key}: {e}", exc_info=True)
            raise StorageError() from e

    def url(self, key: str, base_url: str, download: bool = False) -> str:
        params = {"Bucket": self._bucket, "Key": key}
        if download:
            params["ResponseContentDisposition"] = _content_disposition(key)
        try:
            return self._get_client().generate_presigned_url(
                "get_object", Params=params, ExpiresIn=self._url_expires_in
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Presigning failed for {key}: {e}", exc_info=True)
            raise StorageError() from e


def build_content_store(backend: str = STORAGE_BACKEND) -> ContentStore:
    logger.info(f"Initializing {backend} content store")
    if backend == "memory":
        return MemoryContentStore()
    if backend == "local":
        return LocalContentStore(UPLOAD_DIR)
    if backend == "s3":
        if not S3_BUCKET:
            raise ValueError("S3_BUCKET must be set when STORAGE_BACKEND=s3")
        return S3ContentStore(S3_BUCKET)
    raise ValueError(f"Unknown STORAGE_BACKEND: {backend}")
