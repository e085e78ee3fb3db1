"""Upload and retrieval flows on top of a RoomRegistry and a ContentStore."""
import asyncio
import time
from typing import BinaryIO, Callable, List, NamedTuple, Optional, Tuple

from backend import RoomRegistry
from constants import ROOM_KEY_PREFIX
from errors import FileNotFound, FileTooLarge, EmptyUpload, RoomNotFound, UploadFailed
from logging_config import get_logger
from object_keys import build_object_key, parse_object_key
from room_codes import ROOM_CODE_PATTERN, generate_room_code, normalize_room_code
from schemas.rooms import FileEntry, RoomFile
from storage import ContentStore

logger = get_logger(__name__)


class FileBlob(NamedTuple):
    name: str
    stream: BinaryIO


class UploadCoordinator:
    def __init__(
        self,
        registry: RoomRegistry,
        store: ContentStore,
        code_factory: Callable[[], str] = generate_room_code,
        clock: Callable[[], float] = time.time,
    ):
        self.registry = registry
        self.store = store
        self.code_factory = code_factory
        self.clock = clock

    def allocate_code(self, claim: bool = False) -> str:
        """Reserve a fresh code. Retries until the registry accepts one.

        With claim set the reservation is also taken for the caller's own
        upload, so nobody holding the code can upload into it first.
        """
        self.registry.sweep_expired()
        attempts = 0
        while True:
            code = self.code_factory()
            if self.registry.reserve(code):
                if not claim or self.registry.claim(code):
                    logger.info(f"Allocated room code {code}")
                    return code
            attempts += 1
            logger.warning(f"Room code collision detected for {code}, regenerating (attempt {attempts})")

    def _claim_code(self, code: Optional[str]) -> str:
        if code is None:
            return self.allocate_code(claim=True)
        code = normalize_room_code(code)
        if not self.registry.claim(code):
            logger.warning(f"Upload rejected: room code {code} was not allocated or already used")
            raise RoomNotFound("Room code was not allocated or has expired")
        return code

    def _entries(self, keys: List[str], base_ms: int, base_url: str) -> List[FileEntry]:
        entries = []
        for i, key in enumerate(keys):
            _, name = parse_object_key(key)
            entries.append(FileEntry(
                name=name,
                key=key,
                url=self.store.url(key, base_url),
                download_url=self.store.url(key, base_url, download=True),
                uploaded_at=(base_ms + i) / 1000,
            ))
        return entries

    async def upload(self, files: List[FileBlob], base_url: str, code: Optional[str] = None) -> str:
        """Store a batch of files under one room and commit the room.

        With code set, the files go into a code previously handed out by
        allocate_code(). Only the first upload to claim that code proceeds.
        Any failed write fails the whole batch and the room is never
        committed; objects already written are left behind unreachable.
        """
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self.registry.sweep_expired)
        if not files:
            logger.warning("Upload rejected: empty file batch")
            raise EmptyUpload()

        code = await loop.run_in_executor(None, self._claim_code, code)

        base_ms = int(self.clock() * 1000)
        keys = [build_object_key(code, blob.name or "unnamed", base_ms + i) for i, blob in enumerate(files)]

        try:
            await asyncio.gather(*(
                loop.run_in_executor(None, self.store.put, key, blob.stream)
                for key, blob in zip(keys, files)
            ))
        except FileTooLarge:
            await loop.run_in_executor(None, self.registry.release, code)
            raise
        except Exception as e:
            logger.error(f"Upload of {len(files)} files to room {code} failed: {e}", exc_info=True)
            await loop.run_in_executor(None, self.registry.release, code)
            raise UploadFailed() from e

        try:
            entries = await loop.run_in_executor(None, self._entries, keys, base_ms, base_url)
            await loop.run_in_executor(None, self.registry.put, code, entries)
        except Exception as e:
            logger.error(f"Failed to register room {code}: {e}", exc_info=True)
            await loop.run_in_executor(None, self.registry.release, code)
            raise UploadFailed() from e
        return code


class RetrievalCoordinator:
    def __init__(self, registry: RoomRegistry, store: ContentStore):
        self.registry = registry
        self.store = store

    def _sweep(self) -> None:
        try:
            self.registry.sweep_expired()
        except Exception as e:
            logger.warning(f"Expired room sweep failed: {e}")

    def list_room(self, raw_code: Optional[str], base_url: str) -> List[RoomFile]:
        """Files of a live room, newest upload first."""
        code = normalize_room_code(raw_code)
        self._sweep()

        room = self.registry.get(code)
        if room is None:
            raise RoomNotFound()

        files = sorted(room.files, key=lambda f: (f.uploaded_at, f.key), reverse=True)
        logger.debug(f"Room {code} lookup returned {len(files)} files")
        return [
            RoomFile(
                name=f.name,
                url=f.url or self.store.url(f.key, base_url),
                downloadUrl=f.download_url or self.store.url(f.key, base_url, download=True),
            )
            for f in files
        ]

    def open_file(self, key: str) -> Tuple[str, BinaryIO]:
        """(display name, stream) for an object that belongs to a live room."""
        if not key.startswith(ROOM_KEY_PREFIX):
            raise FileNotFound()
        code = key[len(ROOM_KEY_PREFIX):].split("/", 1)[0]
        if not ROOM_CODE_PATTERN.match(code):
            raise FileNotFound()

        room = self.registry.get(code)
        if room is None or all(f.key != key for f in room.files):
            raise FileNotFound()

        stream = self.store.open(key)
        if stream is None:
            raise FileNotFound()
        _, name = parse_object_key(key)
        return name, stream
