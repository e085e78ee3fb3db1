import json
import threading
import time
from typing import Callable, Dict, List, Optional

import redis

from constants import REDIS_HOST, REDIS_PORT, REDIS_PASSWORD, ROOM_BACKEND, ROOM_TTL_SECONDS
from logging_config import get_logger
from object_keys import parse_object_key, room_prefix
from redis_keys import REDIS_ROOM_KEY, RESERVATION_PENDING, RESERVATION_UPLOADING
from schemas.rooms import FileEntry, Room
from storage import ContentStore

logger = get_logger(__name__)


class RoomRegistry:
    """Room code -> Room mapping with a fixed time-to-live.

    A code goes through reserve() -> claim() -> put(), or release() on failure.
    claim() hands the reservation to exactly one uploader; every later claim
    fails until the code is free again. Readers never see a reservation, only
    committed rooms. Absence is reported as None or False, never raised.
    """

    def __init__(self, ttl: int = ROOM_TTL_SECONDS, clock: Callable[[], float] = time.time):
        self.ttl = ttl
        self.clock = clock

    def reserve(self, code: str) -> bool:
        """Atomically take a free code. False if a live room or reservation holds it."""
        raise NotImplementedError

    def claim(self, code: str) -> bool:
        """Atomically move a pending reservation to uploading. True for one caller only."""
        raise NotImplementedError

    def put(self, code: str, files: List[FileEntry]) -> Room:
        raise NotImplementedError

    def release(self, code: str) -> None:
        raise NotImplementedError

    def get(self, code: str) -> Optional[Room]:
        raise NotImplementedError

    def delete(self, code: str) -> None:
        raise NotImplementedError

    def sweep_expired(self) -> int:
        raise NotImplementedError

    def _new_room(self, code: str, files: List[FileEntry]) -> Room:
        now = self.clock()
        return Room(code=code, files=list(files), created_at=now, expires_at=now + self.ttl)


class InMemoryRoomRegistry(RoomRegistry):
    """Process-wide dict guarded by a lock. Only valid for a single instance."""

    def __init__(self, ttl: int = ROOM_TTL_SECONDS, clock: Callable[[], float] = time.time):
        super().__init__(ttl, clock)
        self._rooms: Dict[str, Room] = {}
        self._pending: Dict[str, float] = {}  # code -> reservation expiry
        self._uploading: Dict[str, float] = {}  # claimed code -> reservation expiry
        self._lock = threading.Lock()
        logger.info(f"Initializing in-memory room registry with TTL {ttl} seconds")

    def _held(self, code: str, now: float) -> bool:
        room = self._rooms.get(code)
        if room and not room.is_expired(now):
            return True
        for reservations in (self._pending, self._uploading):
            until = reservations.get(code)
            if until is not None and until >= now:
                return True
        return False

    def reserve(self, code: str) -> bool:
        now = self.clock()
        with self._lock:
            if self._held(code, now):
                return False
            self._rooms.pop(code, None)
            self._uploading.pop(code, None)
            self._pending[code] = now + self.ttl
        logger.debug(f"Reserved room code {code}")
        return True

    def claim(self, code: str) -> bool:
        now = self.clock()
        with self._lock:
            until = self._pending.get(code)
            if until is None or until < now:
                return False
            del self._pending[code]
            self._uploading[code] = until
        logger.debug(f"Claimed room code {code} for upload")
        return True

    def put(self, code: str, files: List[FileEntry]) -> Room:
        room = self._new_room(code, files)
        with self._lock:
            self._pending.pop(code, None)
            self._uploading.pop(code, None)
            self._rooms[code] = room
        logger.info(f"Room {code} created with {len(room.files)} files, expires at {room.expires_at}")
        return room

    def release(self, code: str) -> None:
        with self._lock:
            pending = self._pending.pop(code, None)
            uploading = self._uploading.pop(code, None)
        if pending is not None or uploading is not None:
            logger.debug(f"Released reservation for room code {code}")

    def get(self, code: str) -> Optional[Room]:
        now = self.clock()
        with self._lock:
            room = self._rooms.get(code)
            if room is None:
                logger.debug(f"Room {code} not found in registry")
                return None
            if room.is_expired(now):
                del self._rooms[code]
                logger.info(f"Room {code} is expired, deleted it")
                return None
        return room

    def delete(self, code: str) -> None:
        with self._lock:
            self._rooms.pop(code, None)
        logger.info(f"Deleted room {code}")

    def sweep_expired(self) -> int:
        now = self.clock()
        with self._lock:
            expired_rooms = [code for code, room in self._rooms.items() if room.is_expired(now)]
            for code in expired_rooms:
                del self._rooms[code]
            stale = 0
            for reservations in (self._pending, self._uploading):
                expired = [code for code, until in reservations.items() if until < now]
                for code in expired:
                    del reservations[code]
                stale += len(expired)
        removed = len(expired_rooms) + stale
        if removed:
            logger.info(f"Swept {len(expired_rooms)} expired rooms and {stale} stale reservations")
        return removed

    def __len__(self) -> int:
        with self._lock:
            return len(self._rooms)

    def __contains__(self, code: str) -> bool:
        with self._lock:
            return code in self._rooms


class RedisRoomRegistry(RoomRegistry):
    """Registry shared by several instances. Redis TTL does the eviction."""

    def __init__(self, redis_client=None, ttl: int = ROOM_TTL_SECONDS, clock: Callable[[], float] = time.time):
        super().__init__(ttl, clock)
        self.redis_client = redis_client or redis.Redis(
            host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, decode_responses=True
        )
        logger.info(f"Initializing Redis room registry with TTL {ttl} seconds")

    @staticmethod
    def _key(code: str) -> str:
        return REDIS_ROOM_KEY.format(code=code)

    @staticmethod
    def _decode(code: str, raw: Optional[str]) -> Optional[dict]:
        if not raw:
            return None
        try:
            return json.loads(raw)
        except (json.JSONDecodeError, TypeError):
            logger.warning(f"Discarding unreadable registry entry for room {code}")
            return None

    def _load(self, code: str) -> Optional[dict]:
        return self._decode(code, self.redis_client.get(self._key(code)))

    def reserve(self, code: str) -> bool:
        placeholder = json.dumps({"state": RESERVATION_PENDING, "created_at": self.clock()})
        reserved = bool(self.redis_client.set(self._key(code), placeholder, nx=True, ex=self.ttl))
        if reserved:
            logger.debug(f"Reserved room code {code}")
        return reserved

    def claim(self, code: str) -> bool:
        # WATCH/MULTI: the pending -> uploading swap fails if anyone touched the key meanwhile
        key = self._key(code)
        with self.redis_client.pipeline() as pipe:
            try:
                pipe.watch(key)
                data = self._decode(code, pipe.get(key))
                if not data or data.get("state") != RESERVATION_PENDING:
                    pipe.unwatch()
                    return False
                data["state"] = RESERVATION_UPLOADING
                pipe.multi()
                pipe.set(key, json.dumps(data), keepttl=True)
                pipe.execute()
            except redis.WatchError:
                logger.debug(f"Lost race to claim room code {code}")
                return False
        logger.debug(f"Claimed room code {code} for upload")
        return True

    def put(self, code: str, files: List[FileEntry]) -> Room:
        room = self._new_room(code, files)
        self.redis_client.set(self._key(code), room.model_dump_json(), ex=self.ttl)
        logger.info(f"Room {code} created with {len(room.files)} files, expires at {room.expires_at}")
        return room

    def release(self, code: str) -> None:
        data = self._load(code)
        if data and data.get("state") in (RESERVATION_PENDING, RESERVATION_UPLOADING):
            self.redis_client.delete(self._key(code))
            logger.debug(f"Released reservation for room code {code}")

    def get(self, code: str) -> Optional[Room]:
        data = self._load(code)
        if not data or "state" in data:
            logger.debug(f"Room {code} not found in Redis")
            return None
        room = Room.model_validate(data)
        if room.is_expired(self.clock()):
            logger.info(f"Room {code} is expired, deleting it")
            try:
                self.delete(code)
            except redis.RedisError as e:
                logger.warning(f"Could not delete expired room {code}: {e}")
            return None
        return room

    def delete(self, code: str) -> None:
        deleted = self.redis_client.delete(self._key(code))
        logger.debug(f"Room {code} deleted: key={deleted}")

    def sweep_expired(self) -> int:
        return 0


class ListingRoomRegistry(RoomRegistry):
    """Rooms derived from the content store's key listing; nothing else is stored.

    A room exists while at least one object under its prefix is younger than the
    TTL. It vanishes by itself once every object has aged out.

    Codes handed out by reserve() are remembered in this process only, so an
    upload into a code from create-room must reach the instance that issued it.
    """

    def __init__(self, store: ContentStore, ttl: int = ROOM_TTL_SECONDS, clock: Callable[[], float] = time.time):
        super().__init__(ttl, clock)
        self.store = store
        self._issued: Dict[str, float] = {}  # code -> reservation expiry
        self._lock = threading.Lock()
        logger.info(f"Initializing listing room registry with TTL {ttl} seconds")

    def _live_files(self, code: str) -> List[FileEntry]:
        now = self.clock()
        live = []
        for obj in self.store.list(room_prefix(code)):
            uploaded_at_ms, name = parse_object_key(obj.key)
            uploaded_at = obj.uploaded_at
            if uploaded_at is None and uploaded_at_ms is not None:
                uploaded_at = uploaded_at_ms / 1000
            if uploaded_at is None or now - uploaded_at > self.ttl:
                continue
            live.append((uploaded_at, uploaded_at_ms or 0, FileEntry(name=name, key=obj.key, uploaded_at=uploaded_at)))
        live.sort(key=lambda item: (item[0], item[1]), reverse=True)
        return [entry for _, _, entry in live]

    def reserve(self, code: str) -> bool:
        # Atomic within this process only; across instances a clash needs the
        # same code drawn twice within one TTL
        now = self.clock()
        with self._lock:
            until = self._issued.get(code)
            if until is not None and until >= now:
                return False
            if self._live_files(code):
                return False
            self._issued[code] = now + self.ttl
        logger.debug(f"Reserved room code {code}")
        return True

    def claim(self, code: str) -> bool:
        now = self.clock()
        with self._lock:
            until = self._issued.pop(code, None)
        if until is None or until < now:
            return False
        if self._live_files(code):
            return False
        logger.debug(f"Claimed room code {code} for upload")
        return True

    def put(self, code: str, files: List[FileEntry]) -> Room:
        room = self._new_room(code, files)
        logger.info(f"Room {code} materialized from {len(room.files)} stored objects")
        return room

    def release(self, code: str) -> None:
        with self._lock:
            self._issued.pop(code, None)

    def get(self, code: str) -> Optional[Room]:
        files = self._live_files(code)
        if not files:
            logger.debug(f"No live objects under {room_prefix(code)}")
            return None
        oldest = min(f.uploaded_at for f in files)
        newest = max(f.uploaded_at for f in files)
        return Room(code=code, files=files, created_at=oldest, expires_at=newest + self.ttl)

    def delete(self, code: str) -> None:
        pass

    def sweep_expired(self) -> int:
        now = self.clock()
        with self._lock:
            expired = [code for code, until in self._issued.items() if until < now]
            for code in expired:
                del self._issued[code]
        return len(expired)


def build_room_registry(store: ContentStore, backend: str = ROOM_BACKEND) -> RoomRegistry:
    if backend == "memory":
        return InMemoryRoomRegistry()
    if backend == "redis":
        return RedisRoomRegistry()
    if backend == "listing":
        return ListingRoomRegistry(store)
    raise ValueError(f"Unknown ROOM_BACKEND: {backend}")
