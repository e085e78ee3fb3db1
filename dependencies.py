from functools import lru_cache

from fastapi import Depends

from backend import RoomRegistry, build_room_registry
from coordinator import RetrievalCoordinator, UploadCoordinator
from storage import ContentStore, build_content_store


@lru_cache(maxsize=None)
def get_content_store() -> ContentStore:
    return build_content_store()


@lru_cache(maxsize=None)
def get_room_registry() -> RoomRegistry:
    return build_room_registry(get_content_store())


def get_upload_coordinator(
    registry: RoomRegistry = Depends(get_room_registry),
    store: ContentStore = Depends(get_content_store),
) -> UploadCoordinator:
    return UploadCoordinator(registry, store)


def get_retrieval_coordinator(
    registry: RoomRegistry = Depends(get_room_registry),
    store: ContentStore = Depends(get_content_store),
) -> RetrievalCoordinator:
    return RetrievalCoordinator(registry, store)
