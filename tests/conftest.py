"""Shared fixtures: a controllable clock and an app wired to in-memory backends."""
import pytest
from fastapi.testclient import TestClient

from app import app
from backend import InMemoryRoomRegistry
from coordinator import RetrievalCoordinator, UploadCoordinator
from dependencies import (
    get_content_store,
    get_retrieval_coordinator,
    get_room_registry,
    get_upload_coordinator,
)
from storage import MemoryContentStore

T0 = 1_700_000_000.0


class FakeClock:
    def __init__(self, now: float = T0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return MemoryContentStore(clock=clock)


@pytest.fixture
def registry(clock):
    return InMemoryRoomRegistry(clock=clock)


def wire_app(registry, store, clock):
    app.dependency_overrides[get_content_store] = lambda: store
    app.dependency_overrides[get_room_registry] = lambda: registry
    app.dependency_overrides[get_upload_coordinator] = lambda: UploadCoordinator(registry, store, clock=clock)
    app.dependency_overrides[get_retrieval_coordinator] = lambda: RetrievalCoordinator(registry, store)


@pytest.fixture
def api_client(registry, store, clock):
    """TestClient against the real app with registry and store swapped for in-memory ones."""
    wire_app(registry, store, clock)
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def wire():
    """Wire the app to custom backends; overrides are dropped afterwards."""
    yield wire_app
    app.dependency_overrides.clear()
