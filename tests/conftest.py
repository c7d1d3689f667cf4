from __future__ import annotations

from collections.abc import Generator
from pathlib import Path

import fakeredis
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from mystery_party.api.deps import build_store, get_hub, get_store
from mystery_party.broadcast import SnapshotHub
from mystery_party.game_store import GameStore
from mystery_party.main import app
from mystery_party.storage import JsonFileBackend, RedisBackend


@pytest.fixture()
def data_file(tmp_path: Path) -> Path:
    return tmp_path / "data" / "games.json"


@pytest.fixture()
def hub() -> SnapshotHub:
    return SnapshotHub()


@pytest.fixture()
def store(data_file: Path, hub: SnapshotHub) -> GameStore:
    return build_store(backend=JsonFileBackend(data_file), hub=hub)


@pytest.fixture()
def redis_store(hub: SnapshotHub) -> tuple[GameStore, fakeredis.FakeRedis]:
    r = fakeredis.FakeRedis(decode_responses=True)
    return build_store(backend=RedisBackend(r), hub=hub), r


@pytest.fixture()
def api(store: GameStore, hub: SnapshotHub) -> Generator[FastAPI, None, None]:
    """The app with its store and hub swapped for throwaway ones."""

    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_hub] = lambda: hub
    yield app
    app.dependency_overrides.clear()


@pytest.fixture()
def client(api: FastAPI) -> Generator[TestClient, None, None]:
    with TestClient(api) as c:
        yield c
