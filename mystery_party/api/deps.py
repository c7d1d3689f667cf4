from __future__ import annotations

from functools import lru_cache

from mystery_party.broadcast import SnapshotHub
from mystery_party.game_store import GameStore
from mystery_party.infra.redis_client import create_redis
from mystery_party.settings import Settings, settings_from_env
from mystery_party.storage import GameBackend, JsonFileBackend, MemoryBackend, RedisBackend


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return settings_from_env()


def build_backend(settings: Settings) -> GameBackend:
    if settings.store == "redis":
        return RedisBackend(create_redis(settings.redis_url))
    if settings.store == "memory":
        return MemoryBackend()
    return JsonFileBackend(settings.data_file)


def build_store(*, backend: GameBackend, hub: SnapshotHub) -> GameStore:
    store = GameStore(backend)
    store.subscribe(hub.publish)
    return store


@lru_cache(maxsize=1)
def get_hub() -> SnapshotHub:
    return SnapshotHub()


@lru_cache(maxsize=1)
def get_store() -> GameStore:
    return build_store(backend=build_backend(get_settings()), hub=get_hub())
