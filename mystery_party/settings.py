from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

StoreKind = Literal["file", "redis", "memory"]

_DEFAULT_DATA_FILE = Path("data") / "games.json"


@dataclass(frozen=True, slots=True)
class Settings:
    store: StoreKind = "file"
    data_file: Path = _DEFAULT_DATA_FILE
    redis_url: str = "redis://localhost:6379/0"
    log_level: str = "INFO"
    # PUT bodies carry photos as data URIs.
    max_body_bytes: int = 25 * 1024 * 1024
    stream_retry_seconds: float = 3.0
    poll_seconds: float = 5.0
    host_password: str = "CLUEKEEPER"


def settings_from_env() -> Settings:
    store = os.environ.get("MYSTERY_STORE", "file").strip().lower()
    if store not in ("file", "redis", "memory"):
        raise RuntimeError(f"MYSTERY_STORE must be one of file, redis, memory (got {store!r})")

    return Settings(
        store=store,  # type: ignore[arg-type]
        data_file=Path(os.environ.get("MYSTERY_DATA_FILE", str(_DEFAULT_DATA_FILE))),
        redis_url=os.environ.get("REDIS_URL", "redis://localhost:6379/0"),
        log_level=os.environ.get("MYSTERY_LOG_LEVEL", "INFO").upper(),
        max_body_bytes=int(os.environ.get("MYSTERY_MAX_BODY_BYTES", str(25 * 1024 * 1024))),
        stream_retry_seconds=float(os.environ.get("MYSTERY_STREAM_RETRY_SECONDS", "3")),
        poll_seconds=float(os.environ.get("MYSTERY_POLL_SECONDS", "5")),
        host_password=os.environ.get("MYSTERY_HOST_PASSWORD", "CLUEKEEPER"),
    )
