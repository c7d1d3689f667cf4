"""Client-side mirror of the game store.

Kept free of FastAPI concerns so it can run in a browser-side Python runtime,
a CLI, or tests.
"""

from mystery_party.sync.client import SyncClient
from mystery_party.sync.scheduler import SyncScheduler
from mystery_party.sync.transport import GameTransport, HttpTransport, LocalTransport, TransportError

__all__ = [
    "GameTransport",
    "HttpTransport",
    "LocalTransport",
    "SyncClient",
    "SyncScheduler",
    "TransportError",
]
