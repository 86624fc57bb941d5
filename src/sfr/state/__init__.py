from .redis_store import RedisStateStore
from .sqlite_store import SqliteStateStore
from .store import StateStore, load_watermark

__all__ = [
    "RedisStateStore",
    "SqliteStateStore",
    "StateStore",
    "load_watermark",
]
