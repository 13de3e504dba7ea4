from .record_store import (
    RecordStore,
    InMemoryRecordStore,
    RedisRecordStore,
    create_record_store,
)

__all__ = [
    "RecordStore",
    "InMemoryRecordStore",
    "RedisRecordStore",
    "create_record_store",
]
