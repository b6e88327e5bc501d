"""Session and record persistence."""

from tinkerchat.storage.base import RecordRepository, Session, build_record, next_timestamp
from tinkerchat.storage.memory import InMemoryRecordRepository, cosine_similarity

__all__ = [
    "InMemoryRecordRepository",
    "RecordRepository",
    "Session",
    "build_record",
    "cosine_similarity",
    "next_timestamp",
]
