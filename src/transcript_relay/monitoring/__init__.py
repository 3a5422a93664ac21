"""Transcript monitoring primitives.

This package provides the persistence and reading layer the monitor is built
on: a durable checkpoint of delivered record ids and per-file offsets, an
incremental reader for append-only JSONL transcripts, and the typed shape of
a decoded transcript record.

Key Components:
    - models: File positions, watched files, transcript records and blocks
    - checkpoint_store: Atomic JSON persistence of ids and offsets
    - log_reader: Fixed-buffer incremental JSONL reading

Example:
    >>> from transcript_relay.monitoring import CheckpointStore, IncrementalLogReader
    >>> store = CheckpointStore("/tmp/transcript-relay-state.json")
    >>> reader = IncrementalLogReader()
    >>> result = reader.read_new("/path/to/session.jsonl", from_offset=0)
"""

from __future__ import annotations

from .checkpoint_store import CheckpointStore
from .log_reader import IncrementalLogReader, ReadResult
from .models import (
    FilePosition,
    InternalBlock,
    LogRecord,
    TextBlock,
    ToolUseBlock,
    WatchedFile,
    parse_record,
)

__all__ = [
    "CheckpointStore",
    "IncrementalLogReader",
    "ReadResult",
    "FilePosition",
    "WatchedFile",
    "LogRecord",
    "TextBlock",
    "ToolUseBlock",
    "InternalBlock",
    "parse_record",
]
