"""Durable checkpoint of processed record ids and per-file read offsets.

The store keeps two tables in memory and persists them together as one JSON
document:

    {
        "uuids": {"<id>": <epoch-ms>},
        "files": {"<sessionId>:<path>": {"position", "lastSize", "mtime", "sessionId"}},
        "version": 1
    }

Writes go to a temporary file that is renamed over the state file, with
owner-only permissions and an exclusive flock held while writing. Mutations
only mark the store dirty; the monitor flushes on a timer and on shutdown.
"""

from __future__ import annotations

import fcntl
import json
import logging
import math
import os
import time
from collections import OrderedDict
from collections.abc import Callable
from pathlib import Path
from typing import Any

from .models import FilePosition

logger = logging.getLogger(__name__)

STATE_VERSION = 1
_UNKNOWN_SESSION = "unknown"


class CheckpointStore:
    """Persistent identifier set and session-scoped file positions.

    Attributes:
        state_file: Path of the JSON state document.
        uuid_ttl_seconds: Age after which an identifier counts as unseen.
        max_uuids: Cap on the identifier table; oldest entries go first.
        flush_interval_seconds: Minimum spacing between timed flushes.
        dirty: True when memory holds changes not yet on disk.
    """

    def __init__(
        self,
        state_file: str | Path = "/tmp/transcript-relay-state.json",
        uuid_ttl_seconds: float = 3600,
        max_uuids: int = 10000,
        flush_interval_seconds: float = 60,
        clock: Callable[[], float] = time.time,
        logger: logging.Logger | None = None,
    ):
        """Initialize the store and load any existing state.

        Args:
            state_file: Path of the JSON state document.
            uuid_ttl_seconds: Identifier time-to-live.
            max_uuids: Maximum number of identifiers kept.
            flush_interval_seconds: Spacing used by ``flush_if_due``.
            clock: Returns the current time in epoch seconds.
            logger: Logger to use instead of the module logger.
        """
        self.state_file = Path(state_file)
        self.uuid_ttl_seconds = uuid_ttl_seconds
        self.max_uuids = max_uuids
        self.flush_interval_seconds = flush_interval_seconds
        self._clock = clock
        self._logger = logger if logger is not None else logging.getLogger(__name__)

        self._uuids: OrderedDict[str, int] = OrderedDict()
        self._files: dict[tuple[str | None, str], FilePosition] = {}
        self.dirty = False
        self._last_flush = self._clock()

        self._load()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def _load(self) -> None:
        """Load state from disk under a shared lock.

        Expired identifiers are skipped. A file position is restored only
        while its file still exists and is at least as long as the stored
        offset; anything else is dropped so the file is re-read from the
        start under the identifier dedup.
        """
        if not self.state_file.exists():
            self._logger.info("Checkpoint file does not exist, starting fresh")
            return

        try:
            with self.state_file.open("r", encoding="utf-8") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_SH)
                try:
                    data = json.load(f)
                finally:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        except json.JSONDecodeError as e:
            self._logger.error(f"Failed to parse checkpoint file: {e}, starting fresh")
            return
        except OSError as e:
            self._logger.error(f"Error loading checkpoint file: {e}, starting fresh")
            return

        if not isinstance(data, dict):
            self._logger.error("Checkpoint file is not a JSON object, starting fresh")
            return

        now_ms = self._now_ms()
        ttl_ms = self.uuid_ttl_seconds * 1000
        uuids = data.get("uuids")
        stamped = [
            (uuid, ts)
            for uuid, ts in (uuids.items() if isinstance(uuids, dict) else ())
            if isinstance(ts, (int, float)) and not isinstance(ts, bool) and math.isfinite(ts)
        ]
        # Oldest first so the eviction order survives a restart.
        for uuid, ts in sorted(stamped, key=lambda item: item[1]):
            if now_ms - ts <= ttl_ms:
                self._uuids[uuid] = int(ts)
        if isinstance(uuids, dict) and len(stamped) < len(uuids):
            self._logger.warning(
                f"Skipped {len(uuids) - len(stamped)} checkpoint ids with invalid timestamps"
            )

        files = data.get("files")
        for key, state in (files.items() if isinstance(files, dict) else ()):
            if not isinstance(state, dict):
                self._logger.warning(f"Skipping malformed checkpoint entry {key!r}")
                continue
            try:
                position = self._restore_position(key, state)
            except (TypeError, ValueError, OverflowError) as e:
                self._logger.warning(f"Skipping malformed checkpoint entry {key!r}: {e}")
                continue
            if position is not None:
                self._files[(position.session_id, position.file_path)] = position

        self._logger.info(
            f"Loaded checkpoint: {len(self._uuids)} ids, {len(self._files)} file positions"
        )

    def _restore_position(self, key: str, state: dict[str, Any]) -> FilePosition | None:
        """Rebuild one persisted file position, or None if its file is gone or shorter.

        Raises:
            TypeError, ValueError, OverflowError: If a field holds a non-numeric value.
        """
        session_id, file_path = self._parse_file_key(key, state.get("sessionId"))
        position = int(state.get("position") or 0)
        last_size = int(state.get("lastSize") or 0)
        mtime = float(state.get("mtime") or 0)
        if position < 0:
            raise ValueError(f"negative position {position}")
        try:
            stat = os.stat(file_path)
        except OSError:
            return None
        if stat.st_size < position:
            self._logger.warning(
                f"Dropping checkpoint for {file_path}: file shrank "
                f"(offset {position} > size {stat.st_size})"
            )
            return None
        return FilePosition(
            session_id=session_id,
            file_path=file_path,
            position=position,
            last_size=last_size,
            mtime=mtime,
        )

    @staticmethod
    def _make_file_key(session_id: str | None, file_path: str) -> str:
        return f"{session_id or _UNKNOWN_SESSION}:{file_path}"

    @staticmethod
    def _parse_file_key(key: str, stored_session: Any) -> tuple[str | None, str]:
        """Split a persisted file key back into (session_id, path).

        The entry's own ``sessionId`` field is trusted first, so paths that
        contain ``:`` are never split in the wrong place.
        """
        if isinstance(stored_session, str) and stored_session:
            prefix = f"{stored_session}:"
            if key.startswith(prefix):
                return stored_session, key[len(prefix):]
        if key.startswith(f"{_UNKNOWN_SESSION}:"):
            return None, key[len(_UNKNOWN_SESSION) + 1:]
        if key.startswith("/") or ":" not in key:
            # Legacy key without a session prefix.
            return None, key
        session_id, file_path = key.split(":", 1)
        return session_id, file_path

    def to_dict(self) -> dict[str, Any]:
        files: dict[str, Any] = {}
        for position in self._files.values():
            files[self._make_file_key(position.session_id, position.file_path)] = {
                "position": position.position,
                "lastSize": position.last_size,
                "mtime": position.mtime,
                "sessionId": position.session_id,
            }
        return {"uuids": dict(self._uuids), "files": files, "version": STATE_VERSION}

    def flush(self) -> bool:
        """Write state to disk if dirty.

        Returns:
            True if the state on disk is current, False if the write failed.
            A failed write leaves the store dirty so the next flush retries.
        """
        if not self.dirty:
            return True

        temp_file = self.state_file.with_name(self.state_file.name + ".tmp")
        try:
            self.state_file.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(temp_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_EX)
                try:
                    json.dump(self.to_dict(), f)
                    f.flush()
                    os.fsync(f.fileno())
                finally:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
            # O_CREAT's mode is ignored when the temp file already existed.
            os.chmod(temp_file, 0o600)
            temp_file.replace(self.state_file)
        except OSError as e:
            self._logger.error(f"Failed to save checkpoint: {e}")
            return False

        self.dirty = False
        self._last_flush = self._clock()
        self._logger.debug(
            f"Saved checkpoint: {len(self._uuids)} ids, {len(self._files)} file positions"
        )
        return True

    def flush_if_due(self) -> bool:
        """Flush when the flush interval has elapsed since the last write."""
        if self._clock() - self._last_flush < self.flush_interval_seconds:
            return not self.dirty
        self._last_flush = self._clock()
        return self.flush()

    def close(self) -> None:
        """Final flush on shutdown."""
        self.flush()

    # ------------------------------------------------------------------
    # Identifier table
    # ------------------------------------------------------------------

    def has_uuid(self, uuid: str) -> bool:
        """Check whether an identifier was processed within the TTL.

        Expired entries are removed on lookup.
        """
        ts = self._uuids.get(uuid)
        if ts is None:
            return False
        if self._now_ms() - ts > self.uuid_ttl_seconds * 1000:
            del self._uuids[uuid]
            self.dirty = True
            return False
        return True

    def add_uuid(self, uuid: str) -> None:
        """Record an identifier as processed now, evicting the oldest on overflow."""
        self._uuids.pop(uuid, None)
        self._uuids[uuid] = self._now_ms()
        self.dirty = True
        while len(self._uuids) > self.max_uuids:
            self._uuids.popitem(last=False)

    def remove_expired_uuids(self) -> int:
        """Drop every expired identifier.

        Returns:
            Number of identifiers removed.
        """
        cutoff = self._now_ms() - self.uuid_ttl_seconds * 1000
        expired = [uuid for uuid, ts in self._uuids.items() if ts < cutoff]
        for uuid in expired:
            del self._uuids[uuid]
        if expired:
            self.dirty = True
        return len(expired)

    @property
    def uuid_count(self) -> int:
        return len(self._uuids)

    # ------------------------------------------------------------------
    # File positions
    # ------------------------------------------------------------------

    def get_file_position(self, session_id: str | None, file_path: str) -> FilePosition | None:
        return self._files.get((session_id, file_path))

    def set_file_position(
        self,
        session_id: str | None,
        file_path: str,
        position: int,
        last_size: int,
        mtime: float,
    ) -> FilePosition:
        """Record how far a file has been consumed for a session.

        Offsets never move backwards while an entry exists; a smaller
        offset is logged and ignored. Use ``remove_file_position`` or
        ``clear_session_files`` to restart a file.

        Returns:
            The stored position.
        """
        key = (session_id, file_path)
        existing = self._files.get(key)
        if existing is not None and position < existing.position:
            self._logger.warning(
                f"Ignoring backwards offset for {file_path}: "
                f"{existing.position} -> {position}"
            )
            position = existing.position

        stored = FilePosition(
            session_id=session_id,
            file_path=file_path,
            position=position,
            last_size=last_size,
            mtime=mtime,
        )
        if stored != existing:
            self._files[key] = stored
            self.dirty = True
        return stored

    def remove_file_position(self, session_id: str | None, file_path: str) -> None:
        if self._files.pop((session_id, file_path), None) is not None:
            self.dirty = True

    def clear_session_files(self, session_id: str | None) -> int:
        """Delete every file position recorded for a session.

        Returns:
            Number of entries removed.
        """
        if not session_id:
            return 0
        keys = [key for key in self._files if key[0] == session_id]
        for key in keys:
            del self._files[key]
        if keys:
            self.dirty = True
            self._logger.debug(f"Cleared {len(keys)} file positions for session {session_id}")
        return len(keys)

    def file_positions(self, session_id: str | None = None) -> list[FilePosition]:
        """List stored positions, optionally restricted to one session."""
        return [
            pos for pos in self._files.values() if session_id is None or pos.session_id == session_id
        ]

    def clear(self) -> None:
        """Forget everything. Use with caution."""
        self._uuids.clear()
        self._files.clear()
        self.dirty = True
        self._logger.warning("Cleared all checkpoint data")
