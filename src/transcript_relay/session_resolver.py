"""Session discovery and switchover.

The monitored agent writes one transcript per session under a per-project log
root. The current session is the candidate with the newest modification time,
where candidates are session directories and ``{session-id}.jsonl`` files.
When the current session changes, the watched-file set is cleared and the
outgoing session's checkpointed offsets are purged.
"""

import logging
import os
import re
from pathlib import Path

from .file_tracker import FileSetTracker
from .models import Session, SessionOrigin
from .monitoring.checkpoint_store import CheckpointStore

logger = logging.getLogger(__name__)

SESSION_FILE_PATTERN = r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\.jsonl"


def project_dir_for(project_path: str | Path, projects_root: str | Path) -> Path:
    """Map a project path to its log root.

    ``/home/me/server`` becomes ``{projects_root}/-home-me-server``.
    """
    name = os.path.abspath(os.path.expanduser(str(project_path))).replace("/", "-")
    if not name.startswith("-"):
        name = "-" + name
    return Path(projects_root).expanduser() / name


class SessionResolver:
    """Finds the current session and tracks switches between sessions.

    Attributes:
        current_session_id: Cached id of the current session.
        waiting_for_new_session: Set by ``reset``; while set, the outgoing
            session is ignored until a different one appears.
        last_processed_session_id: The outgoing id recorded by ``reset``.
    """

    def __init__(
        self,
        file_tracker: FileSetTracker,
        store: CheckpointStore,
        session_file_pattern: str = SESSION_FILE_PATTERN,
        logger: logging.Logger | None = None,
    ):
        self.file_tracker = file_tracker
        self.store = store
        self._file_re = re.compile(session_file_pattern, re.IGNORECASE)
        self._logger = logger if logger is not None else logging.getLogger(__name__)

        self.current_session_id: str | None = None
        self.last_processed_session_id: str | None = None
        self.waiting_for_new_session = False

    @property
    def project_dir(self) -> Path:
        return self.file_tracker.project_dir

    def set_project_dir(self, project_dir: str | Path) -> None:
        """Point at another project's log root and forget the cached session."""
        self.file_tracker.project_dir = Path(project_dir)
        self.file_tracker.clear()
        self.current_session_id = None

    def discover(self) -> list[Session]:
        """Scan the log root for session candidates, newest first.

        A session seen both as a directory and as a file takes the newer of
        the two modification times. Equal times keep discovery order:
        directories first, then files, each by name.

        Raises:
            OSError: If the log root cannot be listed.
        """
        candidates: dict[str, Session] = {}
        with os.scandir(self.project_dir) as it:
            entries = sorted(it, key=lambda e: e.name)

        for entry in entries:
            if entry.is_dir():
                candidates[entry.name] = Session(
                    entry.name, SessionOrigin.DIRECTORY, entry.stat().st_mtime
                )

        for entry in entries:
            if not entry.is_file() or not self._file_re.fullmatch(entry.name):
                continue
            session_id = entry.name[: -len(".jsonl")]
            mtime = entry.stat().st_mtime
            existing = candidates.get(session_id)
            if existing is not None:
                existing.mtime = max(existing.mtime, mtime)
            else:
                candidates[session_id] = Session(session_id, SessionOrigin.FILE, mtime)

        return sorted(candidates.values(), key=lambda s: s.mtime, reverse=True)

    def resolve(self, force_refresh: bool = False) -> str | None:
        """Return the current session id, rescanning if needed.

        Args:
            force_refresh: Rescan even when a session id is cached.

        Returns:
            The current session id, or None if there is none yet.
        """
        if self.current_session_id and not force_refresh:
            return self.current_session_id

        if not self.project_dir.is_dir():
            self._logger.debug(f"Project log directory does not exist: {self.project_dir}")
            return None

        try:
            candidates = self.discover()
        except OSError as e:
            self._logger.error(f"Failed to scan sessions in {self.project_dir}: {e}")
            return self.current_session_id

        if not candidates:
            self._logger.debug(f"No sessions found in {self.project_dir}")
            return None

        new_session_id = candidates[0].session_id
        if new_session_id != self.current_session_id:
            self._switch_to(new_session_id)
        return self.current_session_id

    def _switch_to(self, new_session_id: str) -> None:
        old_session_id = self.current_session_id
        if old_session_id:
            self._logger.info(f"Session changed: {old_session_id} -> {new_session_id}")
        else:
            self._logger.info(f"Current session: {new_session_id}")

        self.file_tracker.clear()
        if old_session_id:
            self.store.clear_session_files(old_session_id)
        self.current_session_id = new_session_id

    def reset(self) -> None:
        """Forget the current session and wait for a new one to start.

        The outgoing session's offsets are purged. Until a session id other
        than the outgoing one is resolved, ``should_skip`` reports True.
        """
        outgoing = self.current_session_id
        self._logger.info(f"Resetting session tracking, waiting for a session other than {outgoing or 'none'}")
        self.last_processed_session_id = outgoing
        self.current_session_id = None
        self.file_tracker.clear()
        if outgoing:
            self.store.clear_session_files(outgoing)
        self.waiting_for_new_session = True

    def should_skip(self, session_id: str | None) -> bool:
        """Whether processing must be skipped for a resolved session id.

        Ends the waiting mode as soon as a genuinely different id shows up.
        """
        if not self.waiting_for_new_session:
            return False
        if session_id == self.last_processed_session_id:
            self._logger.debug(f"Waiting for a new session, skipping {session_id}")
            return True
        if session_id:
            self._logger.info(f"New session {session_id} detected, no longer waiting")
            self.waiting_for_new_session = False
            self.last_processed_session_id = None
        return False
