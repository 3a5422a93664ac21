"""Tracks which transcript files belong to the current session.

A session owns its primary log ``{project}/{session}.jsonl`` plus any number
of sub-agent logs ``{project}/{session}/subagents/*.jsonl`` that appear while
it runs. The set is recomputed by directory listing every cycle and
reconciled against the files already being watched.
"""

import logging
from pathlib import Path

from .monitoring.checkpoint_store import CheckpointStore
from .monitoring.models import WatchedFile

logger = logging.getLogger(__name__)


class FileSetTracker:
    """Maintains the watched-file set for the current session.

    Attributes:
        project_dir: Log root of the monitored project.
        subagent_dir: Name of the sub-log directory inside a session directory.
        watched: Watched files keyed by path, in the order they were added.
    """

    def __init__(
        self,
        project_dir: str | Path,
        store: CheckpointStore,
        subagent_dir: str = "subagents",
        logger: logging.Logger | None = None,
    ):
        self.project_dir = Path(project_dir)
        self.store = store
        self.subagent_dir = subagent_dir
        self.watched: dict[str, WatchedFile] = {}
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._last_subagent_count = 0

    def primary_log(self, session_id: str) -> Path:
        return self.project_dir / f"{session_id}.jsonl"

    def current_files(self, session_id: str) -> list[str]:
        """List the session's files: primary log first, then sub-logs by name."""
        files: list[str] = []
        primary = self.primary_log(session_id)
        if primary.is_file():
            files.append(str(primary))

        subagents = self.project_dir / session_id / self.subagent_dir
        try:
            sublogs = sorted(p for p in subagents.glob("*.jsonl") if p.is_file())
        except OSError as e:
            self._logger.error(f"Failed to list sub-agent logs in {subagents}: {e}")
            sublogs = []
        files.extend(str(p) for p in sublogs)

        if sublogs and len(sublogs) != self._last_subagent_count:
            self._logger.info(f"Watching {len(sublogs)} sub-agent logs for session {session_id}")
        self._last_subagent_count = len(sublogs)
        return files

    def reconcile(self, session_id: str, files: list[str]) -> tuple[list[str], list[str]]:
        """Bring the watched set in line with ``files``.

        New files resume from their checkpointed offset for this session if
        one exists, otherwise from 0. Files no longer listed stop being
        watched; their checkpoints are left for the session purge.

        Returns:
            (added, removed) paths.
        """
        added = []
        for path in files:
            if path in self.watched:
                continue
            saved = self.store.get_file_position(session_id, path)
            if saved is not None:
                self.watched[path] = WatchedFile(path, saved.position, saved.last_size)
                self._logger.info(f"Resuming {self.display_name(path)} from offset {saved.position}")
            else:
                self.watched[path] = WatchedFile(path)
                self._logger.info(f"Watching new file {self.display_name(path)}")
            added.append(path)

        listed = set(files)
        removed = [path for path in self.watched if path not in listed]
        for path in removed:
            del self.watched[path]
            self._logger.info(f"Stopped watching {self.display_name(path)}")
        return added, removed

    def get(self, path: str) -> WatchedFile | None:
        return self.watched.get(path)

    def clear(self) -> None:
        self.watched.clear()
        self._last_subagent_count = 0

    def display_name(self, path: str) -> str:
        p = Path(path)
        return f"{p.parent.name}/{p.name}"
