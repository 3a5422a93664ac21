"""Read-only access to the terminal the monitored agent runs in.

The monitor asks two things of the terminal: recent pane text (for prompts
that never reach the transcript) and the pane's working directory (to follow
the agent into another project). Driving the terminal is someone else's job.
"""

import asyncio
import logging
from typing import Protocol, runtime_checkable

import libtmux

logger = logging.getLogger(__name__)


@runtime_checkable
class TerminalSource(Protocol):
    async def capture(self, lines: int = 100) -> str: ...

    async def current_path(self) -> str | None: ...


class TmuxTerminalSource:
    """TerminalSource backed by the first pane of a tmux session."""

    def __init__(
        self,
        session_name: str,
        server: libtmux.Server | None = None,
        logger: logging.Logger | None = None,
    ):
        self.session_name = session_name
        self.server = server if server is not None else libtmux.Server()
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    def _pane(self):
        session = self.server.sessions.get(session_name=self.session_name, default=None)
        if session is None:
            raise RuntimeError(f"No tmux session named {self.session_name}")
        window = session.windows[0]
        return window.panes[0]

    def _capture(self, lines: int) -> str:
        pane = self._pane()
        return "\n".join(pane.cmd("capture-pane", "-p", "-S", f"-{lines}").stdout)

    def _current_path(self) -> str | None:
        pane = self._pane()
        output = pane.cmd("display-message", "-p", "#{pane_current_path}").stdout
        path = output[0].strip() if output else ""
        return path or None

    async def capture(self, lines: int = 100) -> str:
        """Return the last ``lines`` lines of the pane, or "" on failure."""
        try:
            return await asyncio.to_thread(self._capture, lines)
        except Exception as e:
            self._logger.error(f"Failed to capture tmux pane for {self.session_name}: {e}")
            return ""

    async def current_path(self) -> str | None:
        """Return the pane's working directory, or None if unavailable."""
        try:
            return await asyncio.to_thread(self._current_path)
        except Exception as e:
            self._logger.debug(f"Failed to get working directory of {self.session_name}: {e}")
            return None
