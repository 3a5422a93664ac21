"""Tests for TmuxTerminalSource with a mocked libtmux server."""

from unittest.mock import MagicMock

import pytest

from transcript_relay.terminal import TerminalSource, TmuxTerminalSource


def mock_server(capture_lines=None, current_path="/home/me/server"):
    pane = MagicMock()

    def cmd(*args):
        result = MagicMock()
        if args[0] == "capture-pane":
            result.stdout = capture_lines if capture_lines is not None else ["line 1", "line 2"]
        else:
            result.stdout = [current_path] if current_path else []
        return result

    pane.cmd.side_effect = cmd
    session = MagicMock()
    session.windows = [MagicMock(panes=[pane])]
    server = MagicMock()
    server.sessions.get.return_value = session
    return server, pane


class TestTmuxTerminalSource:
    @pytest.mark.asyncio
    async def test_capture(self) -> None:
        server, pane = mock_server()
        source = TmuxTerminalSource("agent", server=server)

        assert await source.capture(50) == "line 1\nline 2"
        pane.cmd.assert_called_with("capture-pane", "-p", "-S", "-50")
        server.sessions.get.assert_called_with(session_name="agent", default=None)

    @pytest.mark.asyncio
    async def test_current_path(self) -> None:
        server, _ = mock_server(current_path="/srv/app")
        source = TmuxTerminalSource("agent", server=server)
        assert await source.current_path() == "/srv/app"

    @pytest.mark.asyncio
    async def test_blank_path_is_none(self) -> None:
        server, _ = mock_server(current_path="")
        assert await TmuxTerminalSource("agent", server=server).current_path() is None

    @pytest.mark.asyncio
    async def test_missing_session(self) -> None:
        """Test that a vanished tmux session degrades to empty answers."""
        server = MagicMock()
        server.sessions.get.return_value = None
        source = TmuxTerminalSource("gone", server=server)

        assert await source.capture() == ""
        assert await source.current_path() is None

    def test_satisfies_protocol(self) -> None:
        server, _ = mock_server()
        assert isinstance(TmuxTerminalSource("agent", server=server), TerminalSource)
