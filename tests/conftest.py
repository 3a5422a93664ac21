"""Shared fixtures for transcript relay tests."""

import json
from pathlib import Path
from typing import Any

import pytest

from transcript_relay.monitoring.checkpoint_store import CheckpointStore


class FakeClock:
    """Manually advanced replacement for ``time.time``."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def assistant_record(uuid: str, *blocks: dict[str, Any], kind: str = "assistant") -> dict[str, Any]:
    """Build one transcript line as the agent writes it."""
    return {
        "type": kind,
        "uuid": uuid,
        "message": {"role": kind, "content": list(blocks)},
    }


def text_block(text: str) -> dict[str, Any]:
    return {"type": "text", "text": text}


def tool_block(name: str, tool_input: Any = None, tag: str = "tool_use") -> dict[str, Any]:
    return {"type": tag, "name": name, "input": tool_input if tool_input is not None else {}}


def append_lines(path: Path, *lines: Any) -> int:
    """Append records (dicts are JSON-encoded, strings written as-is). Returns the new size."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        for line in lines:
            f.write((json.dumps(line) if isinstance(line, dict) else line) + "\n")
    return path.stat().st_size


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def state_file(tmp_path: Path) -> Path:
    """Checkpoint path inside a directory that does not exist yet."""
    return tmp_path / "state" / "relay-state.json"


@pytest.fixture
def store(state_file: Path, clock: FakeClock) -> CheckpointStore:
    return CheckpointStore(state_file=state_file, clock=clock)


@pytest.fixture
def make_record():
    return assistant_record


@pytest.fixture
def make_text():
    return text_block


@pytest.fixture
def make_tool():
    return tool_block


@pytest.fixture
def append():
    return append_lines
