"""Data models for transcript monitoring.

This module defines the structures shared by the checkpoint store, the
incremental reader and the record classifier: persisted file positions, the
in-memory watched-file state, and the decoded shape of one transcript record.

Content blocks are a tagged union validated with pydantic. Anything that does
not match one of the known tags is logged and dropped rather than guessed at.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

logger = logging.getLogger(__name__)

# Text blocks starting with one of these are agent-internal and never shown.
INTERNAL_PREFIXES: tuple[str, ...] = (
    "<thinking>",
    "[SUGGESTION MODE:",
    "[SKILL MODE:",
    "[MODE:",
    "[INTERNAL]",
)


@dataclass
class FilePosition:
    """Checkpointed read state for one (session, file) pair.

    Attributes:
        session_id: Session the file belongs to, or None for legacy entries.
        file_path: Absolute path of the transcript file.
        position: Byte offset up to which records have been consumed.
        last_size: File size observed when the position was recorded.
        mtime: File modification time in epoch milliseconds.
    """

    session_id: str | None
    file_path: str
    position: int
    last_size: int
    mtime: float

    @property
    def key(self) -> tuple[str | None, str]:
        return (self.session_id, self.file_path)


@dataclass
class WatchedFile:
    """A file that is part of the current session's file set."""

    path: str
    position: int = 0
    last_size: int = 0


class _Block(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)


class TextBlock(_Block):
    """Plain assistant text."""

    type: Literal["text"] = "text"
    text: str = ""


class ToolUseBlock(_Block):
    """A tool invocation. ``input`` is kept loose; the classifier checks it."""

    type: Literal["tool_use", "tool-invocation"] = "tool_use"
    name: str = ""
    input: Any = None


class ThinkingBlock(_Block):
    type: Literal["thinking", "redacted_thinking"] = "thinking"
    thinking: str = ""


class InternalBlock(_Block):
    """Agent-internal text: native thinking or a reserved-prefix text block.

    ``marked`` is True when the block was plain text carrying one of
    ``INTERNAL_PREFIXES``; such a block hides the whole record.
    """

    type: Literal["internal"] = "internal"
    text: str = ""
    marked: bool = False


ContentBlock = Annotated[
    Union[TextBlock, ToolUseBlock, InternalBlock],
    Field(discriminator="type"),
]

_WireBlock = Annotated[
    Union[TextBlock, ToolUseBlock, ThinkingBlock],
    Field(discriminator="type"),
]
_BLOCK_ADAPTER: TypeAdapter = TypeAdapter(_WireBlock)


def is_internal_text(text: str) -> bool:
    stripped = text.lstrip()
    return any(stripped.startswith(prefix) for prefix in INTERNAL_PREFIXES)


def parse_block(raw: Any) -> TextBlock | ToolUseBlock | InternalBlock | None:
    """Validate one wire content block into the tagged union.

    Args:
        raw: One element of ``message.content``.

    Returns:
        The typed block, or None if the element matches no known tag.
    """
    try:
        block = _BLOCK_ADAPTER.validate_python(raw)
    except ValidationError as e:
        tag = raw.get("type") if isinstance(raw, dict) else type(raw).__name__
        logger.debug(f"Dropping unrecognised content block (type={tag!r}): {e.error_count()} errors")
        return None

    if isinstance(block, ThinkingBlock):
        return InternalBlock(text=block.thinking)
    if isinstance(block, TextBlock) and is_internal_text(block.text):
        return InternalBlock(text=block.text, marked=True)
    return block


class LogRecord(BaseModel):
    """One decoded transcript line.

    Attributes:
        kind: Record type tag (``assistant``, ``user``, ``summary``...).
        uuid: Record identifier, if the record carries one.
        role: ``message.role``.
        content: Typed content blocks in wire order.
    """

    model_config = ConfigDict(frozen=True)

    kind: str
    uuid: str | None = None
    role: str | None = None
    content: tuple[ContentBlock, ...] = ()

    @property
    def is_assistant_message(self) -> bool:
        return self.kind == "assistant" and self.role == "assistant" and bool(self.uuid)


def parse_record(data: Any) -> LogRecord | None:
    """Build a LogRecord from a decoded JSON line.

    Records without a ``message`` object or whose ``message.content`` is not a
    list do not match the transcript shape; they yield None, not an error.
    """
    if not isinstance(data, dict):
        return None
    message = data.get("message")
    if not isinstance(message, dict):
        return None
    content = message.get("content")
    if not isinstance(content, list):
        return None

    blocks = tuple(b for b in (parse_block(raw) for raw in content) if b is not None)
    uuid = data.get("uuid")
    return LogRecord(
        kind=str(data.get("type") or ""),
        uuid=uuid if isinstance(uuid, str) and uuid else None,
        role=message.get("role") if isinstance(message.get("role"), str) else None,
        content=blocks,
    )
