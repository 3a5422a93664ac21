"""Outbound delivery: render, split into bounded chunks, send in order.

Delivery is at-most-once. A failed send is logged and reported in the
outcome; nothing is retried and the caller still marks the record seen.
"""

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable

from .messenger import Messenger
from .models import DeliveryChunk, DeliveryOutcome, Interaction, InteractionKind, SendResult

logger = logging.getLogger(__name__)

# Room kept in every chunk for the "[i/total]" marker.
PREFIX_RESERVE = 16

_PARAGRAPH_BREAK = re.compile(r"(\n\n+)")
_LINE_BREAK = re.compile(r"(?<=\n)")


def _paragraphs(text: str) -> list[str]:
    """Split into paragraphs, each keeping its trailing blank-line run."""
    parts = _PARAGRAPH_BREAK.split(text)
    units = []
    for i in range(0, len(parts), 2):
        unit = parts[i] + (parts[i + 1] if i + 1 < len(parts) else "")
        if unit:
            units.append(unit)
    return units


def split_message(text: str, max_length: int) -> list[str]:
    """Split text into pieces no longer than ``max_length``.

    Paragraphs are packed greedily; a paragraph that is too long on its own
    is packed line by line, and a line that is still too long is cut by
    character count. Separators stay attached to the text before them, so
    joining the pieces gives back the input exactly.
    """
    if max_length <= 0:
        raise ValueError("max_length must be positive")
    if len(text) <= max_length:
        return [text]

    chunks: list[str] = []
    current = ""
    for paragraph in _paragraphs(text):
        if len(current) + len(paragraph) <= max_length:
            current += paragraph
            continue
        if current:
            chunks.append(current)
            current = ""
        if len(paragraph) <= max_length:
            current = paragraph
            continue

        for line in filter(None, _LINE_BREAK.split(paragraph)):
            if len(current) + len(line) <= max_length:
                current += line
                continue
            if current:
                chunks.append(current)
                current = ""
            if len(line) <= max_length:
                current = line
            else:
                chunks.extend(line[i : i + max_length] for i in range(0, len(line), max_length))

    if current:
        chunks.append(current)
    return chunks


def render_interaction(interaction: Interaction) -> str:
    """Plain-text rendering for channels without native prompt support."""
    if interaction.kind == InteractionKind.PLAN_CONFIRMATION:
        parts = [f"**{interaction.header}**"]
        if interaction.plan_content:
            parts.append(f"**Plan** (`{interaction.plan_path}`):\n\n{interaction.plan_content}")
        elif interaction.plan_path:
            parts.append(f"Plan file: `{interaction.plan_path}`")
        lines = ["**Choose the next step:**", ""]
        lines += [f"{opt.number or i}. {opt.label}" for i, opt in enumerate(interaction.options, 1)]
        parts.append("\n".join(lines))
        parts.append("Reply with a number to choose.")
        return "\n\n".join(parts)

    parts = ["**The agent has a question for you**"]
    if interaction.header:
        parts.append(f"**{interaction.header}**")
    parts.append(interaction.body)
    if interaction.options:
        lines = ["**Options:**", ""]
        for i, opt in enumerate(interaction.options, 1):
            lines.append(f"{i}. {opt.label}")
            if opt.description:
                lines.append(f"   - {opt.description}")
        parts.append("\n".join(lines))
        if interaction.multi_select:
            parts.append("Reply with one or more numbers, separated by commas.")
        else:
            parts.append("Reply with a number to choose.")
    return "\n\n".join(parts)


class DeliveryPipeline:
    """Sends text through a Messenger, splitting long messages.

    Attributes:
        split_threshold: Messages up to this length go out as one chunk.
        max_chunk_size: Upper bound on every rendered chunk, marker included.
        chunk_delay_seconds: Pause between chunks of one message.
    """

    def __init__(
        self,
        messenger: Messenger,
        split_threshold: int = 12000,
        max_chunk_size: int = 15000,
        chunk_delay_seconds: float = 0.3,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: logging.Logger | None = None,
    ):
        if max_chunk_size <= PREFIX_RESERVE:
            raise ValueError(f"max_chunk_size must exceed {PREFIX_RESERVE}")
        self.messenger = messenger
        self.split_threshold = min(split_threshold, max_chunk_size)
        self.max_chunk_size = max_chunk_size
        self.chunk_delay_seconds = chunk_delay_seconds
        self._sleep = sleep
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    def chunk(self, text: str) -> list[DeliveryChunk]:
        if len(text) <= self.split_threshold:
            return [DeliveryChunk(text=text, index=1, total=1)]
        pieces = split_message(text, self.max_chunk_size - PREFIX_RESERVE)
        return [
            DeliveryChunk(text=piece, index=i, total=len(pieces))
            for i, piece in enumerate(pieces, start=1)
        ]

    async def _send(self, send: Callable[[], Awaitable[SendResult]]) -> SendResult:
        try:
            result = await send()
        except Exception as e:
            return SendResult(success=False, error=str(e) or type(e).__name__)
        if not isinstance(result, SendResult):
            # Treat anything else that is truthy as a plain success flag.
            return SendResult(success=bool(result))
        return result

    async def deliver(self, text: str) -> DeliveryOutcome:
        """Send text, in order, as one or more chunks."""
        chunks = self.chunk(text)
        outcome = DeliveryOutcome(total_chunks=len(chunks))
        if len(chunks) > 1:
            self._logger.info(f"Message too long ({len(text)} chars), sending {len(chunks)} chunks")

        for chunk in chunks:
            result = await self._send(lambda c=chunk: self.messenger.send_text(c.render()))
            if result.success:
                outcome.sent_chunks += 1
            else:
                error = result.error or "unknown error"
                outcome.errors.append(error)
                self._logger.error(f"Failed to send chunk {chunk.index}/{chunk.total}: {error}")
            if chunk.index < chunk.total:
                await self._sleep(self.chunk_delay_seconds)
        return outcome

    async def deliver_interaction(self, interaction: Interaction) -> DeliveryOutcome:
        """Send a question natively when the channel supports it, else as text."""
        native = getattr(self.messenger, "send_ask_user_question", None)
        if interaction.kind == InteractionKind.QUESTION and callable(native):
            result = await self._send(lambda: native(interaction))
            outcome = DeliveryOutcome(total_chunks=1, sent_chunks=int(result.success))
            if not result.success:
                outcome.errors.append(result.error or "unknown error")
                self._logger.error(f"Failed to send question: {result.error}")
            return outcome
        return await self.deliver(render_interaction(interaction))
