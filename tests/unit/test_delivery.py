"""Tests for message splitting and the delivery pipeline."""

from unittest.mock import AsyncMock

import pytest

from transcript_relay.delivery import PREFIX_RESERVE, DeliveryPipeline, render_interaction, split_message
from transcript_relay.messenger import LogMessenger
from transcript_relay.models import Interaction, InteractionKind, InteractionOption, SendResult


def long_text() -> str:
    paragraphs = [f"Paragraph {i}: " + "word " * (i * 40) for i in range(1, 30)]
    paragraphs.append("L" * 2500)
    paragraphs.append("\n".join(f"line {i} " + "y" * 90 for i in range(60)))
    return "\n\n".join(paragraphs) + "\n"


class TestSplitMessage:
    """Tests for split_message."""

    def test_short_text_untouched(self) -> None:
        assert split_message("hello", 100) == ["hello"]

    @pytest.mark.parametrize("max_length", [50, 333, 1000, 4096])
    def test_concatenation_reproduces_input(self, max_length: int) -> None:
        """Test that no character is lost, added or reordered, and every piece fits."""
        text = long_text()
        pieces = split_message(text, max_length)

        assert "".join(pieces) == text
        assert all(0 < len(piece) <= max_length for piece in pieces)

    def test_prefers_paragraph_boundaries(self) -> None:
        text = "a" * 40 + "\n\n" + "b" * 40
        assert split_message(text, 60) == ["a" * 40 + "\n\n", "b" * 40]

    def test_falls_back_to_lines(self) -> None:
        text = "\n".join(["x" * 30] * 4)
        pieces = split_message(text, 70)
        assert pieces[0] == "x" * 30 + "\n" + "x" * 30 + "\n"
        assert "".join(pieces) == text

    def test_hard_split_long_line(self) -> None:
        assert split_message("z" * 25, 10) == ["z" * 10, "z" * 10, "z" * 5]

    def test_rejects_non_positive_length(self) -> None:
        with pytest.raises(ValueError):
            split_message("abc", 0)


class TestDeliveryPipeline:
    """Tests for DeliveryPipeline.deliver."""

    @pytest.mark.asyncio
    async def test_short_message_single_send(self) -> None:
        messenger = LogMessenger()
        pipeline = DeliveryPipeline(messenger, sleep=AsyncMock())

        outcome = await pipeline.deliver("Build finished")
        assert outcome.success
        assert messenger.sent == ["Build finished"]

    @pytest.mark.asyncio
    async def test_long_message_prefixed_ordered_bounded(self) -> None:
        """Test chunk markers, ordering, bounds and pacing."""
        messenger = LogMessenger()
        sleep = AsyncMock()
        pipeline = DeliveryPipeline(
            messenger, split_threshold=500, max_chunk_size=600, chunk_delay_seconds=0.3, sleep=sleep
        )
        text = long_text()

        outcome = await pipeline.deliver(text)
        total = len(messenger.sent)

        assert total > 1
        assert outcome.success and outcome.sent_chunks == total
        assert all(len(chunk) <= 600 for chunk in messenger.sent)
        payloads = []
        for i, chunk in enumerate(messenger.sent, start=1):
            prefix = f"[{i}/{total}]\n"
            assert chunk.startswith(prefix)
            payloads.append(chunk[len(prefix):])
        assert "".join(payloads) == text
        assert sleep.await_count == total - 1
        sleep.assert_awaited_with(0.3)

    @pytest.mark.asyncio
    async def test_failed_chunk_reported_not_retried(self) -> None:
        """Test that a failing send is logged and the rest still go out."""
        messenger = AsyncMock()
        messenger.send_text.side_effect = [
            SendResult(success=True),
            SendResult(success=False, error="rate limited"),
            SendResult(success=True),
        ]
        pipeline = DeliveryPipeline(messenger, split_threshold=100, max_chunk_size=100, sleep=AsyncMock())

        outcome = await pipeline.deliver("a" * 80 + "\n\n" + "b" * 80 + "\n\n" + "c" * 80)
        assert outcome.total_chunks == 3
        assert outcome.sent_chunks == 2
        assert outcome.errors == ["rate limited"]
        assert not outcome.success
        assert messenger.send_text.await_count == 3

    @pytest.mark.asyncio
    async def test_messenger_exception_becomes_failure(self) -> None:
        messenger = AsyncMock()
        messenger.send_text.side_effect = ConnectionError("down")
        pipeline = DeliveryPipeline(messenger, sleep=AsyncMock())

        outcome = await pipeline.deliver("hi")
        assert not outcome.success
        assert outcome.errors == ["down"]

    def test_chunk_reserve(self) -> None:
        """Test that the split size leaves room for the marker."""
        pipeline = DeliveryPipeline(LogMessenger(), split_threshold=100, max_chunk_size=100)
        chunks = pipeline.chunk("q" * 500)
        assert all(len(c.text) <= 100 - PREFIX_RESERVE for c in chunks)
        assert all(len(c.render()) <= 100 for c in chunks)


def make_question(multi_select: bool = False) -> Interaction:
    return Interaction(
        kind=InteractionKind.QUESTION,
        header="Deploy",
        body="Ship it?",
        options=[InteractionOption("Yes", "Deploy now", 1), InteractionOption("No", None, 2)],
        multi_select=multi_select,
        uuid="u1",
    )


class TestInteractions:
    """Tests for interaction delivery and rendering."""

    def test_render_question(self) -> None:
        text = render_interaction(make_question())
        assert "**Deploy**" in text
        assert "Ship it?" in text
        assert "1. Yes\n   - Deploy now" in text
        assert "2. No" in text
        assert "Reply with a number" in text

    def test_render_multi_select_hint(self) -> None:
        assert "one or more numbers" in render_interaction(make_question(multi_select=True))

    def test_render_plan(self) -> None:
        interaction = Interaction(
            kind=InteractionKind.PLAN_CONFIRMATION,
            header="Plan ready for confirmation",
            options=[InteractionOption("Yes", number=1), InteractionOption("No", number=2)],
            plan_path="~/plans/p.md",
            plan_content="Step 1",
        )
        text = render_interaction(interaction)
        assert "`~/plans/p.md`" in text
        assert "Step 1" in text
        assert "1. Yes" in text and "2. No" in text

    @pytest.mark.asyncio
    async def test_native_question_used_when_available(self) -> None:
        messenger = AsyncMock()
        messenger.send_ask_user_question.return_value = SendResult(success=True)
        pipeline = DeliveryPipeline(messenger, sleep=AsyncMock())

        outcome = await pipeline.deliver_interaction(make_question())
        assert outcome.success
        messenger.send_ask_user_question.assert_awaited_once()
        messenger.send_text.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_falls_back_to_text(self) -> None:
        messenger = LogMessenger()
        pipeline = DeliveryPipeline(messenger, sleep=AsyncMock())

        outcome = await pipeline.deliver_interaction(make_question())
        assert outcome.success
        assert "Ship it?" in messenger.sent[0]
