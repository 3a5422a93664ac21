"""Record classification: what, if anything, a human should see.

Two sources feed the classifier:

* Transcript records. ``RecordClassifier.classify`` labels one decoded record
  as suppressed (tool work, internal text, nothing to say), an interactive
  question, or deliverable text.
* Terminal text. A plan waiting for confirmation never reaches the
  transcript, so ``PlanConfirmationDetector`` pattern-matches recent pane
  output instead and synthesizes the same Interaction shape. Terminal text
  has no record id, so this path deduplicates by content hash with its own
  cool-down.
"""

from __future__ import annotations

import hashlib
import logging
import os
import re
import time
from collections.abc import Callable
from typing import Any

import aiofiles

from .models import Classification, Interaction, InteractionKind, InteractionOption, Verdict
from .monitoring.models import InternalBlock, LogRecord, TextBlock, ToolUseBlock

logger = logging.getLogger(__name__)

QUESTION_TOOL_NAMES = frozenset({"AskUserQuestion", "ask-user-question"})

PLAN_MARKER = "Would you like to proceed?"
PLAN_HEADER = "Plan ready for confirmation"

# Numbered option line, optionally behind a selection cursor: "❯ 1. Yes"
_OPTION_RE = re.compile(r"^[\s│|]*(?:[❯>›]\s*)?(\d+)\.\s+(.+?)[\s│|]*$")
_PLAN_PATH_RE = re.compile(r"(~?/[^\s`'\"()<>│|]+\.md)")


class RecordClassifier:
    """Labels transcript records. First matching rule wins:

    1. an ask-user-question tool invocation -> interactive question
    2. any other tool invocation -> suppressed
    3. a text block carrying an internal marker -> suppressed
    4. non-blank text -> deliverable, blocks joined with newlines
    5. anything else -> suppressed
    """

    def __init__(self, logger: logging.Logger | None = None):
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    def classify(self, record: LogRecord) -> Classification:
        tool_blocks: list[ToolUseBlock] = []
        text_blocks: list[TextBlock] = []
        marked = False
        for block in record.content:
            if isinstance(block, ToolUseBlock):
                tool_blocks.append(block)
            elif isinstance(block, TextBlock):
                text_blocks.append(block)
            elif isinstance(block, InternalBlock):
                marked = marked or block.marked
            else:
                self._logger.warning(f"Unhandled content block {type(block).__name__}")

        question = next((b for b in tool_blocks if b.name in QUESTION_TOOL_NAMES), None)
        if question is not None:
            interaction = self.parse_question(question, record.uuid)
            if interaction is None:
                return Classification.suppress("malformed question")
            return Classification(Verdict.INTERACTIVE, interaction=interaction)

        if tool_blocks:
            return Classification.suppress(f"tool invocation: {tool_blocks[0].name}")
        if marked:
            return Classification.suppress("internal marker")

        if any(block.text.strip() for block in text_blocks):
            text = "\n".join(block.text for block in text_blocks if block.text)
            return Classification(Verdict.DELIVER_TEXT, text=text)
        return Classification.suppress("no visible text")

    def parse_question(self, block: ToolUseBlock, uuid: str | None = None) -> Interaction | None:
        """Extract the first question of an ask-user-question invocation.

        Returns:
            The Interaction, or None (with a warning) if the input has no
            usable question or its options are not a list.
        """
        payload = block.input
        questions = payload.get("questions") if isinstance(payload, dict) else None
        if not isinstance(questions, list) or not questions or not isinstance(questions[0], dict):
            self._logger.warning("Question tool invocation without questions, suppressing")
            return None

        first: dict[str, Any] = questions[0]
        raw_options = first.get("options")
        if not isinstance(raw_options, list):
            self._logger.warning("Question tool invocation without an options list, suppressing")
            return None

        options: list[InteractionOption] = []
        for number, raw in enumerate(raw_options, start=1):
            if isinstance(raw, dict) and raw.get("label"):
                description = raw.get("description")
                options.append(
                    InteractionOption(
                        label=str(raw["label"]),
                        description=str(description) if description else None,
                        number=number,
                    )
                )
            elif isinstance(raw, str) and raw:
                options.append(InteractionOption(label=raw, number=number))

        return Interaction(
            kind=InteractionKind.QUESTION,
            header=str(first.get("header") or ""),
            body=str(first.get("question") or ""),
            options=options,
            multi_select=bool(first.get("multiSelect", False)),
            uuid=uuid,
        )


class PlanConfirmationDetector:
    """Spots a plan-confirmation prompt in terminal output.

    A prompt is reported once per distinct option block; the same block is
    not reported again until ``cooldown_seconds`` pass or the prompt leaves
    the screen.
    """

    def __init__(
        self,
        cooldown_seconds: float = 300,
        max_plan_length: int = 5000,
        clock: Callable[[], float] = time.time,
        logger: logging.Logger | None = None,
    ):
        self.cooldown_seconds = cooldown_seconds
        self.max_plan_length = max_plan_length
        self._clock = clock
        self._logger = logger if logger is not None else logging.getLogger(__name__)
        self._last_hash: str | None = None
        self._last_notified: float | None = None

    @staticmethod
    def _prompt_section(terminal_text: str) -> list[str] | None:
        lines = terminal_text.splitlines()
        for index in range(len(lines) - 1, -1, -1):
            if PLAN_MARKER in lines[index]:
                return lines[index + 1:]
        return None

    @staticmethod
    def _parse_options(lines: list[str]) -> list[InteractionOption]:
        options = []
        for line in lines:
            match = _OPTION_RE.match(line)
            if match:
                options.append(InteractionOption(label=match.group(2), number=int(match.group(1))))
        return options

    def is_plan_confirmation(self, terminal_text: str) -> bool:
        section = self._prompt_section(terminal_text)
        return section is not None and len(self._parse_options(section)) >= 2

    def content_hash(self, terminal_text: str) -> str:
        """Hash only the option lines so redraws and timers do not count as new."""
        section = self._prompt_section(terminal_text) or []
        option_lines = [line.strip() for line in section if _OPTION_RE.match(line)]
        return hashlib.md5("|".join(option_lines).encode("utf-8")).hexdigest()

    def parse(self, terminal_text: str) -> Interaction | None:
        section = self._prompt_section(terminal_text)
        if section is None:
            return None
        options = self._parse_options(section)
        if len(options) < 2:
            return None
        paths = _PLAN_PATH_RE.findall(terminal_text)
        return Interaction(
            kind=InteractionKind.PLAN_CONFIRMATION,
            header=PLAN_HEADER,
            body=PLAN_MARKER,
            options=options,
            plan_path=paths[-1] if paths else None,
        )

    def reset(self) -> None:
        self._last_hash = None
        self._last_notified = None

    async def check(self, terminal_text: str) -> Interaction | None:
        """Return a plan-confirmation Interaction if one should be sent now.

        The referenced plan document, if any, is loaded and truncated into
        ``plan_content``. A returned interaction counts as notified.
        """
        if not terminal_text.strip() or not self.is_plan_confirmation(terminal_text):
            self.reset()
            return None

        content_hash = self.content_hash(terminal_text)
        now = self._clock()
        if (
            content_hash == self._last_hash
            and self._last_notified is not None
            and now - self._last_notified < self.cooldown_seconds
        ):
            return None

        interaction = self.parse(terminal_text)
        if interaction is None:
            return None
        if interaction.plan_path:
            interaction.plan_content = await self.load_plan(interaction.plan_path)

        self._last_hash = content_hash
        self._last_notified = now
        return interaction

    async def load_plan(self, plan_path: str) -> str | None:
        full_path = os.path.expanduser(plan_path)
        try:
            async with aiofiles.open(full_path, encoding="utf-8", errors="replace") as f:
                content = await f.read()
        except FileNotFoundError:
            self._logger.warning(f"Plan file does not exist: {full_path}")
            return None
        except OSError as e:
            self._logger.error(f"Failed to read plan file {full_path}: {e}")
            return None

        self._logger.info(f"Loaded plan file {full_path} ({len(content)} chars)")
        if len(content) > self.max_plan_length:
            content = (
                content[: self.max_plan_length]
                + f"\n\n... (plan truncated, {len(content)} chars total)"
            )
        return content
