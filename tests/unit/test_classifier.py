"""Tests for RecordClassifier and PlanConfirmationDetector."""

from pathlib import Path

import pytest

from transcript_relay.classifier import (
    PLAN_HEADER,
    PlanConfirmationDetector,
    RecordClassifier,
)
from transcript_relay.models import InteractionKind, Verdict
from transcript_relay.monitoring.models import parse_record


@pytest.fixture
def classifier() -> RecordClassifier:
    return RecordClassifier()


def classify(classifier, make_record, *blocks):
    return classifier.classify(parse_record(make_record("u1", *blocks)))


class TestRecordClassifier:
    """Tests for the first-match-wins decision order."""

    def test_plain_text_is_delivered(self, classifier, make_record, make_text) -> None:
        """Test a single text block."""
        result = classify(classifier, make_record, make_text("Build finished"))
        assert result.verdict == Verdict.DELIVER_TEXT
        assert result.text == "Build finished"

    def test_text_blocks_joined_with_newlines(self, classifier, make_record, make_text) -> None:
        result = classify(classifier, make_record, make_text("one"), make_text("two"))
        assert result.text == "one\ntwo"

    def test_question_is_interactive(self, classifier, make_record, make_tool) -> None:
        """Test the ask-user-question invocation."""
        result = classify(
            classifier,
            make_record,
            make_tool(
                "ask-user-question",
                {"questions": [{"question": "Proceed?", "options": [{"label": "Yes"}, {"label": "No"}]}]},
                tag="tool-invocation",
            ),
        )
        assert result.verdict == Verdict.INTERACTIVE
        interaction = result.interaction
        assert interaction.kind == InteractionKind.QUESTION
        assert interaction.body == "Proceed?"
        assert [o.label for o in interaction.options] == ["Yes", "No"]
        assert interaction.uuid == "u1"

    def test_native_question_tool_name(self, classifier, make_record, make_text, make_tool) -> None:
        """Test the agent's own tool name, with header, descriptions and multi-select."""
        result = classify(
            classifier,
            make_record,
            make_text("Need a decision"),
            make_tool(
                "AskUserQuestion",
                {
                    "questions": [
                        {
                            "header": "Database",
                            "question": "Which one?",
                            "multiSelect": True,
                            "options": [
                                {"label": "Postgres", "description": "Relational"},
                                {"label": "Redis"},
                            ],
                        }
                    ]
                },
            ),
        )
        assert result.verdict == Verdict.INTERACTIVE
        interaction = result.interaction
        assert interaction.header == "Database"
        assert interaction.multi_select is True
        assert interaction.options[0].description == "Relational"
        assert interaction.options[1].description is None

    def test_question_without_options_suppressed(self, classifier, make_record, make_tool) -> None:
        """Test that a malformed question is suppressed, not raised."""
        result = classify(
            classifier, make_record, make_tool("AskUserQuestion", {"questions": [{"question": "Hm?"}]})
        )
        assert result.verdict == Verdict.SUPPRESS

    def test_question_without_questions_suppressed(self, classifier, make_record, make_tool) -> None:
        result = classify(classifier, make_record, make_tool("AskUserQuestion", {"foo": 1}))
        assert result.verdict == Verdict.SUPPRESS

    def test_other_tool_suppresses_text(self, classifier, make_record, make_text, make_tool) -> None:
        """Test that any other tool invocation hides the record."""
        result = classify(classifier, make_record, make_text("Running tests"), make_tool("Bash"))
        assert result.verdict == Verdict.SUPPRESS
        assert "Bash" in result.reason

    def test_internal_marker_suppresses(self, classifier, make_record, make_text) -> None:
        result = classify(
            classifier, make_record, make_text("[SUGGESTION MODE: on]"), make_text("visible")
        )
        assert result.verdict == Verdict.SUPPRESS

    def test_native_thinking_does_not_hide_text(self, classifier, make_record, make_text) -> None:
        """Test that a thinking block alongside text still delivers the text."""
        result = classify(
            classifier, make_record, {"type": "thinking", "thinking": "..."}, make_text("Done")
        )
        assert result.verdict == Verdict.DELIVER_TEXT
        assert result.text == "Done"

    def test_blank_text_suppressed(self, classifier, make_record, make_text) -> None:
        result = classify(classifier, make_record, make_text("   \n"))
        assert result.verdict == Verdict.SUPPRESS

    def test_empty_content_suppressed(self, classifier, make_record) -> None:
        result = classify(classifier, make_record)
        assert result.verdict == Verdict.SUPPRESS


PLAN_SCREEN = """\
Here is the plan, saved to ~/.claude/plans/refactor-store.md

 Would you like to proceed?

 ❯ 1. Yes, and auto-accept edits
   2. Yes, and manually approve edits
   3. No, keep planning
"""


class TestPlanConfirmationDetector:
    """Tests for plan prompts found in terminal output."""

    def test_detects_prompt(self) -> None:
        detector = PlanConfirmationDetector()
        assert detector.is_plan_confirmation(PLAN_SCREEN)

        interaction = detector.parse(PLAN_SCREEN)
        assert interaction.kind == InteractionKind.PLAN_CONFIRMATION
        assert interaction.header == PLAN_HEADER
        assert [o.number for o in interaction.options] == [1, 2, 3]
        assert interaction.options[0].label == "Yes, and auto-accept edits"
        assert interaction.plan_path == "~/.claude/plans/refactor-store.md"

    def test_needs_marker_and_two_options(self) -> None:
        detector = PlanConfirmationDetector()
        assert not detector.is_plan_confirmation("1. one\n2. two\n")
        assert not detector.is_plan_confirmation("Would you like to proceed?\n 1. Yes\n")

    def test_hash_ignores_surrounding_redraws(self) -> None:
        """Test that only the option lines identify a prompt."""
        detector = PlanConfirmationDetector()
        redrawn = "spinner 12s\n" + PLAN_SCREEN.replace("❯ 1.", "  1.")
        assert detector.content_hash(PLAN_SCREEN) != detector.content_hash(PLAN_SCREEN.replace("3. No", "3. Never"))
        assert detector.content_hash(PLAN_SCREEN) == detector.content_hash("noise\n" + PLAN_SCREEN)
        assert detector.is_plan_confirmation(redrawn)

    @pytest.mark.asyncio
    async def test_cooldown(self, clock) -> None:
        """Test that the same prompt is reported once per cooldown window."""
        detector = PlanConfirmationDetector(cooldown_seconds=300, clock=clock)

        assert await detector.check(PLAN_SCREEN) is not None
        clock.advance(299)
        assert await detector.check(PLAN_SCREEN) is None
        clock.advance(1)
        assert await detector.check(PLAN_SCREEN) is not None

    @pytest.mark.asyncio
    async def test_prompt_leaving_screen_rearms(self, clock) -> None:
        detector = PlanConfirmationDetector(clock=clock)

        assert await detector.check(PLAN_SCREEN) is not None
        assert await detector.check("$ ") is None
        assert await detector.check(PLAN_SCREEN) is not None

    @pytest.mark.asyncio
    async def test_loads_and_truncates_plan(self, tmp_path: Path, clock) -> None:
        """Test that the referenced plan document is attached, capped in length."""
        plan = tmp_path / "plan.md"
        plan.write_text("x" * 120)
        screen = PLAN_SCREEN.replace("~/.claude/plans/refactor-store.md", str(plan))
        detector = PlanConfirmationDetector(max_plan_length=100, clock=clock)

        interaction = await detector.check(screen)
        assert interaction.plan_path == str(plan)
        assert interaction.plan_content == "x" * 100 + "\n\n... (plan truncated, 120 chars total)"

    @pytest.mark.asyncio
    async def test_missing_plan_file(self, tmp_path: Path, clock) -> None:
        screen = PLAN_SCREEN.replace("~/.claude/plans/refactor-store.md", str(tmp_path / "nope.md"))
        detector = PlanConfirmationDetector(clock=clock)

        interaction = await detector.check(screen)
        assert interaction is not None
        assert interaction.plan_content is None
