"""Models for classification, interactions and delivery."""

from dataclasses import dataclass, field
from enum import Enum


class Verdict(str, Enum):
    """What the monitor should do with a classified record."""

    SUPPRESS = "suppress"
    INTERACTIVE = "interactive"
    DELIVER_TEXT = "deliver_text"


class InteractionKind(str, Enum):
    """Kinds of human decision the agent can be waiting on."""

    QUESTION = "question"
    PLAN_CONFIRMATION = "plan_confirmation"


@dataclass(frozen=True)
class InteractionOption:
    label: str
    description: str | None = None
    number: int | None = None


@dataclass
class Interaction:
    """A prompt that needs a human answer.

    Attributes:
        kind: Question or plan confirmation.
        header: Short title shown above the body.
        body: Question text.
        options: Choices in display order.
        multi_select: Whether more than one option may be chosen.
        plan_path: Plan document referenced by a plan confirmation.
        plan_content: Loaded (possibly truncated) plan document text.
        uuid: Id of the transcript record the interaction came from.
    """

    kind: InteractionKind
    header: str = ""
    body: str = ""
    options: list[InteractionOption] = field(default_factory=list)
    multi_select: bool = False
    plan_path: str | None = None
    plan_content: str | None = None
    uuid: str | None = None


@dataclass(frozen=True)
class Classification:
    verdict: Verdict
    text: str | None = None
    interaction: Interaction | None = None
    reason: str = ""

    @classmethod
    def suppress(cls, reason: str) -> "Classification":
        return cls(Verdict.SUPPRESS, reason=reason)


@dataclass(frozen=True)
class DeliveryChunk:
    """One bounded fragment of a split message."""

    text: str
    index: int
    total: int

    @property
    def prefix(self) -> str:
        return f"[{self.index}/{self.total}]\n" if self.total > 1 else ""

    def render(self) -> str:
        return self.prefix + self.text


@dataclass(frozen=True)
class SendResult:
    """Result reported by a Messenger for one send."""

    success: bool
    error: str | None = None


@dataclass
class DeliveryOutcome:
    """Result of delivering one message, possibly in several chunks."""

    total_chunks: int = 0
    sent_chunks: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.total_chunks > 0 and self.sent_chunks == self.total_chunks


class SessionOrigin(str, Enum):
    """How a session candidate was discovered in the project log root."""

    DIRECTORY = "dir"
    FILE = "file"


@dataclass
class Session:
    session_id: str
    origin: SessionOrigin
    mtime: float
