"""In-memory conversation state: messages, the streaming turn, and turn admission."""

import itertools
from dataclasses import dataclass, field
from enum import Enum
from typing import NamedTuple


class Role(Enum):
    USER = "human"
    ASSISTANT = "assistant"
    ERROR = "error"

    @property
    def label(self) -> str:
        return {"human": "User", "assistant": "Assistant", "error": "Error"}[
            self.value
        ]


@dataclass
class Message:
    """One transcript entry. `row_id` is set once the message has a durable row."""

    role: Role
    text: str
    row_id: int | None = None

    @classmethod
    def user(cls, text: str) -> "Message":
        return cls(Role.USER, text)

    @classmethod
    def assistant(cls, text: str) -> "Message":
        return cls(Role.ASSISTANT, text)

    @classmethod
    def error(cls, text: str) -> "Message":
        return cls(Role.ERROR, text)

    @property
    def is_answer(self) -> bool:
        """Assistant and Error messages both close a turn."""
        return self.role in (Role.ASSISTANT, Role.ERROR)


class TurnStatus(Enum):
    NOT_STARTED = "not_started"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


_turn_ids = itertools.count(1)


@dataclass
class StreamingTurn:
    """A provisional assistant answer, mutated while the response streams."""

    id: int = field(default_factory=lambda: next(_turn_ids))
    buffer: str = ""
    status: TurnStatus = TurnStatus.NOT_STARTED
    reason: str = ""

    @property
    def terminal(self) -> bool:
        return self.status in (TurnStatus.COMPLETED, TurnStatus.FAILED)

    def start(self):
        if self.status is TurnStatus.NOT_STARTED:
            self.status = TurnStatus.ACTIVE


class Rollback(NamedTuple):
    """Result of undoing the last turn: editable text plus the removed messages."""

    text: str
    removed: list[Message]


class TurnInProgressError(RuntimeError):
    """Raised when an assistant turn is started while another is outstanding."""


class Conversation:
    """Ordered messages of the active conversation and its turn gate."""

    def __init__(
        self,
        system_prompt: str,
        conversation_id: int | None = None,
        messages: list[Message] | None = None,
    ):
        self.system_prompt = system_prompt
        # Allocated lazily by the persistence store on the first message
        self.conversation_id = conversation_id
        self.messages: list[Message] = list(messages or [])
        self.awaiting_response: bool = False
        self.pending: StreamingTurn | None = None

    def __iter__(self):
        return iter(self.messages)

    def __len__(self) -> int:
        return len(self.messages)

    def count(self, *roles: Role) -> int:
        return sum(1 for m in self.messages if m.role in roles)

    def ready_for_input(self) -> bool:
        """True when every user message has been answered."""
        return not self.awaiting_response and self.count(Role.USER) == self.count(
            Role.ASSISTANT, Role.ERROR
        )

    def submit_user_message(self, text: str) -> Message | None:
        """Append a user message, or return None if the turn is not ready."""
        if not text or not self.ready_for_input():
            return None
        message = Message.user(text)
        self.messages.append(message)
        self.awaiting_response = True
        return message

    def begin_assistant_turn(self) -> StreamingTurn:
        if self.pending is not None:
            raise TurnInProgressError(
                f"Turn {self.pending.id} is still outstanding."
            )
        self.pending = StreamingTurn()
        return self.pending

    def apply_partial(self, turn: StreamingTurn, text: str) -> bool:
        """Replace the turn buffer with the full accumulated text so far."""
        if turn is not self.pending or turn.terminal:
            return False
        turn.start()
        turn.buffer = text
        return True

    def finalize_turn(
        self, turn: StreamingTurn, text: str | None = None, error: str | None = None
    ) -> Message | None:
        """Freeze the turn into an Assistant or Error message and close the turn."""
        if turn is not self.pending or turn.terminal:
            return None
        if error is not None:
            turn.status = TurnStatus.FAILED
            turn.reason = error
            message = Message.error(error)
        else:
            turn.status = TurnStatus.COMPLETED
            if text is not None:
                turn.buffer = text
            message = Message.assistant(turn.buffer)
        self.messages.append(message)
        self.pending = None
        self.awaiting_response = False
        return message

    def abandon_turn(self):
        """Drop the outstanding turn without producing a message."""
        self.pending = None
        self.awaiting_response = False

    def redo_last_user_turn(self) -> Rollback | None:
        """Pop the trailing answers and the user message that prompted them."""
        if self.awaiting_response:
            return None
        index = next(
            (
                i
                for i in range(len(self.messages) - 1, -1, -1)
                if self.messages[i].role is Role.USER
            ),
            None,
        )
        if index is None:
            return None
        removed = self.messages[index:]
        del self.messages[index:]
        return Rollback(removed[0].text, removed)

    def last_assistant_message(self) -> Message | None:
        for message in reversed(self.messages):
            if message.role is Role.ASSISTANT:
                return message
        return None
