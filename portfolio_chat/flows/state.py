"""State definition for the conversation state machine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple, Union

from portfolio_chat.domain.models import ChatError, Message, MessageStatus


@dataclass(frozen=True)
class Idle:
    """No request in flight and nothing settled since the last clear."""


@dataclass(frozen=True)
class Sending:
    """User message and placeholder appended, request issued, no fragment yet."""

    user_message_id: str
    placeholder_id: str
    text: str


@dataclass(frozen=True)
class Streaming:
    """At least one fragment has been appended to the placeholder."""

    user_message_id: str
    placeholder_id: str
    text: str


@dataclass(frozen=True)
class Settled:
    """The last placeholder reached ``complete`` or ``error``.

    ``error`` and ``failed_input`` are only set for the ``error`` outcome.
    """

    user_message_id: str
    placeholder_id: str
    outcome: MessageStatus
    error: Optional[ChatError] = None
    failed_input: Optional[str] = None


Phase = Union[Idle, Sending, Streaming, Settled]
InFlight = (Sending, Streaming)


@dataclass(frozen=True)
class ChatState:
    """Complete state owned by one ConversationStore."""

    is_open: bool = False
    loaded: bool = False
    conversation_id: str = ""
    messages: Tuple[Message, ...] = ()
    draft: str = ""
    phase: Phase = Idle()

    @property
    def is_loading(self) -> bool:
        return isinstance(self.phase, InFlight)

    @property
    def streaming_message_id(self) -> Optional[str]:
        if isinstance(self.phase, InFlight):
            return self.phase.placeholder_id
        return None

    @property
    def error(self) -> Optional[ChatError]:
        if isinstance(self.phase, Settled):
            return self.phase.error
        return None

    @property
    def last_failed_input(self) -> Optional[str]:
        if isinstance(self.phase, Settled):
            return self.phase.failed_input
        return None

    @property
    def phase_name(self) -> str:
        return type(self.phase).__name__.lower()
