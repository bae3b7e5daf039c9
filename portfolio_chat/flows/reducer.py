"""Pure transition function for the conversation state machine.

Every change to ``ChatState`` goes through ``reduce``. Actions carry any ids
and timestamps they need so the reducer itself stays deterministic.
Transitions that do not apply to the current phase (a chunk for a
placeholder that was cleared, a second submit while one is in flight)
return the state unchanged.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Tuple, Union

from portfolio_chat.domain.models import ChatError, Message
from portfolio_chat.flows.state import ChatState, Idle, InFlight, Sending, Settled, Streaming


@dataclass(frozen=True)
class OpenPanel:
    pass


@dataclass(frozen=True)
class ClosePanel:
    pass


@dataclass(frozen=True)
class SessionLoaded:
    conversation_id: str
    messages: Tuple[Message, ...]


@dataclass(frozen=True)
class UpdateDraft:
    text: str


@dataclass(frozen=True)
class Submit:
    user_message: Message
    placeholder: Message


@dataclass(frozen=True)
class AppendChunk:
    message_id: str
    content: str


@dataclass(frozen=True)
class Complete:
    message_id: str


@dataclass(frozen=True)
class Fail:
    message_id: str
    error: ChatError
    failed_input: str


@dataclass(frozen=True)
class DiscardFailed:
    pass


@dataclass(frozen=True)
class Reset:
    conversation_id: str
    welcome: Message


Action = Union[
    OpenPanel,
    ClosePanel,
    SessionLoaded,
    UpdateDraft,
    Submit,
    AppendChunk,
    Complete,
    Fail,
    DiscardFailed,
    Reset,
]


def _replace_message(messages: Tuple[Message, ...], message_id: str, **changes) -> Tuple[Message, ...]:
    return tuple(replace(m, **changes) if m.id == message_id else m for m in messages)


def _owns_placeholder(state: ChatState, message_id: str) -> bool:
    return isinstance(state.phase, InFlight) and state.phase.placeholder_id == message_id


def reduce(state: ChatState, action: Action) -> ChatState:
    if isinstance(action, OpenPanel):
        return replace(state, is_open=True)

    if isinstance(action, ClosePanel):
        return replace(state, is_open=False)

    if isinstance(action, SessionLoaded):
        # a restored message can't still be in flight: its request died with the page
        messages = tuple(
            replace(m, status="error") if m.status in ("sending", "streaming") else m
            for m in action.messages
        )
        return replace(
            state,
            loaded=True,
            conversation_id=action.conversation_id,
            messages=messages,
            phase=Idle(),
        )

    if isinstance(action, UpdateDraft):
        return replace(state, draft=action.text)

    if isinstance(action, Submit):
        if isinstance(state.phase, InFlight):
            return state
        return replace(
            state,
            messages=state.messages + (action.user_message, action.placeholder),
            draft="",
            phase=Sending(
                user_message_id=action.user_message.id,
                placeholder_id=action.placeholder.id,
                text=action.user_message.content,
            ),
        )

    if isinstance(action, AppendChunk):
        if not _owns_placeholder(state, action.message_id) or not action.content:
            return state
        phase = state.phase
        messages = tuple(
            replace(m, content=m.content + action.content) if m.id == action.message_id else m
            for m in state.messages
        )
        return replace(
            state,
            messages=messages,
            phase=Streaming(
                user_message_id=phase.user_message_id,
                placeholder_id=phase.placeholder_id,
                text=phase.text,
            ),
        )

    if isinstance(action, Complete):
        if not _owns_placeholder(state, action.message_id):
            return state
        return replace(
            state,
            messages=_replace_message(state.messages, action.message_id, status="complete"),
            phase=Settled(
                user_message_id=state.phase.user_message_id,
                placeholder_id=action.message_id,
                outcome="complete",
            ),
        )

    if isinstance(action, Fail):
        if not _owns_placeholder(state, action.message_id):
            return state
        return replace(
            state,
            messages=_replace_message(state.messages, action.message_id, status="error"),
            phase=Settled(
                user_message_id=state.phase.user_message_id,
                placeholder_id=action.message_id,
                outcome="error",
                error=action.error,
                failed_input=action.failed_input,
            ),
        )

    if isinstance(action, DiscardFailed):
        phase = state.phase
        if not isinstance(phase, Settled) or phase.outcome != "error":
            return state
        dropped = {phase.user_message_id, phase.placeholder_id}
        return replace(
            state,
            messages=tuple(m for m in state.messages if m.id not in dropped),
            phase=Idle(),
        )

    if isinstance(action, Reset):
        return replace(
            state,
            loaded=True,
            conversation_id=action.conversation_id,
            messages=(action.welcome,),
            phase=Idle(),
        )

    raise TypeError(f"Unhandled action: {action!r}")
