"""会话状态机。

ConversationStore 持有一个标签页内唯一的会话：有序消息、当前阶段
（Idle / Sending / Streaming / Settled）、草稿与面板可见性。

- 所有状态变化都经过 flows.reducer.reduce，之后同步通知订阅者。
- send 同步拉取回答片段，每个片段一次 dispatch（展示层据此重绘）。
- 在每个 settle 点（消息追加、流结束、出错）以及 clear 之后通过
  Session Codec 持久化；持久化失败只记日志，不影响会话。
- 同一时刻只允许一个请求在途，在途期间的 send 被直接拒绝。
"""

import logging
import random
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple
from uuid import uuid4

from portfolio_chat.config.settings import settings
from portfolio_chat.domain.conversation import CHAT_STORAGE_KEY, SessionStorage
from portfolio_chat.domain.exceptions import BusinessError, CompletionError, UnknownCompletionError
from portfolio_chat.domain.models import (
    ChatError,
    Conversation,
    ConversationMessage,
    Message,
    utc_now,
)
from portfolio_chat.flows.reducer import (
    Action,
    AppendChunk,
    ClosePanel,
    Complete,
    DiscardFailed,
    Fail,
    OpenPanel,
    Reset,
    SessionLoaded,
    Submit,
    UpdateDraft,
    reduce,
)
from portfolio_chat.flows.state import ChatState, InFlight
from portfolio_chat.infrastructure.logging.logger import logger
from portfolio_chat.infrastructure.storage.session_codec import decode_session, encode_session
from portfolio_chat.prompts.suggestions import follow_up_suggestions, starter_questions
from portfolio_chat.providers.base import ReplySource


Listener = Callable[[ChatState], None]

WELCOME_MESSAGE_ID = "welcome"


def _new_id() -> str:
    return uuid4().hex


class ConversationStore:
    def __init__(
        self,
        replies: ReplySource,
        storage: SessionStorage,
        welcome_message: Optional[str] = None,
        id_factory: Callable[[], str] = _new_id,
        rng: Optional[random.Random] = None,
    ):
        self._replies = replies
        self._storage = storage
        self._welcome_text = welcome_message or settings.welcome_message
        self._new_id = id_factory
        self._rng = rng or random.Random()
        self._state = ChatState()
        self._listeners: List[Listener] = []

    # ---- 派生视图 ----

    @property
    def state(self) -> ChatState:
        return self._state

    @property
    def messages(self) -> Tuple[Message, ...]:
        return self._state.messages

    @property
    def conversation_id(self) -> str:
        return self._state.conversation_id

    @property
    def is_open(self) -> bool:
        return self._state.is_open

    @property
    def is_loading(self) -> bool:
        return self._state.is_loading

    @property
    def streaming_message_id(self) -> Optional[str]:
        return self._state.streaming_message_id

    @property
    def error(self) -> Optional[ChatError]:
        return self._state.error

    @property
    def last_failed_input(self) -> Optional[str]:
        return self._state.last_failed_input

    @property
    def draft(self) -> str:
        return self._state.draft

    @property
    def can_retry(self) -> bool:
        error = self._state.error
        return self._state.last_failed_input is not None and error is not None and error.retryable

    def snapshot(self) -> Dict[str, Any]:
        """展示层使用的只读视图。"""

        return {
            "is_open": self.is_open,
            "phase": self._state.phase_name,
            "conversation_id": self.conversation_id,
            "messages": self.messages,
            "is_loading": self.is_loading,
            "streaming_message_id": self.streaming_message_id,
            "error": self.error,
            "can_retry": self.can_retry,
        }

    def suggestions(self, count: int = 3) -> List[str]:
        """只有欢迎语时给出开场问题，之后按话题给出追问。"""

        if self.is_loading:
            return []
        conversational = [m for m in self.messages if m.role != "system"]
        if not conversational:
            return starter_questions(count, self._rng)
        return follow_up_suggestions(conversational, count, self._rng)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ---- 意图 ----

    def open(self) -> None:
        self._dispatch(OpenPanel())
        if not self._state.loaded:
            self._load_session()

    def close(self) -> None:
        self._dispatch(ClosePanel())

    def update_draft(self, text: str) -> None:
        self._dispatch(UpdateDraft(text))

    def send(self, text: Optional[str] = None) -> bool:
        """提交一条用户消息并同步读完回答流。

        返回 False 表示被拒绝（空白输入或已有请求在途），此时状态不变。
        """

        content = (self._state.draft if text is None else text).strip()
        if not content:
            logger.debug("Rejected empty message")
            return False
        if isinstance(self._state.phase, InFlight):
            logger.info("Rejected message while a reply is in flight")
            return False
        if not self._state.loaded:
            self._load_session()

        history = self._history() + [ConversationMessage(role="user", content=content)]
        now = utc_now()
        user_message = Message(id=self._new_id(), role="user", content=content, timestamp=now, status="complete")
        placeholder = Message(id=self._new_id(), role="assistant", content="", timestamp=now, status="streaming")
        self._dispatch(Submit(user_message=user_message, placeholder=placeholder))
        self._persist()

        log_ctx = {"conversation_id": self.conversation_id, "message_id": placeholder.id}
        self._log(logging.INFO, "Sending message", log_ctx, history=len(history))
        self._consume(placeholder.id, content, history, log_ctx)
        return True

    def retry(self) -> bool:
        """重新发送最近一次失败的输入，替换掉失败的那一对消息。"""

        failed_input = self._state.last_failed_input
        if failed_input is None or isinstance(self._state.phase, InFlight):
            return False
        self._log(logging.INFO, "Retrying failed message", {"conversation_id": self.conversation_id})
        self._dispatch(DiscardFailed())
        return self.send(failed_input)

    def clear(self) -> None:
        previous = self.conversation_id
        self._dispatch(Reset(conversation_id=self._fresh_conversation_id(previous), welcome=self._welcome()))
        self._persist()
        self._log(
            logging.INFO,
            "Cleared conversation",
            {"conversation_id": self.conversation_id, "previous_conversation_id": previous},
        )

    # ---- 内部实现 ----

    def _consume(self, placeholder_id: str, content: str, history: List[ConversationMessage], log_ctx: Dict[str, Any]) -> None:
        stream: Optional[Iterator[str]] = None
        fragments = 0
        try:
            stream = iter(self._replies.stream_reply(history))
            for fragment in stream:
                if self._state.streaming_message_id != placeholder_id:
                    # 在途期间会话被清空，放弃剩余的流
                    self._log(logging.INFO, "Abandoned stream", log_ctx, fragments=fragments)
                    return
                fragments += 1
                self._dispatch(AppendChunk(message_id=placeholder_id, content=fragment))
        except CompletionError as exc:
            self._fail(placeholder_id, content, exc, log_ctx)
            return
        except BusinessError as exc:
            self._fail(placeholder_id, content, UnknownCompletionError(code=exc.code), log_ctx)
            return
        except Exception as exc:
            logger.exception("Reply stream failed", extra={"extra": {**log_ctx, "error": type(exc).__name__}})
            self._fail(placeholder_id, content, UnknownCompletionError(), log_ctx)
            return
        finally:
            close = getattr(stream, "close", None)
            if close is not None:
                close()

        if self._state.streaming_message_id != placeholder_id:
            return
        self._dispatch(Complete(message_id=placeholder_id))
        self._persist()
        self._log(logging.INFO, "Reply completed", log_ctx, fragments=fragments)

    def _fail(self, placeholder_id: str, content: str, exc: CompletionError, log_ctx: Dict[str, Any]) -> None:
        self._log(
            logging.WARNING,
            "Reply failed",
            log_ctx,
            kind=exc.kind,
            code=exc.code,
            retryable=exc.retryable,
        )
        if self._state.streaming_message_id != placeholder_id:
            return
        self._dispatch(Fail(message_id=placeholder_id, error=exc.to_chat_error(), failed_input=content))
        self._persist()

    def _history(self) -> List[ConversationMessage]:
        """已完成的 user/assistant 消息，按原顺序重放给模型。"""

        return [
            ConversationMessage(role=m.role, content=m.content)
            for m in self._state.messages
            if m.role in ("user", "assistant") and m.status == "complete"
        ]

    def _load_session(self) -> None:
        raw: Optional[str] = None
        try:
            raw = self._storage.get_item(CHAT_STORAGE_KEY)
        except BusinessError as exc:
            self._log(logging.WARNING, "Failed to read chat session", {}, code=exc.code)
        conversation = decode_session(raw)
        if conversation is None or not conversation.messages:
            conversation_id = conversation.conversation_id if conversation else self._new_id()
            conversation = Conversation(conversation_id=conversation_id, messages=(self._welcome(),))
            self._dispatch(SessionLoaded(conversation.conversation_id, conversation.messages))
            self._persist()
            self._log(logging.INFO, "Started new conversation", {"conversation_id": conversation_id})
            return
        self._dispatch(SessionLoaded(conversation.conversation_id, conversation.messages))
        self._log(
            logging.INFO,
            "Restored conversation",
            {"conversation_id": conversation.conversation_id},
            messages=len(conversation.messages),
        )
        if self._state.messages != conversation.messages:
            # 中断的在途消息已被标记为 error
            self._persist()

    def _persist(self) -> None:
        conversation = Conversation(conversation_id=self.conversation_id, messages=self.messages)
        try:
            self._storage.set_item(CHAT_STORAGE_KEY, encode_session(conversation))
        except BusinessError as exc:
            self._log(
                logging.WARNING,
                "Failed to save chat session",
                {"conversation_id": self.conversation_id},
                code=exc.code,
            )

    def _welcome(self) -> Message:
        return Message(
            id=WELCOME_MESSAGE_ID,
            role="system",
            content=self._welcome_text,
            timestamp=utc_now(),
            status="complete",
        )

    def _fresh_conversation_id(self, previous: str) -> str:
        conversation_id = self._new_id()
        while conversation_id == previous:
            conversation_id = self._new_id()
        return conversation_id

    def _dispatch(self, action: Action) -> None:
        new_state = reduce(self._state, action)
        if new_state is self._state:
            return
        self._state = new_state
        for listener in list(self._listeners):
            listener(new_state)

    @staticmethod
    def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
        payload = dict(log_ctx)
        payload.update(fields)
        logger.log(level, message, extra={"extra": payload})
