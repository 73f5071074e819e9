"""Chat session lifecycle and streaming transcript state for one signed-in identity.

The manager is driven by discrete events on a single event loop:
identity changes, user submissions and stream chunks. Each event mutates the
transcript without awaiting in between, so events apply in arrival order.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Literal, Protocol
from uuid import UUID, uuid4

import httpx

from finnova.ai.gemini_client import GeminiError
from finnova.ai.prompt import (
    ACKNOWLEDGMENT,
    CONNECTION_ERROR_TEXT,
    build_seed_instruction,
    build_welcome_message,
)
from finnova.identity import Identity
from finnova.summary import FinancialSummary, OwnerRecordSource, build_summary

logger = logging.getLogger(__name__)

Role = Literal["user", "assistant"]


class ChatStatus(str, enum.Enum):
    NO_SESSION = "no_session"
    INITIALIZING = "initializing"
    READY = "ready"
    SENDING = "sending"


class CompletionProvider(Protocol):
    def start_chat(self, seed_instruction: str, acknowledgment: str) -> Any:
        ...

    def stream_message(self, session: Any, text: str) -> AsyncIterator[str]:
        ...


def new_message_id() -> str:
    return uuid4().hex


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Message:
    role: Role
    text: str
    id: str = field(default_factory=new_message_id)
    created_at: datetime = field(default_factory=_now)
    streaming: bool = False

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data


def apply_chunk(messages: list[Message], message_id: str, chunk: str) -> list[Message]:
    """Return a new transcript with `chunk` appended to the text of `message_id`."""
    return [
        replace(message, text=message.text + chunk) if message.id == message_id else message
        for message in messages
    ]


def finalize_message(messages: list[Message], message_id: str) -> list[Message]:
    """Return a new transcript with `message_id` no longer streaming."""
    return [
        replace(message, streaming=False) if message.id == message_id else message
        for message in messages
    ]


@dataclass(frozen=True)
class PendingSend:
    """A send accepted by `start_send` whose reply has not been streamed yet."""

    text: str
    placeholder_id: str
    generation: int
    session: Any


Listener = Callable[["ChatSessionManager"], None]


class ChatSessionManager:
    """
    Owns one conversation for the current identity.

    `generation` increases whenever the identity changes. Initialization and
    streams remember the generation they started under and drop their results
    once it has moved on, so an old stream never writes into a new transcript.
    """

    def __init__(self, store: OwnerRecordSource, provider: CompletionProvider) -> None:
        self._store = store
        self._provider = provider
        self._listeners: list[Listener] = []

        self.identity: Identity | None = None
        self.summary: FinancialSummary | None = None
        self.session: Any = None
        self.messages: list[Message] = []
        self.status = ChatStatus.NO_SESSION
        self.generation = 0

    @property
    def is_ready(self) -> bool:
        return self.status is ChatStatus.READY and self.session is not None

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    def snapshot(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "messages": [message.to_dict() for message in self.messages],
        }

    def _reset(self, identity: Identity | None, status: ChatStatus) -> None:
        self.generation += 1
        self.identity = identity
        self.summary = None
        self.session = None
        self.messages = []
        self.status = status
        self._notify()

    def close(self) -> None:
        """Drop the identity, session and transcript."""
        if self.identity is not None or self.messages or self.session is not None:
            self._reset(None, ChatStatus.NO_SESSION)

    async def set_identity(self, identity: Identity | None) -> None:
        """Apply an identity change: present, absent, or a different caller."""
        if identity is None:
            self.close()
            return

        same_identity = self.identity is not None and self.identity.id == identity.id
        if same_identity and (self.session is not None or self.status is ChatStatus.INITIALIZING):
            return

        self._reset(identity, ChatStatus.INITIALIZING)
        await self._initialize(self.generation, identity)

    async def _initialize(self, generation: int, identity: Identity) -> None:
        try:
            summary = await build_summary(self._store, identity.id)
            session = self._provider.start_chat(build_seed_instruction(summary), ACKNOWLEDGMENT)
        except Exception:
            if generation == self.generation:
                logger.exception("Chat init failed for %s", identity.id)
                self.status = ChatStatus.NO_SESSION
                self._notify()
            return

        if generation != self.generation:
            logger.debug("Discarding superseded chat init for %s", identity.id)
            return

        self.summary = summary
        self.session = session
        self.messages = [
            *self.messages,
            Message(role="assistant", text=build_welcome_message(summary)),
        ]
        self.status = ChatStatus.READY
        self._notify()

    def start_send(self, text: str) -> PendingSend | None:
        """
        Append the user turn and a streaming placeholder, and mark the session sending.

        Returns None without touching state when the text is blank, there is no
        session, or another send is still in flight. Nothing is awaited, so the
        readiness check and the switch to sending cannot interleave with another send.
        """
        if not text or not text.strip():
            return None
        if not self.is_ready:
            return None

        pending = PendingSend(
            text=text,
            placeholder_id=new_message_id(),
            generation=self.generation,
            session=self.session,
        )
        placeholder = Message(role="assistant", text="", id=pending.placeholder_id, streaming=True)

        self.messages = [*self.messages, Message(role="user", text=text), placeholder]
        self.status = ChatStatus.SENDING
        self._notify()
        return pending

    async def stream_reply(self, pending: PendingSend) -> None:
        """Stream the reply for a send begun by `start_send` into its placeholder."""
        generation = pending.generation

        try:
            async with aclosing(self._provider.stream_message(pending.session, pending.text)) as stream:
                async for chunk in stream:
                    if generation != self.generation:
                        logger.debug("Dropping stale stream for generation %s", generation)
                        return
                    self.messages = apply_chunk(self.messages, pending.placeholder_id, chunk)
                    self._notify()
        except (GeminiError, httpx.HTTPError) as exc:
            if generation != self.generation:
                return
            logger.warning("Chat stream failed for %s: %s", session_owner(self), exc)
            # Partial text stays; the placeholder must not keep streaming=True.
            self.messages = [
                *finalize_message(self.messages, pending.placeholder_id),
                Message(role="assistant", text=CONNECTION_ERROR_TEXT),
            ]
            self.status = ChatStatus.READY
            self._notify()
            return
        except BaseException:
            # Unexpected errors propagate, but must not leave the session stuck sending.
            if generation == self.generation:
                self._finish_send(pending.placeholder_id)
            raise

        if generation == self.generation:
            self._finish_send(pending.placeholder_id)

    async def submit(self, text: str) -> bool:
        """
        Send one user turn and stream the reply into the transcript.

        Returns False when `start_send` rejects the turn. Provider failures are
        reported inline as an assistant message and still return True.
        """
        pending = self.start_send(text)
        if pending is None:
            return False

        await self.stream_reply(pending)
        return True

    def _finish_send(self, placeholder_id: str) -> None:
        self.messages = finalize_message(self.messages, placeholder_id)
        self.status = ChatStatus.READY
        self._notify()


def session_owner(manager: ChatSessionManager) -> UUID | None:
    return manager.identity.id if manager.identity else None
