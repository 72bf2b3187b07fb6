"""Inference session manager: one streaming generation at a time.

A :class:`GenerationSession` runs the engine on a worker thread and hands
events to the caller through a queue: a :class:`TokenEvent` per accepted
piece of text, then exactly one :class:`StreamEnd`. Cancellation is a flag
checked before each piece is accepted, so a session cancelled after N
tokens keeps exactly those N.
"""

from __future__ import annotations

import itertools
import logging
import queue
import threading
from collections.abc import Callable, Iterator, Sequence
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Union

from sanctum.db.models import Citation, Message
from sanctum.errors import GUIDANCE, GenerationFailed, Outcome, SanctumError
from sanctum.hardware import ExecutionParameters
from sanctum.rag.engine import InferenceEngine
from sanctum.rag.output import RepetitionGuard, clean_response, split_at_control
from sanctum.rag.prompt import AssembledPrompt, RetrievedChunk, build_prompt

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    PROMPTING = "prompting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


_TERMINAL = frozenset([SessionState.COMPLETED, SessionState.CANCELLED, SessionState.FAILED])

_STATE_FOR_OUTCOME = {
    Outcome.COMPLETED: SessionState.COMPLETED,
    Outcome.EMPTY: SessionState.COMPLETED,
    Outcome.CANCELLED: SessionState.CANCELLED,
    Outcome.FAILED: SessionState.FAILED,
}


@dataclass(frozen=True)
class TokenEvent:
    session_id: int
    index: int  # 0-based position of this piece in the answer
    text: str
    accumulated_text: str


@dataclass(frozen=True)
class StreamEnd:
    session_id: int
    conversation_id: int | None
    outcome: Outcome
    text: str
    token_count: int
    citations: tuple[Citation, ...] = ()
    error: SanctumError | None = None
    persisted: bool = False

    @property
    def guidance(self) -> str | None:
        if self.error is not None:
            return self.error.suggestion
        return GUIDANCE.get(self.outcome)


SessionEvent = Union[TokenEvent, StreamEnd]

# Called on the worker thread before StreamEnd is published; may return a
# replacement StreamEnd (e.g. with citations attached).
FinishCallback = Callable[["GenerationSession", StreamEnd], Union[StreamEnd, None]]


class GenerationSession:
    """A single streaming answer. Create through :meth:`SessionManager.start`."""

    def __init__(
        self,
        session_id: int,
        engine: InferenceEngine,
        handle: Any,
        *,
        conversation_id: int | None = None,
        max_tokens: int = 1_024,
        on_finish: FinishCallback | None = None,
    ) -> None:
        self.id = session_id
        self.conversation_id = conversation_id
        self.prompt: AssembledPrompt | None = None
        self._engine = engine
        self._handle = handle
        self._max_tokens = max_tokens
        self._on_finish = on_finish
        self._state = SessionState.IDLE
        self._cancel = threading.Event()
        self._done = threading.Event()
        self._events: queue.Queue[SessionEvent] = queue.Queue()
        self._drained = False
        self._text = ""
        self._token_count = 0
        self._result: StreamEnd | None = None
        self._thread: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state not in _TERMINAL and self._state is not SessionState.IDLE

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    @property
    def accumulated_text(self) -> str:
        return self._text

    @property
    def token_count(self) -> int:
        return self._token_count

    @property
    def result(self) -> StreamEnd | None:
        return self._result

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def cancel(self) -> bool:
        """Request cancellation. Returns False when there is nothing to cancel."""
        if self._state in _TERMINAL or self._cancel.is_set():
            return False
        logger.debug("Cancelling session %d after %d token(s)", self.id, self._token_count)
        self._cancel.set()
        return True

    def wait(self, timeout: float | None = None) -> StreamEnd | None:
        """Block until the session ends; returns its StreamEnd (None on timeout)."""
        self._done.wait(timeout)
        return self._result

    def events(self) -> Iterator[SessionEvent]:
        """Yield token events then the StreamEnd. Single consumer.

        A second call after the stream was drained yields only the StreamEnd.
        """
        if self._drained:
            end = self.wait()
            if end is not None:
                yield end
            return
        while True:
            event = self._events.get()
            yield event
            if isinstance(event, StreamEnd):
                self._drained = True
                return

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _begin(self, prompt: AssembledPrompt) -> None:
        self.prompt = prompt
        self._state = SessionState.STREAMING
        self._thread = threading.Thread(
            target=self._run, name=f"sanctum-generation-{self.id}", daemon=True
        )
        self._thread.start()

    def _fail_before_start(self, error: SanctumError) -> None:
        self._publish(
            StreamEnd(self.id, self.conversation_id, Outcome.FAILED, "", 0, error=error)
        )

    def _run(self) -> None:
        assert self.prompt is not None
        guard = RepetitionGuard()
        error: SanctumError | None = None
        try:
            stream = self._engine.generate(
                self._handle,
                self.prompt.text,
                max_tokens=self._max_tokens,
                should_stop=self._cancel.is_set,
                messages=self.prompt.messages,
            )
            try:
                for piece in stream:
                    if self._cancel.is_set():
                        break
                    piece, hit_control = split_at_control(piece)
                    if piece:
                        self._accept(piece)
                    if hit_control:
                        break
                    if guard.looping(self._text):
                        logger.warning("Session %d stopped: output is repeating", self.id)
                        break
            finally:
                close = getattr(stream, "close", None)
                if close is not None:
                    close()
        except SanctumError as exc:
            logger.error("Generation failed: %s", exc)
            error = exc
        except Exception as exc:
            logger.exception("Generation failed in session %d", self.id)
            error = GenerationFailed(str(exc) or type(exc).__name__)

        text = clean_response(self._text)
        if error is not None:
            outcome = Outcome.FAILED
        elif self._cancel.is_set():
            outcome = Outcome.CANCELLED
            # a cancelled partial is exactly the tokens already delivered
            text = self._text
        elif not text:
            outcome = Outcome.EMPTY
        else:
            outcome = Outcome.COMPLETED

        end = StreamEnd(
            self.id, self.conversation_id, outcome, text, self._token_count, error=error
        )
        if self._on_finish is not None:
            try:
                end = self._on_finish(self, end) or end
            except SanctumError as exc:
                logger.error("Finishing session %d failed: %s", self.id, exc)
                end = replace(end, error=exc)
        self._publish(end)

    def _accept(self, piece: str) -> None:
        index = self._token_count
        self._text += piece
        self._token_count += 1
        self._events.put(TokenEvent(self.id, index, piece, self._text))

    def _publish(self, end: StreamEnd) -> None:
        self._result = end
        self._state = _STATE_FOR_OUTCOME[end.outcome]
        self._events.put(end)
        self._done.set()
        logger.info(
            "Session %d %s (%d token(s))", self.id, end.outcome.value, end.token_count
        )


@dataclass
class SessionManager:
    """Owns the engine and guarantees at most one active generation.

    Starting a new session cancels the active one and waits for it to
    finish (including its finish callback) before the new prompt is built.
    """

    engine: InferenceEngine
    max_tokens: int = 1_024
    join_timeout: float = 30.0
    _active: GenerationSession | None = field(default=None, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _ids: Iterator[int] = field(default_factory=lambda: itertools.count(1), init=False, repr=False)

    @property
    def active(self) -> GenerationSession | None:
        session = self._active
        return session if session is not None and session.is_active else None

    def cancel_active(self) -> StreamEnd | None:
        """Cancel the active session (if any) and wait for it to end."""
        session = self._active
        if session is None:
            return None
        session.cancel()
        end = session.wait(self.join_timeout)
        if end is None:
            raise GenerationFailed(
                "The previous answer did not stop in time.",
                suggestion="Wait a moment and try again.",
            )
        return end

    def start(
        self,
        question: str,
        history: Sequence[Message],
        chunks: Sequence[RetrievedChunk],
        *,
        handle: Any,
        params: ExecutionParameters,
        conversation_id: int | None = None,
        on_finish: FinishCallback | None = None,
    ) -> GenerationSession:
        with self._lock:
            self.cancel_active()
            session = GenerationSession(
                next(self._ids),
                self.engine,
                handle,
                conversation_id=conversation_id,
                max_tokens=self.max_tokens,
                on_finish=on_finish,
            )
            self._active = session
            session._state = SessionState.PROMPTING
            try:
                prompt = build_prompt(
                    question,
                    history,
                    chunks,
                    context_window=params.context_window,
                    reserve_tokens=self.max_tokens,
                )
            except ValueError as exc:
                session._fail_before_start(GenerationFailed(f"Could not build the prompt: {exc}"))
                return session
            session._begin(prompt)
            return session
