"""Per-entry streaming execution lifecycle."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Generator, Iterable
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any, TypeVar

from loguru import logger

from .advisory import ThresholdAdvisory, check_threshold
from .bus import ExecutionBus, call_handler
from .config import ExecutionConfig
from .document import Document, Entry, Output
from .errors import (
    CancellationError,
    DecodeError,
    InvalidIndexError,
    MissingCredentialsError,
    SessionAlreadyRunningError,
    TransportError,
)
from .logging_utils import bind_entry
from .stream import EventStreamDecoder
from .transcript import build_messages
from .transport import CompletionStream, CompletionTransport, build_payload, connectivity_message

T = TypeVar("T")

MISSING_CREDENTIALS_ERROR = "API key not set. Please set your API key."

AutosaveHook = Callable[[Document], Awaitable[None] | None]


class ExecutionState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABORTED = "aborted"

    @property
    def terminal(self) -> bool:
        return self in (ExecutionState.SUCCEEDED, ExecutionState.FAILED, ExecutionState.ABORTED)


class CancellationToken:
    """Cooperative cancellation flag that can interrupt pending awaits."""

    def __init__(self) -> None:
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise CancellationError("execution cancelled")

    async def guard(self, operation: Awaitable[T]) -> T:
        """Await the operation unless the token fires first.

        When cancellation wins, the pending operation is cancelled and
        ``CancellationError`` is raised.
        """
        if self.cancelled:
            if asyncio.iscoroutine(operation):
                operation.close()
            raise CancellationError("execution cancelled")

        fut = asyncio.ensure_future(operation)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            await asyncio.wait({fut, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            fut.cancel()
            raise
        finally:
            waiter.cancel()

        if fut.done():
            return fut.result()

        fut.cancel()
        await asyncio.wait({fut})
        if not fut.cancelled():
            # The operation may fail while being torn down; the cancel takes precedence.
            fut.exception()
        raise CancellationError("execution cancelled")


@dataclass
class ExecutionSession:
    """Runtime state of one execution against one entry."""

    entry_index: int
    entry: Entry
    model: str
    token: CancellationToken = field(default_factory=CancellationToken)
    state: ExecutionState = ExecutionState.IDLE
    text: str = ""
    error: str | None = None
    publishes: int = 0

    def append(self, delta: str) -> str:
        self.text += delta
        self.publishes += 1
        return self.text

    def fail(self, message: str) -> None:
        self.state = ExecutionState.FAILED
        self.error = message


class ExecutionHandle:
    """Host-facing view of one session."""

    def __init__(self, session: ExecutionSession, task: asyncio.Task[None]) -> None:
        self._session = session
        self._task = task

    @property
    def session(self) -> ExecutionSession:
        return self._session

    @property
    def entry_index(self) -> int:
        return self._session.entry_index

    @property
    def state(self) -> ExecutionState:
        return self._session.state

    @property
    def error(self) -> str | None:
        return self._session.error

    @property
    def output(self) -> str:
        return self._session.text

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> bool:
        """Request cancellation. Returns False when the session already settled."""
        if self._session.state.terminal or self._task.done():
            return False
        if not self._session.token.cancelled:
            logger.info("execution.cancel entry={}", self.entry_index)
        self._session.token.cancel()
        return True

    async def wait(self) -> ExecutionState:
        await self._task
        return self._session.state

    def __await__(self) -> Generator[Any, None, ExecutionState]:
        return self.wait().__await__()

    def __repr__(self) -> str:
        return f"ExecutionHandle(entry_index={self.entry_index}, state={self.state.value})"


class ExecutionController:
    """Run entries of a document against a streaming completion service."""

    def __init__(
        self,
        transport: CompletionTransport,
        bus: ExecutionBus | None = None,
        *,
        config: ExecutionConfig | None = None,
        autosave: AutosaveHook | None = None,
    ) -> None:
        self.transport = transport
        self.bus = bus or ExecutionBus()
        self.config = config or ExecutionConfig()
        self._autosave = autosave
        # Keyed by entry identity so reordering the document does not confuse sessions.
        self._sessions: dict[int, ExecutionHandle] = {}

    def running(self, entry: Entry) -> ExecutionHandle | None:
        return self._sessions.get(id(entry))

    @property
    def handles(self) -> list[ExecutionHandle]:
        return list(self._sessions.values())

    def start(
        self,
        document: Document,
        target_index: int,
        credentials: str | None,
        model: str | None = None,
        *,
        config: ExecutionConfig | None = None,
    ) -> ExecutionHandle:
        """Start executing one entry and return its handle.

        Raises:
            InvalidIndexError: ``target_index`` is outside the document.
            MissingCredentialsError: no API key was given.
            SessionAlreadyRunningError: the entry is already executing.
        """
        config = config or self.config
        loop = asyncio.get_running_loop()
        self._validate(document, [target_index], credentials)
        entry = document[target_index]

        session = ExecutionSession(
            entry_index=target_index,
            entry=entry,
            model=model or config.selected_model,
            state=ExecutionState.RUNNING,
        )
        entry.output = Output("")
        messages = build_messages(document, target_index)
        payload = build_payload(messages, session.model)

        task = loop.create_task(
            self._run(session, document, payload, credentials or "", config),
            name=f"chatbook-entry-{target_index}",
        )
        handle = ExecutionHandle(session, task)
        self._sessions[id(entry)] = handle
        return handle

    start_execution = start

    def cancel(self, handle: ExecutionHandle) -> bool:
        return handle.cancel()

    async def execute(
        self,
        document: Document,
        indices: Iterable[int],
        credentials: str | None,
        model: str | None = None,
        *,
        config: ExecutionConfig | None = None,
    ) -> list[ExecutionHandle]:
        """Start a batch of entries, then run the size advisory once."""
        config = config or self.config
        targets = list(dict.fromkeys(indices))
        self._validate(document, targets, credentials)
        advisory = check_threshold(document, config.character_threshold)

        handles = [self.start(document, index, credentials, model, config=config) for index in targets]
        await self._advise(advisory)
        return handles

    async def aclose(self) -> None:
        """Cancel every running session and wait for them to settle."""
        handles = self.handles
        for handle in handles:
            handle.cancel()
        for handle in handles:
            await handle.wait()

    def _validate(self, document: Document, indices: list[int], credentials: str | None) -> None:
        for index in indices:
            if not document.has_index(index):
                raise InvalidIndexError(index, len(document))
        if not credentials or not credentials.strip():
            raise MissingCredentialsError(MISSING_CREDENTIALS_ERROR)
        for index in indices:
            if id(document[index]) in self._sessions:
                raise SessionAlreadyRunningError(index)

    async def _advise(self, advisory: ThresholdAdvisory | None) -> None:
        if advisory is None:
            return
        logger.warning("advisory.threshold total={} threshold={}", advisory.total_length, advisory.threshold)
        await self.bus.publish_threshold_exceeded(advisory.total_length, advisory.threshold)

    async def _run(
        self,
        session: ExecutionSession,
        document: Document,
        payload: dict[str, Any],
        credentials: str,
        config: ExecutionConfig,
    ) -> None:
        bind_entry(session.entry_index)
        logger.info("execution.start model={} messages={}", session.model, len(payload["messages"]))
        stream: CompletionStream | None = None
        try:
            await self.bus.publish_output(session.entry_index, "")
            stream = await session.token.guard(self.transport.open(payload, credentials))
            if stream is None:
                raise TransportError(connectivity_message("response has no body"))
            await self._consume(session, stream)
            session.state = ExecutionState.SUCCEEDED
        except CancellationError:
            session.state = ExecutionState.ABORTED
        except (TransportError, DecodeError) as exc:
            session.fail(str(exc))
        except Exception as exc:
            logger.exception("execution.error")
            session.fail(connectivity_message(exc))
        finally:
            if stream is not None:
                await _close_stream(stream)
            self._release(session)

        logger.info(
            "execution.settled state={} chars={} publishes={} error={}",
            session.state.value,
            len(session.text),
            session.publishes,
            session.error,
        )
        await self._notify_settled(session)
        if session.state is not ExecutionState.FAILED:
            await self._request_save(document, config)

    async def _consume(self, session: ExecutionSession, stream: CompletionStream) -> None:
        decoder = EventStreamDecoder()
        while not decoder.done:
            session.token.raise_if_cancelled()
            chunk = await session.token.guard(stream.read())
            if not chunk:
                break
            for delta in decoder.decode(chunk):
                await self._publish(session, delta)
        for delta in decoder.flush():
            await self._publish(session, delta)

    async def _publish(self, session: ExecutionSession, delta: str) -> None:
        logger.debug("execution.delta chars={}", len(delta))
        text = session.append(delta)
        session.entry.output = Output(text)
        await self.bus.publish_output(session.entry_index, text)

    async def _notify_settled(self, session: ExecutionSession) -> None:
        try:
            await self.bus.publish_settled(session.entry_index, session.state, session.error)
        except Exception:
            logger.exception("execution.settled_handler.error")

    async def _request_save(self, document: Document, config: ExecutionConfig) -> None:
        if not config.auto_save:
            return
        try:
            await self.bus.publish_save_requested(document)
            if self._autosave is not None:
                await call_handler(self._autosave, document)
        except Exception:
            logger.exception("execution.autosave.error")

    def _release(self, session: ExecutionSession) -> None:
        key = id(session.entry)
        handle = self._sessions.get(key)
        if handle is not None and handle.session is session:
            del self._sessions[key]


async def _close_stream(stream: CompletionStream) -> None:
    try:
        await stream.aclose()
    except Exception:
        logger.opt(exception=True).debug("execution.stream_close.error")
