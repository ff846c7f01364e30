"""Signal-based execution event bus."""

from __future__ import annotations

import inspect
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from blinker import Signal

if TYPE_CHECKING:
    from .document import Document
    from .execution import ExecutionState

OutputHandler = Callable[[int, str], Awaitable[None] | None]
SettledHandler = Callable[[int, "ExecutionState", str | None], Awaitable[None] | None]
ThresholdHandler = Callable[[int, int], Awaitable[None] | None]
SaveHandler = Callable[["Document"], Awaitable[None] | None]


class ExecutionBus:
    """In-process host notification bus backed by blinker signals.

    Handlers may be plain functions or coroutine functions. Receivers of one
    signal run in subscription order and are awaited one after another.
    """

    def __init__(self) -> None:
        self._output_updated = Signal("chatbook.output_updated")
        self._settled = Signal("chatbook.settled")
        self._threshold_exceeded = Signal("chatbook.threshold_exceeded")
        self._save_requested = Signal("chatbook.save_requested")

    async def publish_output(self, entry_index: int, full_text: str) -> None:
        await self._output_updated.send_async(self, entry_index=entry_index, full_text=full_text)

    async def publish_settled(self, entry_index: int, state: ExecutionState, error: str | None) -> None:
        await self._settled.send_async(self, entry_index=entry_index, state=state, error=error)

    async def publish_threshold_exceeded(self, total_length: int, threshold: int) -> None:
        await self._threshold_exceeded.send_async(self, total_length=total_length, threshold=threshold)

    async def publish_save_requested(self, document: Document) -> None:
        await self._save_requested.send_async(self, document=document)

    def on_output_updated(self, handler: OutputHandler) -> Callable[[], None]:
        async def _receiver(sender: Any, *, entry_index: int, full_text: str) -> None:
            await call_handler(handler, entry_index, full_text)

        return self._connect(self._output_updated, _receiver)

    def on_settled(self, handler: SettledHandler) -> Callable[[], None]:
        async def _receiver(sender: Any, *, entry_index: int, state: ExecutionState, error: str | None) -> None:
            await call_handler(handler, entry_index, state, error)

        return self._connect(self._settled, _receiver)

    def on_threshold_exceeded(self, handler: ThresholdHandler) -> Callable[[], None]:
        async def _receiver(sender: Any, *, total_length: int, threshold: int) -> None:
            await call_handler(handler, total_length, threshold)

        return self._connect(self._threshold_exceeded, _receiver)

    def on_save_requested(self, handler: SaveHandler) -> Callable[[], None]:
        async def _receiver(sender: Any, *, document: Document) -> None:
            await call_handler(handler, document)

        return self._connect(self._save_requested, _receiver)

    @staticmethod
    def _connect(signal: Signal, receiver: Callable[..., Awaitable[None]]) -> Callable[[], None]:
        signal.connect(receiver, weak=False)
        return lambda: signal.disconnect(receiver)


async def call_handler(handler: Callable[..., Any], *args: Any) -> None:
    result = handler(*args)
    if inspect.isawaitable(result):
        await result
