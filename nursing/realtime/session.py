"""
Asyncio driver for one flash card.

The session owns the card's clock: a short entering delay, one tick per
``tick_seconds`` while the countdown runs, the hold after an accepted
offer and the exit transition before ``on_close`` fires.  ``sleep`` is
injectable so tests can step the clock by hand.

Offer submission runs in its own task, so status changes pushed while
the caregiver's position is being looked up or the offer is being
written are still applied to the card as they arrive.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from nursing.errors import OfferError, RequestNotLive
from nursing.realtime.card import ACCEPTED, COMPLETED, MANUAL, CardBoundary, FlashCard
from nursing.services.geolocation import Position

logger = logging.getLogger(__name__)

Send = Callable[[dict], Awaitable[None]]
Submit = Callable[[int, int, Optional[str], Optional[Position]], Awaitable[Any]]


class FlashCardSession:
    def __init__(self, card: FlashCard, *, send: Send, submit: Submit,
                 locate: Optional[Callable[[], Awaitable[Optional[Position]]]] = None,
                 on_accepted: Optional[Callable[[Any], Awaitable[None]]] = None,
                 on_close: Optional[Callable[[str], Awaitable[None]]] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
                 tick_seconds: float = 1.0, enter_seconds: float = 0.05,
                 exit_seconds: float = 0.3, accepted_hold_seconds: float = 2.0):
        self.card = card
        self.boundary = CardBoundary(card, self._on_crash)
        self._send = send
        self._submit = submit
        self._locate = locate
        self._on_accepted = on_accepted
        self._on_close = on_close
        self._sleep = sleep
        self.tick_seconds = tick_seconds
        self.enter_seconds = enter_seconds
        self.exit_seconds = exit_seconds
        self.accepted_hold_seconds = accepted_hold_seconds
        self._tasks: set[asyncio.Task] = set()
        self._closing = False
        self.closed = asyncio.Event()

    async def start(self) -> None:
        await self._render()
        if self.card.closed:
            await self._close()
            return
        self._spawn(self._run_clock())

    async def stop(self) -> None:
        """Tear down without the exit transition (connection went away)."""
        self._closing = True
        await self._cancel_tasks()
        self.closed.set()

    async def accept(self) -> None:
        await self._step(self.card.accept)

    async def cancel(self) -> None:
        await self._step(self.card.cancel_offer)

    async def dismiss(self) -> None:
        await self._step(self.card.dismiss, MANUAL)

    async def request_changed(self, row: Optional[dict]) -> None:
        await self._step(self.card.request_changed, row)

    async def offer(self, price: Any = None, eta_minutes: Any = None, message: Optional[str] = None) -> None:
        values = await self._step(self.card.confirm, price, eta_minutes, message)
        if values:
            self._spawn(self._submit_offer(*values))

    async def _run_clock(self) -> None:
        await self._sleep(self.enter_seconds)
        await self._step(self.card.entered)
        while not self._closing:
            await self._sleep(self.tick_seconds)
            if self._closing:
                break
            if self.card.counting:
                await self._step(self.card.tick)

    async def _submit_offer(self, price: int, eta_minutes: int, message: Optional[str]) -> None:
        position = await self._locate() if self._locate is not None else None
        try:
            result = await self._submit(price, eta_minutes, message, position)
        except OfferError as e:
            await self._step(self.card.submission_failed, e.message, isinstance(e, RequestNotLive))
            return
        except Exception:
            logger.exception("offer submission failed for request %s", self.card.request_id)
            await self._step(self.card.submission_failed, OfferError.default_message)
            return

        await self._step(self.card.submission_succeeded)
        if self.card.state != ACCEPTED:
            return
        await self._sleep(self.accepted_hold_seconds)
        if self._on_accepted is not None:
            await self._on_accepted(result)
        await self._step(self.card.dismiss, COMPLETED)

    async def _step(self, fn: Callable, *args):
        result = self.boundary.run(fn, *args)
        await self._render()
        if self.card.closed:
            await self._close()
        return result

    async def _render(self) -> None:
        if self._closing:
            return
        await self._send({'type': 'card', 'card': self.boundary.render()})

    def _on_crash(self) -> None:
        logger.warning("flash card for request %s crashed, dismissing", self.card.request_id)

    async def _close(self) -> None:
        if self._closing:
            return
        self._closing = True
        await self._sleep(self.exit_seconds)
        if self._on_close is not None:
            await self._on_close(self.card.dismiss_reason or MANUAL)
        self.closed.set()
        await self._cancel_tasks()

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("flash card task failed for request %s", self.card.request_id,
                         exc_info=task.exception())

    async def _cancel_tasks(self) -> None:
        current = asyncio.current_task()
        others = [t for t in self._tasks if t is not current]
        for t in others:
            t.cancel()
        if others:
            await asyncio.gather(*others, return_exceptions=True)
