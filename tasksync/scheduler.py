"""Cancellable repeating timers for auto-sync.

Arming a timer returns a ticket; cancelling the ticket stops future ticks
but never interrupts a callback that is already running.
``AsyncioScheduler`` runs real timers on the event loop, ``ManualScheduler``
fires callbacks only when ``advance()`` is called.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

TickCallback = Callable[[], Awaitable[None]]


class Ticket(ABC):
    """Handle for an armed repeating timer."""

    @abstractmethod
    def cancel(self) -> None:
        """Stop the timer. Cancelling twice is harmless."""

    @property
    @abstractmethod
    def cancelled(self) -> bool: ...


class Scheduler(ABC):
    """Arms repeating timers."""

    @abstractmethod
    def schedule_repeating(self, interval: float, callback: TickCallback) -> Ticket:
        """Call ``callback`` every ``interval`` seconds until cancelled."""


class _TaskTicket(Ticket):
    """Ticket for a timer task.

    Cancelling interrupts the task only while it sleeps between ticks. A
    callback that is already running is left to finish, after which the
    loop exits.
    """

    def __init__(self) -> None:
        self.task: Optional["asyncio.Task[None]"] = None
        self.sleeping = False
        self._cancelled = False

    def cancel(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        if self.task is not None and self.sleeping and not self.task.done():
            self.task.cancel()

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class AsyncioScheduler(Scheduler):
    """Runs repeating timers as tasks on the running event loop."""

    def schedule_repeating(self, interval: float, callback: TickCallback) -> Ticket:
        if interval <= 0:
            raise ValueError(f"Timer interval must be positive, got {interval}")
        ticket = _TaskTicket()
        ticket.task = asyncio.get_running_loop().create_task(
            self._run(ticket, interval, callback)
        )
        return ticket

    async def _run(
        self, ticket: _TaskTicket, interval: float, callback: TickCallback
    ) -> None:
        while not ticket.cancelled:
            ticket.sleeping = True
            try:
                await asyncio.sleep(interval)
            finally:
                ticket.sleeping = False
            if ticket.cancelled:
                break
            try:
                await callback()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Scheduled callback failed")


class _ManualTicket(Ticket):
    def __init__(self, scheduler: "ManualScheduler", interval: float, callback: TickCallback):
        self.scheduler = scheduler
        self.interval = interval
        self.callback = callback
        self.next_due = scheduler.now + interval
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class ManualScheduler(Scheduler):
    """Scheduler driven by explicit ``advance()`` calls, for tests."""

    def __init__(self) -> None:
        self.now = 0.0
        self._tickets: list[_ManualTicket] = []

    def schedule_repeating(self, interval: float, callback: TickCallback) -> Ticket:
        if interval <= 0:
            raise ValueError(f"Timer interval must be positive, got {interval}")
        ticket = _ManualTicket(self, interval, callback)
        self._tickets.append(ticket)
        return ticket

    @property
    def active_tickets(self) -> list[Ticket]:
        return [t for t in self._tickets if not t.cancelled]

    async def advance(self, seconds: float) -> int:
        """Move the clock forward, firing every timer that comes due.

        Returns:
            Number of callbacks fired
        """
        target = self.now + seconds
        fired = 0
        while True:
            due: Optional[_ManualTicket] = None
            for ticket in self._tickets:
                if ticket.cancelled or ticket.next_due > target:
                    continue
                if due is None or ticket.next_due < due.next_due:
                    due = ticket
            if due is None:
                break
            self.now = due.next_due
            due.next_due += due.interval
            await due.callback()
            fired += 1
        self.now = target
        return fired
