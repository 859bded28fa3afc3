"""
Signal subscriptions for the relay's event loop.

Each handled signal gets its own SignalSubscription, an awaitable source of
deliveries the supervisor can wait on next to the pipes and the child. The
handlers run on the event loop (``loop.add_signal_handler``), never in
signal context, so a delivery is just a queue put.

Usage:
    with SignalCoordinator(lg, RotateSignal.SIGHUP) as signals:
        signum = await signals.rotate.recv()
"""

from __future__ import annotations

import asyncio
import signal

from .config import TERMINAL_SIGNALS, RotateSignal
from .log import Logger


class SignalSubscription:
    """A live registration for one signal, yielding its deliveries in order."""

    def __init__(self, signum: signal.Signals) -> None:
        self.signum = signum
        self._deliveries: asyncio.Queue[signal.Signals] = asyncio.Queue()

    @property
    def name(self) -> str:
        return self.signum.name

    def deliver(self) -> None:
        """Record one delivery. Called from the event loop."""
        self._deliveries.put_nowait(self.signum)

    def pending(self) -> int:
        """Number of deliveries not yet received."""
        return self._deliveries.qsize()

    async def recv(self) -> signal.Signals:
        """Wait for the next delivery."""
        return await self._deliveries.get()


class SignalCoordinator:
    """
    Subscribes to the rotate signal and the terminal signals.

    The rotate signal is handled by the relay itself (both sinks are
    reopened). Terminal signals are relayed to the child; the wrapper keeps
    running until the child actually exits.

    Must be entered while the event loop is running, from the main thread.
    """

    def __init__(
        self,
        lg: Logger,
        rotate_signal: RotateSignal = RotateSignal.SIGHUP,
        terminal_signals: tuple[signal.Signals, ...] = TERMINAL_SIGNALS,
    ) -> None:
        self._lg = lg
        self.rotate = SignalSubscription(rotate_signal.signum)
        self.terminal = tuple(SignalSubscription(s) for s in terminal_signals)
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def subscriptions(self) -> tuple[SignalSubscription, ...]:
        return (self.rotate, *self.terminal)

    def __enter__(self) -> SignalCoordinator:
        """Install loop signal handlers for every subscription."""
        self._loop = asyncio.get_running_loop()
        for sub in self.subscriptions:
            self._loop.add_signal_handler(sub.signum, self._on_signal, sub)
        self._lg.debug(
            "signal handlers installed",
            extra={
                "rotate": self.rotate.name,
                "forward": [s.name for s in self.terminal],
            },
        )
        return self

    def __exit__(self, *args: object) -> None:
        """Remove the handlers, restoring default dispositions."""
        if self._loop is None:
            return
        for sub in self.subscriptions:
            try:
                self._loop.remove_signal_handler(sub.signum)
            except (RuntimeError, ValueError) as e:
                self._lg.warning(
                    "failed to remove signal handler",
                    extra={"signal": sub.name, "error": e},
                )
        self._loop = None

    def _on_signal(self, sub: SignalSubscription) -> None:
        self._lg.debug("received signal", extra={"signal": sub.name})
        sub.deliver()
