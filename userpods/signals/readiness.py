"""Single-resolution, timeout-bounded boolean signal.

A :class:`ReadinessSignal` is resolved at most once. The first value passed
to :meth:`ReadinessSignal.send` wins and every later ``send`` is discarded,
so a real cluster event and the timeout timer can race to resolve the same
signal without either caller seeing a different answer.

Lifecycle::

    signal = ReadinessSignal(timeout_s=90.0)   # timer starts now
    ...                                        # some task calls signal.send(True)
    ready = await signal.receive()             # True, or False after 90 s

The signal must be created and resolved on the event loop that awaits it.
"""

from __future__ import annotations

import asyncio
import time

from userpods.observability.logging import get_logger
from userpods.observability.metrics import signal_resolutions_total

_log = get_logger("signals.readiness")


class ReadinessSignal:
    """One-shot boolean future that resolves ``False`` on its own after a timeout."""

    def __init__(self, timeout_s: float, name: str = "") -> None:
        """Create the signal and start its timeout timer.

        Args:
            timeout_s: Seconds after which the signal resolves ``False`` if
                nothing else resolved it first.
            name: Optional label used in log lines.

        Raises:
            RuntimeError: if called outside a running event loop.
        """
        loop = asyncio.get_running_loop()
        self._name = name
        self._timeout_s = timeout_s
        self._created_at = time.monotonic()
        self._resolved = asyncio.Event()
        self._value: bool | None = None
        self._timed_out = False
        self._timer: asyncio.TimerHandle | None = loop.call_later(timeout_s, self.expire)

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def send(self, value: bool) -> bool:
        """Resolve the signal with ``value`` unless it is already resolved.

        Never blocks. Returns True if this call recorded the value.
        """
        if self._value is not None:
            return False
        self._value = bool(value)
        self._resolved.set()
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        outcome = "timeout" if self._timed_out else str(self._value).lower()
        signal_resolutions_total.labels(outcome=outcome).inc()
        _log.debug(
            "signal_resolved",
            signal=self._name,
            value=self._value,
            timed_out=self._timed_out,
            elapsed_s=round(time.monotonic() - self._created_at, 3),
        )
        return True

    async def receive(self) -> bool:
        """Wait until the signal is resolved and return its value.

        Returns immediately once resolved; every caller sees the same value.
        """
        await self._resolved.wait()
        assert self._value is not None
        return self._value

    @property
    def resolved(self) -> bool:
        return self._value is not None

    @property
    def value(self) -> bool | None:
        """The resolved value, or None while unresolved."""
        return self._value

    @property
    def timed_out(self) -> bool:
        """True if the timeout timer, not a real observation, resolved the signal."""
        return self._timed_out

    @property
    def timeout_s(self) -> float:
        return self._timeout_s

    @property
    def name(self) -> str:
        return self._name

    def expire(self) -> None:
        """Resolve ``False`` as a timeout, exactly as the timer does. No-op once resolved."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._value is None:
            self._timed_out = True
            self.send(False)

    def __repr__(self) -> str:
        state = "pending" if self._value is None else str(self._value)
        return f"ReadinessSignal(name={self._name!r}, timeout_s={self._timeout_s}, state={state})"
