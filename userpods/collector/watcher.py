"""Timeout-bounded watch session on a single named resource.

A :class:`WatchSession` wires one :class:`WatchTarget` to a
:class:`ReadinessSignal`:

- Lists the named resource first (field selector ``metadata.name``) so the
  stream resumes from a known resourceVersion and setup failures surface
  immediately instead of as a silent timeout.
- Streams events through the classifier for the target's kind and
  condition; the first match resolves the signal ``True`` and stops the
  stream.
- Reopens the stream after a short back-off when it ends or fails,
  re-listing on 410 Gone, until the target's timeout force-stops it.
- Never observes a failure as ``False``: apart from setup errors the only
  ``False`` is the timeout, applied through :meth:`ReadinessSignal.expire`.
"""

from __future__ import annotations

import asyncio
import contextlib
import time
from typing import Any

from kubernetes_asyncio import watch
from kubernetes_asyncio.client.exceptions import ApiException

from userpods.collector.classifiers import Classifier, classifier_for
from userpods.errors import UnsupportedResourceKindError, WatchSetupError
from userpods.k8s.client import ClusterClient
from userpods.models.resources import WatchTarget
from userpods.observability.logging import get_logger
from userpods.observability.metrics import (
    watch_backoff_seconds,
    watch_errors_total,
    watch_events_total,
    watch_sessions_total,
)
from userpods.signals.readiness import ReadinessSignal

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_BACKOFF_MIN_S: float = 0.5
_BACKOFF_MAX_S: float = 5.0
_BACKOFF_MULTIPLIER: float = 2.0

# Server-side stream timeout; the stream is reopened when it elapses.
_MAX_STREAM_SECONDS: int = 60


class WatchSession:
    """Watches one named resource until its awaited condition or the timeout.

    Lifecycle::

        session = WatchSession(cluster, WatchTarget(ResourceKind.POD, "alice-pod", 90.0))
        await session.start()            # raises on setup failure, signal already False
        ready = await session.signal.receive()
        await session.stop()             # idempotent cleanup
    """

    def __init__(self, cluster: ClusterClient, target: WatchTarget) -> None:
        """Create the session and its signal; the signal's timer starts now.

        Must be called from a running event loop.
        """
        self._cluster = cluster
        self._target = target
        self._name = f"{target.kind}/{target.name}"
        self._log = get_logger("watch.session").bind(
            kind=str(target.kind), resource=target.name, condition=str(target.condition)
        )
        self.signal = ReadinessSignal(target.timeout_s, name=f"{self._name}:{target.condition}")

        self._resource_version: str = ""
        self._task: asyncio.Task[None] | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._started_at: float = 0.0
        self._backoff_s: float = _BACKOFF_MIN_S
        self._outcome_recorded = False

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    @property
    def target(self) -> WatchTarget:
        return self._target

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> ReadinessSignal:
        """Open the subscription and start consuming events in the background.

        Returns the session's signal.

        Raises:
            UnsupportedResourceKindError: no classifier or list endpoint for
                the target; the signal is resolved ``False`` first.
            WatchSetupError: the initial list call failed; the signal is
                resolved ``False`` first.
        """
        if self._task is not None or self.signal.resolved:
            return self.signal

        self._started_at = time.monotonic()
        try:
            classifier = classifier_for(self._target.kind, self._target.condition)
            list_func, args = self._cluster.list_call(self._target.kind)
        except UnsupportedResourceKindError:
            self.signal.send(False)
            self._record_outcome("unsupported")
            self._log.error("watch_unsupported_kind")
            raise

        try:
            initial = await list_func(*args, field_selector=self._field_selector)
        except Exception as exc:
            self.signal.send(False)
            self._record_outcome("setup_failed")
            self._log.error("watch_setup_failed", error=str(exc))
            raise WatchSetupError(str(self._target.kind), self._target.name, exc) from exc

        self._resource_version = _list_resource_version(initial)
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self._target.timeout_s, self._expire)
        self._task = asyncio.create_task(self._watch_loop(classifier), name=f"watch-{self._name}")
        self._log.debug("watch_session_started", resource_version=self._resource_version)
        return self.signal

    async def wait(self) -> bool:
        """Wait for the session's outcome."""
        return await self.signal.receive()

    async def stop(self) -> None:
        """Stop the stream and the force-stop timer; the signal is left untouched."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task

    # ------------------------------------------------------------------
    # Internal watch loop
    # ------------------------------------------------------------------

    @property
    def _field_selector(self) -> str:
        return f"metadata.name={self._target.name}"

    async def _watch_loop(self, classifier: Classifier) -> None:
        """Run watch streams until the condition is observed or the task is cancelled."""
        try:
            while not self.signal.resolved:
                try:
                    if await self._run_watch(classifier):
                        return
                except asyncio.CancelledError:
                    raise
                except ApiException as exc:
                    watch_errors_total.labels(kind=str(self._target.kind), reason=str(exc.status)).inc()
                    if exc.status == 410:
                        self._log.warning("watch_gone_410")
                        await self._relist()
                    else:
                        self._log.warning("watch_api_error", status=exc.status, reason=exc.reason)
                except Exception as exc:
                    watch_errors_total.labels(kind=str(self._target.kind), reason="unexpected").inc()
                    self._log.warning("watch_stream_error", error=str(exc))
                if self.signal.resolved:
                    return
                await self._backoff()
        finally:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None
            self._record_outcome(self._outcome())

    async def _run_watch(self, classifier: Classifier) -> bool:
        """Consume one watch stream. Returns True once the classifier matched."""
        list_func, args = self._cluster.list_call(self._target.kind)
        kwargs: dict[str, Any] = {
            "field_selector": self._field_selector,
            "timeout_seconds": _MAX_STREAM_SECONDS,
        }
        if self._resource_version:
            kwargs["resource_version"] = self._resource_version

        w = watch.Watch()
        try:
            async for raw_event in w.stream(list_func, *args, **kwargs):
                event_type: str = raw_event.get("type", "")
                obj = raw_event.get("object")
                raw = raw_event.get("raw_object", {})
                if not isinstance(raw, dict):
                    raw = {}

                new_rv = _event_resource_version(obj, raw)
                if new_rv:
                    self._resource_version = new_rv

                watch_events_total.labels(kind=str(self._target.kind), event_type=event_type).inc()
                if classifier(event_type, obj, raw):
                    self._log.info("watch_condition_met", event_type=event_type, elapsed_s=self._elapsed())
                    self.signal.send(True)
                    w.stop()
                    return True
                self._backoff_s = _BACKOFF_MIN_S

            self._log.debug("watch_stream_ended")
            return False
        finally:
            await w.close()

    async def _relist(self) -> None:
        """Refresh the stored resourceVersion after the server discarded ours."""
        self._resource_version = ""
        list_func, args = self._cluster.list_call(self._target.kind)
        try:
            result = await list_func(*args, field_selector=self._field_selector)
        except Exception as exc:
            self._log.warning("watch_relist_failed", error=str(exc))
            return
        self._resource_version = _list_resource_version(result)

    async def _backoff(self) -> None:
        """Sleep for the current back-off delay, then increase it."""
        delay = min(self._backoff_s, _BACKOFF_MAX_S)
        watch_backoff_seconds.labels(kind=str(self._target.kind)).observe(delay)
        await asyncio.sleep(delay)
        self._backoff_s = min(self._backoff_s * _BACKOFF_MULTIPLIER, _BACKOFF_MAX_S)

    def _expire(self) -> None:
        """Force-stop the stream once the target's timeout has elapsed."""
        self._timer = None
        if self._task is not None and not self._task.done():
            self._log.info("watch_session_timeout", timeout_s=self._target.timeout_s)
            self._task.cancel()
        self.signal.expire()

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _elapsed(self) -> float:
        return round(time.monotonic() - self._started_at, 3)

    def _outcome(self) -> str:
        if self.signal.value is True:
            return "matched"
        if self.signal.resolved:
            return "timeout" if self.signal.timed_out else "false"
        return "stopped"

    def _record_outcome(self, outcome: str) -> None:
        if self._outcome_recorded:
            return
        self._outcome_recorded = True
        watch_sessions_total.labels(
            kind=str(self._target.kind),
            condition=str(self._target.condition),
            outcome=outcome,
        ).inc()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _list_resource_version(result: Any) -> str:
    """Extract resourceVersion from a list response's metadata."""
    metadata = getattr(result, "metadata", None)
    if metadata is None:
        return ""
    rv = getattr(metadata, "resource_version", None)
    return str(rv) if isinstance(rv, str) and rv else ""


def _event_resource_version(obj: Any, raw: dict[str, Any]) -> str:
    """Extract resourceVersion from a watch event's object or raw dict."""
    metadata = getattr(obj, "metadata", None) if obj is not None else None
    if metadata is not None:
        rv = getattr(metadata, "resource_version", None)
        if isinstance(rv, str) and rv:
            return rv
    raw_meta = raw.get("metadata")
    if isinstance(raw_meta, dict):
        rv = raw_meta.get("resourceVersion", "")
        if rv:
            return str(rv)
    return ""
