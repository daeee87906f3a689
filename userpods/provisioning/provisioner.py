"""Dependency-ordered provisioning of user pods.

Each provisioning call starts one :class:`WatchSession` per dependent
resource *before* issuing the create or delete call, so no state change can
be missed, then waits on the AND of all their signals. The slowest
dependency bounds the wait; none of them can hang past its own timeout.

Creating a pod that mounts the user's storage and listens on port 22::

    storage PV available ─┐
    storage PVC bound ────┤
    pod ready ────────────┼── receive_all ──> ProvisioningResult.ready
    ssh service exposed ──┘

After a successful create the pod's metadata cache is populated with the
tolerant new-pod retry policy and saved. Cache failures are logged and
reported in the result but never change the readiness outcome.
"""

from __future__ import annotations

import asyncio
import re
import time
from dataclasses import dataclass, field
from typing import Any

from kubernetes_asyncio import client

from userpods.cache.metadata import PodMetadataCache
from userpods.collector.watcher import WatchSession
from userpods.errors import (
    CacheStoreError,
    PodNotFoundError,
    ProvisioningError,
    UnsupportedResourceKindError,
    WatchSetupError,
)
from userpods.k8s.client import ClusterClient
from userpods.managed.pod import Pod
from userpods.models.config import UserPodsConfig
from userpods.models.resources import PodInfo, ResourceKind, WatchCondition, WatchTarget
from userpods.models.user import User
from userpods.observability.logging import get_logger
from userpods.observability.metrics import provisioning_duration_seconds, provisioning_total
from userpods.provisioning import manifests
from userpods.signals.combinator import receive_all
from userpods.signals.readiness import ReadinessSignal

_log = get_logger("provisioning")


@dataclass
class ProvisioningResult:
    """Outcome of one provisioning operation.

    Attributes:
        name:         Name of the pod or storage the operation was about.
        ready:        AND of every dependency's readiness signal.
        dependencies: Per-dependency outcome keyed ``<Kind>/<name>``.
        errors:       Non-fatal errors (watch setup, cache persistence).
    """

    name: str
    ready: bool
    dependencies: dict[str, bool] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)


class Provisioner:
    """Creates, deletes and describes the pods and storage owned by users."""

    def __init__(self, cluster: ClusterClient, config: UserPodsConfig, metadata: PodMetadataCache) -> None:
        self._cluster = cluster
        self._config = config
        self._metadata = metadata
        self._image_re = re.compile(config.whitelist_manifest_regex)
        self._sessions: set[WatchSession] = set()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def list_pods(self, user: User) -> list[Pod]:
        """Return fresh views of every pod owned by ``user`` (all pods for the anonymous user)."""
        pod_list = await self._cluster.list_resources(ResourceKind.POD, label_selector=user.pod_selector)
        return [Pod(obj) for obj in getattr(pod_list, "items", None) or []]

    async def get_pod_infos(self, user: User) -> list[PodInfo]:
        """Describe the user's pods, merging each pod's persisted cache."""
        return [self.get_pod_info(pod) for pod in await self.list_pods(user)]

    def get_pod_info(self, pod: Pod) -> PodInfo:
        """Describe one pod; an unreadable cache file is logged and described as empty."""
        try:
            self._metadata.load_into(pod)
        except CacheStoreError as exc:
            _log.error("pod_cache_load_failed", pod=pod.name, error=str(exc))
        return pod.info()

    async def refresh_caches(self, user: User) -> int:
        """Re-extract the cache of every running pod of ``user`` once. Returns pods refreshed."""
        pods = [p for p in await self.list_pods(user) if _phase(p.object) == "Running"]
        results = await asyncio.gather(*(self._refresh_one(p) for p in pods))
        return sum(results)

    async def _refresh_one(self, pod: Pod) -> bool:
        try:
            await self._metadata.refresh(pod)
        except CacheStoreError as exc:
            _log.error("pod_cache_refresh_failed", pod=pod.name, error=str(exc))
            return False
        return True

    # ------------------------------------------------------------------
    # Pods
    # ------------------------------------------------------------------

    async def create_pod(self, user: User, body: client.V1Pod, storage_server: str = "") -> ProvisioningResult:
        """Create a pod and every resource it depends on, and wait until all are ready.

        Raises:
            ProvisioningError: the request is malformed or the control plane
                rejected a create call. In-flight watches are stopped first.
        """
        name = self._validate_pod_body(body)
        if not user.user_id:
            raise ProvisioningError("A user id is required to create a pod")
        manifests.prepare_pod(body, user, self._config)
        pod = Pod(body)
        timeout = self._config.timeouts.create_seconds
        started = time.monotonic()
        result = ProvisioningResult(name=name, ready=False)
        sessions: list[WatchSession] = []

        try:
            if pod.uses_claim(user.storage_name):
                if not storage_server:
                    raise ProvisioningError(f"Pod {name} mounts user storage but no storage server was given")
                await self._ensure_storage(user, storage_server, result, sessions)

            sessions.append(await self._watch(ResourceKind.POD, name, WatchCondition.READY, timeout, result))
            await self._create(ResourceKind.POD, body)

            if pod.needs_ssh_service():
                service = manifests.ssh_service(name, user, self._config)
                sessions.append(
                    await self._watch(ResourceKind.SERVICE, service.metadata.name, WatchCondition.READY, timeout, result)
                )
                await self._create(ResourceKind.SERVICE, service)

            result.ready = await self._await_all(sessions, result)
        finally:
            await self._stop_sessions(sessions)

        if result.ready:
            try:
                await self._metadata.populate_new(pod)
            except CacheStoreError as exc:
                _log.error("pod_cache_save_failed", pod=name, error=str(exc))
                result.errors.append(str(exc))

        self._record("create_pod", result, started)
        return result

    async def delete_pod(self, user: User, name: str) -> ProvisioningResult:
        """Delete a pod owned by ``user`` and the services created for it, then wait until all are gone.

        Raises:
            PodNotFoundError: the user owns no pod by that name.
            ProvisioningError: no user id was given, or the control plane
                rejected a delete call.
        """
        if not user.user_id:
            raise ProvisioningError("A user id is required to delete a pod")
        pods = [p for p in await self.list_pods(user) if p.name == name]
        if not pods:
            raise PodNotFoundError(name, user.user_id)
        timeout = self._config.timeouts.delete_seconds
        started = time.monotonic()
        result = ProvisioningResult(name=name, ready=False)
        sessions: list[WatchSession] = []

        services = await self._cluster.list_resources(ResourceKind.SERVICE, label_selector=f"createdForPod={name}")
        service_names = [s.metadata.name for s in getattr(services, "items", None) or []]

        try:
            sessions.append(await self._watch(ResourceKind.POD, name, WatchCondition.DELETED, timeout, result))
            for service_name in service_names:
                sessions.append(
                    await self._watch(ResourceKind.SERVICE, service_name, WatchCondition.DELETED, timeout, result)
                )
            await self._delete(ResourceKind.POD, name)
            for service_name in service_names:
                await self._delete(ResourceKind.SERVICE, service_name)
            result.ready = await self._await_all(sessions, result)
        finally:
            await self._stop_sessions(sessions)

        try:
            self._metadata.store.remove(name)
        except CacheStoreError as exc:
            _log.error("pod_cache_remove_failed", pod=name, error=str(exc))
            result.errors.append(str(exc))

        self._record("delete_pod", result, started)
        return result

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    async def ensure_user_storage(self, user: User, server: str) -> ProvisioningResult:
        """Create the user's PV/PVC pair if missing and wait for it to be usable."""
        started = time.monotonic()
        result = ProvisioningResult(name=user.storage_name, ready=False)
        sessions: list[WatchSession] = []
        try:
            await self._ensure_storage(user, server, result, sessions)
            result.ready = await self._await_all(sessions, result)
        finally:
            await self._stop_sessions(sessions)
        self._record("ensure_storage", result, started)
        return result

    async def delete_user_storage(self, user: User) -> ProvisioningResult:
        """Delete the user's PV and PVC together and wait until both are gone.

        Raises:
            ProvisioningError: no user id was given.
        """
        if not user.user_id:
            raise ProvisioningError("A user id is required to delete storage")
        name = user.storage_name
        timeout = self._config.timeouts.delete_seconds
        started = time.monotonic()
        result = ProvisioningResult(name=name, ready=False)
        sessions: list[WatchSession] = []
        try:
            for kind in (ResourceKind.PERSISTENT_VOLUME_CLAIM, ResourceKind.PERSISTENT_VOLUME):
                sessions.append(await self._watch(kind, name, WatchCondition.DELETED, timeout, result))
            for kind in (ResourceKind.PERSISTENT_VOLUME_CLAIM, ResourceKind.PERSISTENT_VOLUME):
                await self._delete(kind, name)
            result.ready = await self._await_all(sessions, result)
        finally:
            await self._stop_sessions(sessions)
        self._record("delete_storage", result, started)
        return result

    async def _ensure_storage(
        self, user: User, server: str, result: ProvisioningResult, sessions: list[WatchSession]
    ) -> None:
        """Start watches for, and create, whichever half of the storage pair is missing."""
        name = user.storage_name
        timeout = self._config.timeouts.create_seconds
        existing_pv = await self._cluster.list_resources(
            ResourceKind.PERSISTENT_VOLUME, label_selector=user.storage_selector
        )
        existing_pvc = await self._cluster.list_resources(
            ResourceKind.PERSISTENT_VOLUME_CLAIM, label_selector=user.storage_selector
        )

        if not getattr(existing_pv, "items", None):
            sessions.append(
                await self._watch(ResourceKind.PERSISTENT_VOLUME, name, WatchCondition.READY, timeout, result)
            )
            await self._create(ResourceKind.PERSISTENT_VOLUME, manifests.storage_pv(user, server, self._config))
        else:
            phase = _phase(existing_pv.items[0])
            if phase not in ("Available", "Bound"):
                _log.warning("storage_volume_not_usable", volume=name, phase=phase)
                result.dependencies[f"{ResourceKind.PERSISTENT_VOLUME}/{name}"] = False
        if not getattr(existing_pvc, "items", None):
            sessions.append(
                await self._watch(ResourceKind.PERSISTENT_VOLUME_CLAIM, name, WatchCondition.READY, timeout, result)
            )
            await self._create(
                ResourceKind.PERSISTENT_VOLUME_CLAIM, manifests.storage_pvc(user, server, self._config)
            )
        else:
            phase = _phase(existing_pvc.items[0])
            if phase != "Bound":
                _log.warning("storage_claim_not_bound", claim=name, phase=phase)
                result.dependencies[f"{ResourceKind.PERSISTENT_VOLUME_CLAIM}/{name}"] = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Stop every in-flight watch session."""
        await self._stop_sessions(list(self._sessions))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _validate_pod_body(self, body: Any) -> str:
        metadata = getattr(body, "metadata", None)
        name = getattr(metadata, "name", None) if metadata is not None else None
        if not name:
            raise ProvisioningError("Pod body must have metadata.name")
        spec = getattr(body, "spec", None)
        containers = getattr(spec, "containers", None) if spec is not None else None
        if not containers:
            raise ProvisioningError(f"Pod {name} must declare at least one container")
        for container in containers:
            image = container.image or ""
            if not self._image_re.fullmatch(image):
                raise ProvisioningError(f"Image {image!r} is not allowed")
        return str(name)

    async def _watch(
        self,
        kind: ResourceKind,
        name: str,
        condition: WatchCondition,
        timeout_s: float,
        result: ProvisioningResult,
    ) -> WatchSession:
        """Start a watch session; setup errors are recorded and leave the session's signal False."""
        session = WatchSession(self._cluster, WatchTarget(kind, name, timeout_s, condition))
        self._sessions.add(session)
        try:
            await session.start()
        except (WatchSetupError, UnsupportedResourceKindError) as exc:
            result.errors.append(str(exc))
        return session

    async def _await_all(self, sessions: list[WatchSession], result: ProvisioningResult) -> bool:
        signals: list[ReadinessSignal] = [s.signal for s in sessions]
        outcome = await receive_all(signals)
        for session in sessions:
            target = session.target
            result.dependencies[f"{target.kind}/{target.name}"] = bool(session.signal.value)
        return outcome and all(result.dependencies.values())

    async def _stop_sessions(self, sessions: list[WatchSession]) -> None:
        for session in sessions:
            await session.stop()
            self._sessions.discard(session)

    async def _create(self, kind: ResourceKind, body: Any) -> None:
        try:
            await self._cluster.create(kind, body)
        except Exception as exc:
            _log.error("create_failed", kind=str(kind), error=str(exc))
            raise ProvisioningError(f"Could not create {kind}: {exc}") from exc

    async def _delete(self, kind: ResourceKind, name: str) -> None:
        try:
            await self._cluster.delete(kind, name)
        except Exception as exc:
            _log.error("delete_failed", kind=str(kind), name=name, error=str(exc))
            raise ProvisioningError(f"Could not delete {kind}/{name}: {exc}") from exc

    def _record(self, operation: str, result: ProvisioningResult, started: float) -> None:
        outcome = "ready" if result.ready else "not_ready"
        elapsed = time.monotonic() - started
        provisioning_total.labels(operation=operation, outcome=outcome).inc()
        provisioning_duration_seconds.labels(operation=operation, outcome=outcome).observe(elapsed)
        _log.info(
            "provisioning_finished",
            operation=operation,
            name=result.name,
            ready=result.ready,
            dependencies=result.dependencies,
            errors=len(result.errors),
            elapsed_s=round(elapsed, 3),
        )


def _phase(obj: Any) -> str:
    status = getattr(obj, "status", None)
    return str(getattr(status, "phase", "") or "") if status is not None else ""
