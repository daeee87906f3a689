"""Population of a pod's metadata cache.

Combines in-pod token extraction with facts derived from the pod's sibling
resources, and persists the result through :class:`PodCacheStore`.
"""

from __future__ import annotations

from typing import Any

from userpods.cache.extraction import EXISTING_POD_POLICY, NEW_POD_POLICY, RetryPolicy, TokenExtractor
from userpods.cache.pod_cache import PodCacheStore
from userpods.errors import CacheStoreError
from userpods.k8s.client import ClusterClient
from userpods.managed.pod import SSH_CONTAINER_PORT, Pod
from userpods.models.resources import PodCache, ResourceKind
from userpods.observability.logging import get_logger

SSH_PORT_KEY = "sshPort"

_log = get_logger("cache.metadata")


class PodMetadataCache:
    """Fills, saves and loads :class:`PodCache` objects for pods.

    Example::

        metadata = PodMetadataCache(cluster, PodCacheStore("/tmp/tokens"))
        await metadata.populate_new(pod)     # tolerant: retries for a new pod
        info = metadata.load_into(pod).info()
    """

    def __init__(
        self,
        cluster: ClusterClient,
        store: PodCacheStore,
        extractor: TokenExtractor | None = None,
    ) -> None:
        self._cluster = cluster
        self._store = store
        self._extractor = extractor if extractor is not None else TokenExtractor(cluster)

    @property
    def store(self) -> PodCacheStore:
        return self._store

    async def populate(self, pod: Pod, policy: RetryPolicy) -> PodCache:
        """Fill ``pod.cache`` from the running pod and its services. Never raises for read failures."""
        await self._extractor.fill_tokens(pod.object, pod.cache, policy)
        await self.fill_other_resource_info(pod)
        return pod.cache

    async def populate_new(self, pod: Pod) -> PodCache:
        """Populate a freshly created pod and save its cache."""
        cache = await self.populate(pod, NEW_POD_POLICY)
        self._store.save(pod.name, cache)
        return cache

    async def refresh(self, pod: Pod) -> PodCache:
        """Re-extract an already running pod with a single attempt per file and save.

        Starts from the persisted cache, so a key that fails this time keeps
        its last extracted value.
        """
        try:
            self.load_into(pod)
        except CacheStoreError as exc:
            _log.warning("pod_cache_load_failed", pod=pod.name, error=str(exc))
        cache = await self.populate(pod, EXISTING_POD_POLICY)
        self._store.save(pod.name, cache)
        return cache

    def load_into(self, pod: Pod) -> Pod:
        """Replace ``pod.cache`` with the persisted cache; a missing file gives an empty cache.

        Raises:
            CacheStoreError: if the file exists but cannot be read.
        """
        pod.cache = self._store.load(pod.name)
        return pod

    async def fill_other_resource_info(self, pod: Pod) -> None:
        """Record facts about resources related to the pod, such as its ssh node port."""
        if not pod.needs_ssh_service():
            return
        try:
            port = await self.ssh_node_port(pod)
        except Exception as exc:
            _log.error("ssh_port_lookup_failed", pod=pod.name, error=str(exc))
            return
        if port is None:
            _log.warning("ssh_port_not_found", pod=pod.name, service=pod.ssh_service_name)
            return
        pod.cache.other_resource_info[SSH_PORT_KEY] = str(port)

    async def ssh_node_port(self, pod: Pod) -> int | None:
        """Return the node port of the pod's ssh service, or None if there is none.

        Port ``0`` is returned as found; only absence of a node port is a miss.
        """
        services = await self._cluster.list_resources(
            ResourceKind.SERVICE, label_selector=f"createdForPod={pod.name}"
        )
        for service in getattr(services, "items", None) or []:
            if service.metadata.name != pod.ssh_service_name:
                continue
            for port in (service.spec.ports or []) if service.spec is not None else []:
                if _targets_ssh(port) and port.node_port is not None:
                    return int(port.node_port)
            return None
        return None


def _targets_ssh(port: Any) -> bool:
    target = getattr(port, "target_port", None)
    return str(target) == str(SSH_CONTAINER_PORT)
