"""Read-through view over one cluster pod.

A :class:`Pod` is rebuilt from the cluster's pod list on every query; it
owns only its :class:`PodCache`, which callers load from and save to the
:class:`~userpods.cache.pod_cache.PodCacheStore`.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from userpods.models.resources import PodCache, PodInfo
from userpods.models.user import User

SSH_CONTAINER_PORT = 22


class Pod:
    """A cluster pod plus its owner and metadata cache."""

    def __init__(self, obj: Any, cache: PodCache | None = None) -> None:
        self.object = obj
        self.owner = User.from_labels(obj.metadata.labels)
        self.cache = cache if cache is not None else PodCache()

    @property
    def name(self) -> str:
        return str(self.object.metadata.name)

    @property
    def ssh_service_name(self) -> str:
        return f"{self.name}-ssh"

    @property
    def containers(self) -> list[Any]:
        spec = self.object.spec
        return list(spec.containers or []) if spec is not None else []

    def needs_ssh_service(self) -> bool:
        """True if any container listens on port 22."""
        return any(
            port.container_port == SSH_CONTAINER_PORT
            for container in self.containers
            for port in (container.ports or [])
        )

    def uses_claim(self, claim_name: str) -> bool:
        """True if any pod volume mounts the persistent volume claim ``claim_name``."""
        spec = self.object.spec
        for volume in (spec.volumes or []) if spec is not None else []:
            claim = getattr(volume, "persistent_volume_claim", None)
            if claim is not None and claim.claim_name == claim_name:
                return True
        return False

    def info(self, now: datetime | None = None) -> PodInfo:
        """Build the front-end view from the pod object and the current cache."""
        now = now or datetime.now(tz=UTC)
        status = self.object.status
        start_time = getattr(status, "start_time", None) if status is not None else None
        age_s = max(0, int((now - start_time).total_seconds())) if start_time is not None else 0
        start_str = start_time.strftime("%Y-%m-%dT%H:%M:%SZ") if start_time is not None else ""
        phase = (getattr(status, "phase", None) or "") if status is not None else ""
        first = self.containers[0] if self.containers else None

        return PodInfo(
            pod_name=self.name,
            container_name=first.name if first is not None else "",
            image_name=(first.image or "") if first is not None else "",
            pod_ip=(getattr(status, "pod_ip", None) or "") if status is not None else "",
            node_ip=(getattr(status, "host_ip", None) or "") if status is not None else "",
            owner=self.owner.user_id,
            age=f"{age_s // 3600}:{(age_s // 60) % 60}:{age_s % 60}",
            status=f"{phase}:{start_str}",
            tokens=dict(self.cache.tokens),
            k8s_pod_info=dict(self.cache.other_resource_info),
        )
