"""Watch targets and pod cache data structures."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum

from userpods.errors import UnsupportedResourceKindError


class ResourceKind(StrEnum):
    """Cluster resource kinds a watch session can observe."""

    POD = "Pod"
    PERSISTENT_VOLUME = "PersistentVolume"
    PERSISTENT_VOLUME_CLAIM = "PersistentVolumeClaim"
    SERVICE = "Service"

    @classmethod
    def parse(cls, value: str) -> ResourceKind:
        """Resolve a kind name or its short alias (``PV``, ``PVC``, ``SVC``).

        Raises:
            UnsupportedResourceKindError: for any other value.
        """
        try:
            return cls(value)
        except ValueError:
            pass
        alias = _KIND_ALIASES.get(value.lower())
        if alias is None:
            raise UnsupportedResourceKindError(value)
        return alias


_KIND_ALIASES: dict[str, ResourceKind] = {
    "pod": ResourceKind.POD,
    "pv": ResourceKind.PERSISTENT_VOLUME,
    "persistentvolume": ResourceKind.PERSISTENT_VOLUME,
    "pvc": ResourceKind.PERSISTENT_VOLUME_CLAIM,
    "persistentvolumeclaim": ResourceKind.PERSISTENT_VOLUME_CLAIM,
    "svc": ResourceKind.SERVICE,
    "service": ResourceKind.SERVICE,
}


class WatchCondition(StrEnum):
    """Terminal state a watch session waits for."""

    READY = "ready"
    DELETED = "deleted"


@dataclass(frozen=True)
class WatchTarget:
    """A named resource to observe, with the condition and an upper bound on the wait."""

    kind: ResourceKind
    name: str
    timeout_s: float
    condition: WatchCondition = WatchCondition.READY


@dataclass
class PodCache:
    """Values extracted from a running pod plus facts about its sibling resources.

    ``tokens`` maps an annotation key to the contents of ``/tmp/<key>`` in the
    pod. ``other_resource_info`` holds derived values such as ``sshPort``.
    A missing key means extraction has not succeeded yet.
    """

    tokens: dict[str, str] = field(default_factory=dict)
    other_resource_info: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, dict[str, str]]:
        return {
            "tokens": dict(self.tokens),
            "otherResourceInfo": dict(self.other_resource_info),
        }

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> PodCache:
        """Rebuild a cache from :meth:`to_dict` output.

        Raises:
            ValueError: if either mapping is missing or not string-to-string.
        """
        return cls(
            tokens=_str_mapping(data.get("tokens"), "tokens"),
            other_resource_info=_str_mapping(data.get("otherResourceInfo"), "otherResourceInfo"),
        )


def _str_mapping(value: object, key: str) -> dict[str, str]:
    if not isinstance(value, dict):
        raise ValueError(f"cache field {key!r} is not a mapping")
    out: dict[str, str] = {}
    for k, v in value.items():
        if not isinstance(k, str) or not isinstance(v, str):
            raise ValueError(f"cache field {key!r} must map strings to strings")
        out[k] = v
    return out


@dataclass(frozen=True)
class PodInfo:
    """Front-end view of one pod, including its cached metadata."""

    pod_name: str
    container_name: str
    image_name: str
    pod_ip: str
    node_ip: str
    owner: str
    age: str
    status: str
    url: str = ""
    tokens: dict[str, str] = field(default_factory=dict)
    k8s_pod_info: dict[str, str] = field(default_factory=dict)
