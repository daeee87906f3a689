"""Terminal-state predicates over single watch events.

Each classifier receives one event from a watch stream, as
``(event_type, obj, raw)`` where ``obj`` is the deserialized
kubernetes_asyncio model and ``raw`` the raw dict, and returns True when
the event shows the awaited terminal state. Classifiers never report
failure; a classifier that never matches lets the signal time out.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from userpods.errors import UnsupportedResourceKindError
from userpods.models.resources import ResourceKind, WatchCondition

Classifier = Callable[[str, Any, dict[str, Any]], bool]

_MODIFIED = "MODIFIED"
_ADDED = "ADDED"
_DELETED = "DELETED"

_EXPOSED_SERVICE_TYPES: frozenset[str] = frozenset({"NodePort", "LoadBalancer"})


def pod_ready(event_type: str, obj: Any, raw: dict[str, Any]) -> bool:
    """A MODIFIED pod whose ``Ready`` condition has status ``True``."""
    if event_type != _MODIFIED:
        return False
    for cond_type, status in _conditions(obj, raw):
        if cond_type == "Ready":
            return status == "True"
    return False


def pv_available(event_type: str, obj: Any, raw: dict[str, Any]) -> bool:
    """A MODIFIED persistent volume in phase ``Available``."""
    return event_type == _MODIFIED and _phase(obj, raw) == "Available"


def pvc_bound(event_type: str, obj: Any, raw: dict[str, Any]) -> bool:
    """A MODIFIED persistent volume claim in phase ``Bound``."""
    return event_type == _MODIFIED and _phase(obj, raw) == "Bound"


def service_exposed(event_type: str, obj: Any, raw: dict[str, Any]) -> bool:
    """An ADDED or MODIFIED service with ports that are reachable from outside.

    NodePort and LoadBalancer services count once every port has been
    assigned a node port; other service types count as soon as they have
    at least one port.
    """
    if event_type not in (_ADDED, _MODIFIED):
        return False
    service_type, node_ports = _service_ports(obj, raw)
    if not node_ports:
        return False
    if service_type in _EXPOSED_SERVICE_TYPES:
        return all(port is not None for port in node_ports)
    return True


def deleted(event_type: str, obj: Any, raw: dict[str, Any]) -> bool:
    """A DELETED event, for any kind."""
    return event_type == _DELETED


_READY_CLASSIFIERS: dict[ResourceKind, Classifier] = {
    ResourceKind.POD: pod_ready,
    ResourceKind.PERSISTENT_VOLUME: pv_available,
    ResourceKind.PERSISTENT_VOLUME_CLAIM: pvc_bound,
    ResourceKind.SERVICE: service_exposed,
}


def classifier_for(kind: ResourceKind, condition: WatchCondition) -> Classifier:
    """Select the classifier for a resource kind and awaited condition.

    Raises:
        UnsupportedResourceKindError: if no classifier covers the pair.
    """
    if condition == WatchCondition.DELETED:
        if kind not in _READY_CLASSIFIERS:
            raise UnsupportedResourceKindError(str(kind), str(condition))
        return deleted
    if condition == WatchCondition.READY:
        classifier = _READY_CLASSIFIERS.get(kind)
        if classifier is not None:
            return classifier
    raise UnsupportedResourceKindError(str(kind), str(condition))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _phase(obj: Any, raw: dict[str, Any]) -> str:
    """Return ``status.phase`` from the object or raw dict, or empty string."""
    if obj is not None and getattr(obj, "status", None) is not None:
        phase = getattr(obj.status, "phase", None)
        if phase:
            return str(phase)
    status = raw.get("status", {})
    if isinstance(status, dict):
        return str(status.get("phase", "") or "")
    return ""


def _conditions(obj: Any, raw: dict[str, Any]) -> list[tuple[str, str]]:
    """Return ``(type, status)`` pairs from ``status.conditions``."""
    if obj is not None and getattr(obj, "status", None) is not None:
        conditions = getattr(obj.status, "conditions", None)
        if conditions:
            return [(str(getattr(c, "type", "")), str(getattr(c, "status", ""))) for c in conditions]
    status = raw.get("status", {})
    if not isinstance(status, dict):
        return []
    raw_conditions = status.get("conditions") or []
    return [
        (str(c.get("type", "")), str(c.get("status", "")))
        for c in raw_conditions
        if isinstance(c, dict)
    ]


def _service_ports(obj: Any, raw: dict[str, Any]) -> tuple[str, list[int | None]]:
    """Return the service type and the node port of every declared port."""
    spec = getattr(obj, "spec", None) if obj is not None else None
    if spec is not None and getattr(spec, "ports", None):
        return str(getattr(spec, "type", "") or ""), [getattr(p, "node_port", None) for p in spec.ports]
    raw_spec = raw.get("spec", {})
    if not isinstance(raw_spec, dict):
        return "", []
    ports = [p for p in raw_spec.get("ports") or [] if isinstance(p, dict)]
    return str(raw_spec.get("type", "") or ""), [p.get("nodePort") for p in ports]
