"""Namespace-scoped access to the four resource kinds userpods manages.

Wraps kubernetes_asyncio's ``CoreV1Api`` with list / create / delete calls
per kind, the list function a watch stream is opened on, and remote command
execution in a pod container. Persistent volumes are cluster scoped; all
other kinds live in the configured namespace.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any

import aiohttp
from kubernetes_asyncio import client
from kubernetes_asyncio.stream import WsApiClient

from userpods.errors import UnsupportedResourceKindError
from userpods.models.resources import ResourceKind
from userpods.observability.logging import get_logger

_STDOUT_CHANNEL = 1
_STDERR_CHANNEL = 2
_ERROR_CHANNEL = 3


@dataclass(frozen=True)
class ExecResult:
    """Captured output of a command run inside a container."""

    stdout: bytes
    stderr: str
    error: str = ""


class ClusterClient:
    """Asynchronous control-plane client bound to one namespace.

    Usage::

        await kubernetes_asyncio.config.load_kube_config()
        cluster = ClusterClient(namespace="sciencedata-dev")
        pods = await cluster.list_resources(ResourceKind.POD, label_selector="user=alice")
    """

    def __init__(self, namespace: str, api: Any | None = None) -> None:
        """Initialise the client.

        Args:
            namespace: Namespace for pods, claims and services.
            api: Optional ``CoreV1Api`` instance; one is created when omitted.
        """
        self.namespace = namespace
        self._api = api if api is not None else client.CoreV1Api()
        self._log = get_logger("k8s.client")

    @property
    def api(self) -> Any:
        return self._api

    # ------------------------------------------------------------------
    # Generic per-kind operations
    # ------------------------------------------------------------------

    def list_call(self, kind: ResourceKind) -> tuple[Callable[..., Coroutine[Any, Any, Any]], tuple[Any, ...]]:
        """Return the list function for ``kind`` and its positional arguments.

        The same pair is used for plain list calls and for watch streams.

        Raises:
            UnsupportedResourceKindError: for kinds with no list endpoint.
        """
        if kind == ResourceKind.POD:
            return self._api.list_namespaced_pod, (self.namespace,)
        if kind == ResourceKind.PERSISTENT_VOLUME:
            return self._api.list_persistent_volume, ()
        if kind == ResourceKind.PERSISTENT_VOLUME_CLAIM:
            return self._api.list_namespaced_persistent_volume_claim, (self.namespace,)
        if kind == ResourceKind.SERVICE:
            return self._api.list_namespaced_service, (self.namespace,)
        raise UnsupportedResourceKindError(str(kind))

    async def list_resources(
        self,
        kind: ResourceKind,
        label_selector: str = "",
        field_selector: str = "",
    ) -> Any:
        """List resources of ``kind``, returning the kubernetes_asyncio list object."""
        func, args = self.list_call(kind)
        kwargs: dict[str, Any] = {}
        if label_selector:
            kwargs["label_selector"] = label_selector
        if field_selector:
            kwargs["field_selector"] = field_selector
        return await func(*args, **kwargs)

    async def create(self, kind: ResourceKind, body: Any) -> Any:
        self._log.debug("create_resource", kind=str(kind))
        if kind == ResourceKind.POD:
            return await self._api.create_namespaced_pod(self.namespace, body)
        if kind == ResourceKind.PERSISTENT_VOLUME:
            return await self._api.create_persistent_volume(body)
        if kind == ResourceKind.PERSISTENT_VOLUME_CLAIM:
            return await self._api.create_namespaced_persistent_volume_claim(self.namespace, body)
        if kind == ResourceKind.SERVICE:
            return await self._api.create_namespaced_service(self.namespace, body)
        raise UnsupportedResourceKindError(str(kind))

    async def delete(self, kind: ResourceKind, name: str) -> Any:
        self._log.debug("delete_resource", kind=str(kind), name=name)
        if kind == ResourceKind.POD:
            return await self._api.delete_namespaced_pod(name, self.namespace)
        if kind == ResourceKind.PERSISTENT_VOLUME:
            return await self._api.delete_persistent_volume(name)
        if kind == ResourceKind.PERSISTENT_VOLUME_CLAIM:
            return await self._api.delete_namespaced_persistent_volume_claim(name, self.namespace)
        if kind == ResourceKind.SERVICE:
            return await self._api.delete_namespaced_service(name, self.namespace)
        raise UnsupportedResourceKindError(str(kind))

    # ------------------------------------------------------------------
    # Remote execution
    # ------------------------------------------------------------------

    async def exec_in_pod(self, pod_name: str, container: str, command: list[str]) -> ExecResult:
        """Run ``command`` in ``container`` of ``pod_name`` and capture its output.

        A dedicated websocket client is used per call so the shared REST
        client is never switched to websocket transport.

        Raises:
            Exception: whatever the websocket upgrade or transport raises.
        """
        stdout = bytearray()
        stderr = bytearray()
        error = ""
        async with WsApiClient() as ws_client:
            ws_api = client.CoreV1Api(api_client=ws_client)
            ws = await ws_api.connect_get_namespaced_pod_exec(
                pod_name,
                self.namespace,
                container=container,
                command=command,
                stderr=True,
                stdin=False,
                stdout=True,
                tty=False,
                _preload_content=False,
            )
            async with ws:
                async for msg in ws:
                    if msg.type not in (aiohttp.WSMsgType.BINARY, aiohttp.WSMsgType.TEXT):
                        continue
                    data = msg.data if isinstance(msg.data, bytes) else msg.data.encode()
                    if len(data) < 2:
                        continue
                    channel, payload = data[0], data[1:]
                    if channel == _STDOUT_CHANNEL:
                        stdout.extend(payload)
                    elif channel == _STDERR_CHANNEL:
                        stderr.extend(payload)
                    elif channel == _ERROR_CHANNEL:
                        error += payload.decode("utf-8", errors="replace")
        return ExecResult(
            stdout=bytes(stdout),
            stderr=stderr.decode("utf-8", errors="replace"),
            error=_exec_failure(error),
        )


def _exec_failure(status_payload: str) -> str:
    """Return the failure message from an error-channel Status, or "" on success."""
    if not status_payload:
        return ""
    try:
        status = json.loads(status_payload)
    except ValueError:
        return status_payload
    if not isinstance(status, dict) or status.get("status") == "Success":
        return ""
    return str(status.get("message") or status.get("reason") or status_payload)
