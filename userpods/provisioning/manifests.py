"""Kubernetes objects userpods creates on a user's behalf."""

from __future__ import annotations

import json
from typing import Any

from kubernetes_asyncio import client

from userpods.models.config import UserPodsConfig
from userpods.models.user import User

POD_NAME_LABEL = "podName"


def storage_pv(user: User, server: str, config: UserPodsConfig) -> client.V1PersistentVolume:
    """NFS persistent volume for the user's storage, pre-bound to the matching claim."""
    name = user.storage_name
    return client.V1PersistentVolume(
        api_version="v1",
        kind="PersistentVolume",
        metadata=client.V1ObjectMeta(
            name=name,
            labels={"name": name, **user.owner_labels(), "server": server},
        ),
        spec=client.V1PersistentVolumeSpec(
            access_modes=["ReadWriteMany"],
            persistent_volume_reclaim_policy="Retain",
            storage_class_name="nfs",
            mount_options=["hard", "nfsvers=4.1"],
            nfs=client.V1NFSVolumeSource(server=server, path=f"{config.nfs_storage_root}/{user.user_id}"),
            claim_ref=client.V1ObjectReference(
                namespace=config.namespace,
                name=name,
                kind="PersistentVolumeClaim",
            ),
            capacity={"storage": config.storage_size},
        ),
    )


def storage_pvc(user: User, server: str, config: UserPodsConfig) -> client.V1PersistentVolumeClaim:
    """Claim bound by name to :func:`storage_pv`."""
    name = user.storage_name
    return client.V1PersistentVolumeClaim(
        api_version="v1",
        kind="PersistentVolumeClaim",
        metadata=client.V1ObjectMeta(
            name=name,
            namespace=config.namespace,
            labels={"name": name, **user.owner_labels(), "server": server},
        ),
        spec=client.V1PersistentVolumeClaimSpec(
            access_modes=["ReadWriteMany"],
            volume_name=name,
            resources={"requests": {"storage": config.storage_size}},
        ),
    )


def ssh_service(pod_name: str, user: User, config: UserPodsConfig) -> client.V1Service:
    """NodePort service exposing port 22 of ``pod_name``."""
    spec = client.V1ServiceSpec(
        type="NodePort",
        selector={POD_NAME_LABEL: pod_name},
        ports=[client.V1ServicePort(name="ssh", port=22, target_port=22, protocol="TCP")],
    )
    if config.public_ip:
        spec.external_i_ps = [config.public_ip]
    return client.V1Service(
        api_version="v1",
        kind="Service",
        metadata=client.V1ObjectMeta(
            name=f"{pod_name}-ssh",
            namespace=config.namespace,
            labels={"createdForPod": pod_name, **user.owner_labels()},
        ),
        spec=spec,
    )


def prepare_pod(body: client.V1Pod, user: User, config: UserPodsConfig) -> client.V1Pod:
    """Stamp ownership labels on a pod body and apply the configured restart policy.

    The body is modified in place and returned.
    """
    metadata = body.metadata or client.V1ObjectMeta()
    labels = dict(metadata.labels or {})
    labels.update(user.owner_labels())
    labels[POD_NAME_LABEL] = metadata.name
    metadata.labels = labels
    metadata.namespace = config.namespace
    body.metadata = metadata
    if config.restart_policy and body.spec is not None and not body.spec.restart_policy:
        body.spec.restart_policy = config.restart_policy
    return body


class _JsonPayload:
    """Minimal response stand-in accepted by ``ApiClient.deserialize``."""

    def __init__(self, manifest: dict[str, Any]) -> None:
        self.data = json.dumps(manifest)


async def pod_from_manifest(manifest: dict[str, Any]) -> client.V1Pod:
    """Turn a camelCase pod manifest, as submitted by the front end, into a ``V1Pod``.

    Raises:
        ValueError: if the manifest is not a Pod.
    """
    kind = manifest.get("kind", "Pod")
    if kind != "Pod":
        raise ValueError(f"Manifest kind must be Pod, got {kind!r}")
    async with client.ApiClient() as api:
        pod: client.V1Pod = api.deserialize(_JsonPayload(manifest), "V1Pod")
    return pod
