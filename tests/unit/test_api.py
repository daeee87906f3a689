"""Unit tests for the FastAPI application (userpods.api)."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient
from kubernetes_asyncio import client

from userpods import __version__
from userpods.api import build_app
from userpods.errors import PodNotFoundError, ProvisioningError
from userpods.models.config import UserPodsConfig
from userpods.models.resources import PodInfo
from userpods.models.user import User
from userpods.provisioning import ProvisioningResult

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _pod_info() -> PodInfo:
    return PodInfo(
        pod_name="alice-pod",
        container_name="jupyter",
        image_name="jupyter",
        pod_ip="10.1.2.3",
        node_ip="192.168.0.7",
        owner="alice@example.org",
        age="1:2:3",
        status="Running:2024-01-15T10:00:00Z",
        tokens={"jupyterToken": "abc123"},
        k8s_pod_info={"sshPort": "31022"},
    )


def _result(ready: bool = True) -> ProvisioningResult:
    return ProvisioningResult(name="alice-pod", ready=ready, dependencies={"Pod/alice-pod": ready})


def _make_provisioner() -> MagicMock:
    provisioner = MagicMock()
    provisioner.get_pod_infos = AsyncMock(return_value=[_pod_info()])
    provisioner.create_pod = AsyncMock(return_value=_result())
    provisioner.delete_pod = AsyncMock(return_value=_result())
    provisioner.refresh_caches = AsyncMock(return_value=2)
    provisioner.ensure_user_storage = AsyncMock(return_value=_result())
    provisioner.delete_user_storage = AsyncMock(return_value=_result())
    return provisioner


def _make_app(provisioner: MagicMock | None = None) -> TestClient:
    app = build_app(provisioner=provisioner or _make_provisioner(), config=UserPodsConfig(namespace="userpods-test"))
    return TestClient(app, raise_server_exceptions=False)


_MANIFEST = {"kind": "Pod", "metadata": {"name": "alice-pod"}, "spec": {"containers": [{"name": "c", "image": "i"}]}}


# ---------------------------------------------------------------------------
# Probes
# ---------------------------------------------------------------------------


class TestProbes:
    def test_healthz(self) -> None:
        response = _make_app().get("/healthz")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "version": __version__, "namespace": "userpods-test"}

    def test_metrics(self) -> None:
        response = _make_app().get("/metrics")
        assert response.status_code == 200
        assert "userpods_provisioning_duration_seconds" in response.text


# ---------------------------------------------------------------------------
# GET /api/v1/pods
# ---------------------------------------------------------------------------


class TestListPods:
    def test_lists_user_pods(self) -> None:
        provisioner = _make_provisioner()
        response = _make_app(provisioner).get("/api/v1/pods", params={"user_id": "alice@example.org"})

        assert response.status_code == 200
        body = response.json()
        assert body[0]["pod_name"] == "alice-pod"
        assert body[0]["tokens"] == {"jupyterToken": "abc123"}
        assert body[0]["k8s_pod_info"] == {"sshPort": "31022"}
        provisioner.get_pod_infos.assert_awaited_once_with(User.from_id("alice@example.org"))

    def test_without_user_lists_all(self) -> None:
        provisioner = _make_provisioner()
        _make_app(provisioner).get("/api/v1/pods")
        provisioner.get_pod_infos.assert_awaited_once_with(User())

    def test_failure_is_500(self) -> None:
        provisioner = _make_provisioner()
        provisioner.get_pod_infos.side_effect = RuntimeError("api down")
        response = _make_app(provisioner).get("/api/v1/pods")
        assert response.status_code == 500
        assert response.json()["error"] == "INTERNAL_ERROR"


# ---------------------------------------------------------------------------
# POST /api/v1/pods
# ---------------------------------------------------------------------------


class TestCreatePod:
    def test_creates_pod(self) -> None:
        provisioner = _make_provisioner()
        body = client.V1Pod(metadata=client.V1ObjectMeta(name="alice-pod"))

        with patch("userpods.api.routes.pod_from_manifest", AsyncMock(return_value=body)):
            response = _make_app(provisioner).post(
                "/api/v1/pods",
                json={"user_id": "alice@example.org", "manifest": _MANIFEST, "storage_server": "10.0.0.12"},
            )

        assert response.status_code == 200
        assert response.json() == {
            "name": "alice-pod",
            "ready": True,
            "dependencies": {"Pod/alice-pod": True},
            "errors": [],
        }
        provisioner.create_pod.assert_awaited_once_with(User.from_id("alice@example.org"), body, "10.0.0.12")

    def test_not_ready_is_still_200(self) -> None:
        provisioner = _make_provisioner()
        provisioner.create_pod.return_value = _result(ready=False)

        with patch("userpods.api.routes.pod_from_manifest", AsyncMock(return_value=MagicMock())):
            response = _make_app(provisioner).post("/api/v1/pods", json={"user_id": "alice", "manifest": _MANIFEST})

        assert response.status_code == 200
        assert response.json()["ready"] is False

    def test_rejected_is_400(self) -> None:
        provisioner = _make_provisioner()
        provisioner.create_pod.side_effect = ProvisioningError("Image 'evil' is not allowed")

        with patch("userpods.api.routes.pod_from_manifest", AsyncMock(return_value=MagicMock())):
            response = _make_app(provisioner).post("/api/v1/pods", json={"user_id": "alice", "manifest": _MANIFEST})

        assert response.status_code == 400
        assert response.json() == {"error": "PROVISIONING_REJECTED", "detail": "Image 'evil' is not allowed"}

    def test_invalid_manifest_is_400(self) -> None:
        response = _make_app().post(
            "/api/v1/pods",
            json={"user_id": "alice", "manifest": {"kind": "Service", "metadata": {"name": "x"}}},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "INVALID_MANIFEST"

    def test_blank_user_is_422(self) -> None:
        response = _make_app().post("/api/v1/pods", json={"user_id": "  ", "manifest": _MANIFEST})
        assert response.status_code == 422


# ---------------------------------------------------------------------------
# DELETE /api/v1/pods/{name}
# ---------------------------------------------------------------------------


class TestDeletePod:
    def test_deletes_pod(self) -> None:
        provisioner = _make_provisioner()
        response = _make_app(provisioner).delete("/api/v1/pods/alice-pod", params={"user_id": "alice@example.org"})

        assert response.status_code == 200
        assert response.json()["ready"] is True
        provisioner.delete_pod.assert_awaited_once_with(User.from_id("alice@example.org"), "alice-pod")

    def test_missing_user_is_rejected(self) -> None:
        provisioner = _make_provisioner()
        response = _make_app(provisioner).delete("/api/v1/pods/bob-pod")

        assert response.status_code == 422
        provisioner.delete_pod.assert_not_awaited()

    def test_blank_user_is_400(self) -> None:
        provisioner = _make_provisioner()
        response = _make_app(provisioner).delete("/api/v1/pods/bob-pod", params={"user_id": "  "})

        assert response.status_code == 400
        assert response.json()["error"] == "PROVISIONING_REJECTED"
        provisioner.delete_pod.assert_not_awaited()

    def test_unknown_pod_is_404(self) -> None:
        provisioner = _make_provisioner()
        provisioner.delete_pod.side_effect = PodNotFoundError("alice-pod", "alice@example.org")
        response = _make_app(provisioner).delete("/api/v1/pods/alice-pod", params={"user_id": "alice@example.org"})

        assert response.status_code == 404
        assert response.json()["error"] == "POD_NOT_FOUND"


# ---------------------------------------------------------------------------
# Refresh and storage
# ---------------------------------------------------------------------------


class TestRefreshAndStorage:
    def test_refresh(self) -> None:
        provisioner = _make_provisioner()
        response = _make_app(provisioner).post("/api/v1/pods/refresh", params={"user_id": "alice@example.org"})

        assert response.status_code == 200
        assert response.json() == {"refreshed": 2}
        provisioner.refresh_caches.assert_awaited_once_with(User.from_id("alice@example.org"))

    def test_ensure_storage(self) -> None:
        provisioner = _make_provisioner()
        response = _make_app(provisioner).post(
            "/api/v1/storage", json={"user_id": "alice@example.org", "storage_server": "10.0.0.12"}
        )

        assert response.status_code == 200
        provisioner.ensure_user_storage.assert_awaited_once_with(User.from_id("alice@example.org"), "10.0.0.12")

    def test_delete_storage(self) -> None:
        provisioner = _make_provisioner()
        response = _make_app(provisioner).delete("/api/v1/storage", params={"user_id": "alice@example.org"})

        assert response.status_code == 200
        provisioner.delete_user_storage.assert_awaited_once_with(User.from_id("alice@example.org"))

    def test_delete_storage_requires_user(self) -> None:
        response = _make_app().delete("/api/v1/storage", params={"user_id": ""})
        assert response.status_code == 400
