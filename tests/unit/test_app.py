"""Unit tests for UserPodsApp lifecycle and main()."""

from __future__ import annotations

import asyncio
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from userpods.app import UserPodsApp, _ComponentError, main
from userpods.models.config import UserPodsConfig

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_app(tmp_path: Path) -> UserPodsApp:
    """Return an app with a real config and a MagicMock logger."""
    app = UserPodsApp(UserPodsConfig(namespace="userpods-test", token_dir=tmp_path))
    app._log = MagicMock()
    return app


# ---------------------------------------------------------------------------
# _ComponentError
# ---------------------------------------------------------------------------


class TestComponentError:
    def test_stores_fields(self) -> None:
        cause = RuntimeError("boom")
        err = _ComponentError("k8s_client", cause)
        assert err.component == "k8s_client"
        assert err.cause is cause
        assert "k8s_client" in str(err)
        assert "boom" in str(err)


# ---------------------------------------------------------------------------
# start()
# ---------------------------------------------------------------------------


class TestStart:
    async def test_start_calls_substeps_in_order(self) -> None:
        app = UserPodsApp()
        step_order: list[str] = []

        def _async_recorder(name: str):
            async def _recorded() -> None:
                step_order.append(name)

            return _recorded

        def _sync_recorder(name: str):
            def _recorded() -> None:
                step_order.append(name)

            return _recorded

        with (
            patch("userpods.app.load_config", return_value=UserPodsConfig()),
            patch("userpods.app.setup_logging"),
            patch("userpods.app.get_logger", return_value=MagicMock()),
            patch.object(app, "_start_k8s_client", new=_async_recorder("k8s")),
            patch.object(app, "_start_cache", new=_sync_recorder("cache")),
            patch.object(app, "_start_provisioner", new=_sync_recorder("provisioner")),
            patch.object(app, "_start_rest", new=_async_recorder("rest")),
        ):
            await app.start()

        assert app.running is True
        assert step_order == ["k8s", "cache", "provisioner", "rest"]

    async def test_invalid_config_raises_component_error(self) -> None:
        app = UserPodsApp()
        with (
            patch("userpods.app.load_config", side_effect=ValueError("bad port")),
            pytest.raises(_ComponentError) as exc_info,
        ):
            await app.start()
        assert exc_info.value.component == "config"
        assert app.running is False

    async def test_start_propagates_component_error(self) -> None:
        app = UserPodsApp(UserPodsConfig())
        failure = _ComponentError("k8s_client", RuntimeError("no cluster"))

        with (
            patch("userpods.app.setup_logging"),
            patch("userpods.app.get_logger", return_value=MagicMock()),
            patch.object(app, "_start_k8s_client", new=AsyncMock(side_effect=failure)),
            patch.object(app, "_start_cache") as start_cache,
            pytest.raises(_ComponentError),
        ):
            await app.start()

        start_cache.assert_not_called()
        assert app.running is False


# ---------------------------------------------------------------------------
# Component startup
# ---------------------------------------------------------------------------


class TestStartComponents:
    async def test_k8s_client_in_cluster(self, tmp_path: Path) -> None:
        app = _make_app(tmp_path)
        with (
            patch("kubernetes_asyncio.config.load_incluster_config") as incluster,
            patch("userpods.k8s.ClusterClient") as cluster_cls,
        ):
            await app._start_k8s_client()

        incluster.assert_called_once()
        cluster_cls.assert_called_once_with(namespace="userpods-test")
        assert app._cluster is cluster_cls.return_value

    async def test_k8s_client_falls_back_to_kubeconfig(self, tmp_path: Path) -> None:
        import kubernetes_asyncio.config as k8s_config

        app = _make_app(tmp_path)
        with (
            patch(
                "kubernetes_asyncio.config.load_incluster_config",
                side_effect=k8s_config.ConfigException("not in cluster"),
            ),
            patch("kubernetes_asyncio.config.load_kube_config", new=AsyncMock()) as kubeconfig,
            patch("userpods.k8s.ClusterClient"),
        ):
            await app._start_k8s_client()

        kubeconfig.assert_awaited_once()

    async def test_k8s_client_failure_raises_component_error(self, tmp_path: Path) -> None:
        import kubernetes_asyncio.config as k8s_config

        app = _make_app(tmp_path)
        with (
            patch(
                "kubernetes_asyncio.config.load_incluster_config",
                side_effect=k8s_config.ConfigException("not in cluster"),
            ),
            patch(
                "kubernetes_asyncio.config.load_kube_config",
                new=AsyncMock(side_effect=k8s_config.ConfigException("no kubeconfig")),
            ),
            pytest.raises(_ComponentError) as exc_info,
        ):
            await app._start_k8s_client()

        assert exc_info.value.component == "k8s_client"

    def test_cache_and_provisioner(self, tmp_path: Path) -> None:
        app = _make_app(tmp_path)
        app._cluster = MagicMock()

        app._start_cache()
        app._start_provisioner()

        assert app._metadata is not None
        assert app._metadata.store.directory == tmp_path
        assert app._provisioner is not None

    def test_bad_whitelist_raises_component_error(self, tmp_path: Path) -> None:
        app = UserPodsApp(UserPodsConfig(token_dir=tmp_path, whitelist_manifest_regex="(["))
        app._log = MagicMock()
        app._cluster = MagicMock()
        app._start_cache()

        with pytest.raises(_ComponentError) as exc_info:
            app._start_provisioner()

        assert exc_info.value.component == "provisioner"

    async def test_rest_server_runs_as_background_task(self, tmp_path: Path) -> None:
        app = _make_app(tmp_path)
        app._provisioner = MagicMock()

        server = MagicMock()
        server.serve = AsyncMock()
        uvicorn_mock = MagicMock()
        uvicorn_mock.Server.return_value = server

        with (
            patch.dict("sys.modules", {"uvicorn": uvicorn_mock}),
            patch("userpods.api.build_app", return_value=MagicMock()) as build_app,
        ):
            await app._start_rest()
            await asyncio.gather(*app._background_tasks)

        build_app.assert_called_once_with(provisioner=app._provisioner, config=app.config)
        assert uvicorn_mock.Config.call_args.kwargs["port"] == 8080
        server.serve.assert_awaited_once()
        assert app._rest_server is server


# ---------------------------------------------------------------------------
# stop()
# ---------------------------------------------------------------------------


class TestStop:
    async def test_stop_never_started_is_noop(self) -> None:
        await UserPodsApp().stop()

    async def test_stop_cancels_background_tasks(self, tmp_path: Path) -> None:
        app = _make_app(tmp_path)
        app._running = True

        async def _forever() -> None:
            await asyncio.sleep(3600)

        task = asyncio.create_task(_forever(), name="fake-rest")
        app._background_tasks = [task]
        server = MagicMock()
        app._rest_server = server

        await app.stop()

        assert task.cancelled()
        assert app._background_tasks == []
        assert server.should_exit is True
        assert app.running is False

    async def test_stop_stops_provisioner_and_closes_client(self, tmp_path: Path) -> None:
        app = _make_app(tmp_path)
        app._running = True
        provisioner = MagicMock()
        provisioner.stop = MagicMock(return_value=None)
        cluster = MagicMock()
        cluster.api.api_client.close = AsyncMock()
        app._provisioner = provisioner
        app._cluster = cluster

        await app.stop()

        provisioner.stop.assert_called_once()
        cluster.api.api_client.close.assert_awaited_once()
        assert app._cluster is None

    async def test_stop_component_handles_timeout(self, tmp_path: Path) -> None:
        app = _make_app(tmp_path)

        async def _slow_stop() -> None:
            await asyncio.sleep(9999)

        component = MagicMock()
        component.stop = _slow_stop

        with patch("userpods.app._SHUTDOWN_GRACE_SECONDS", 0.01):
            await app._stop_component("slow-component", component)

        app._log.warning.assert_called_once()
        assert app._log.warning.call_args.kwargs["component"] == "slow-component"

    async def test_stop_component_handles_exception(self, tmp_path: Path) -> None:
        app = _make_app(tmp_path)
        component = MagicMock()
        component.stop = MagicMock(side_effect=RuntimeError("stop failed"))

        await app._stop_component("provisioner", component)

        app._log.error.assert_called_once()
        assert "stop failed" in app._log.error.call_args.kwargs["error"]


# ---------------------------------------------------------------------------
# main()
# ---------------------------------------------------------------------------


class TestMain:
    async def test_startup_failure_exits_one(self) -> None:
        app = MagicMock()
        app.start = AsyncMock(side_effect=_ComponentError("config", ValueError("bad")))
        app.stop = AsyncMock()
        app.running = False

        loop = asyncio.get_running_loop()
        with (
            patch("userpods.app.UserPodsApp", return_value=app),
            patch.object(loop, "add_signal_handler") as add_signal_handler,
            patch("userpods.app.get_logger", return_value=MagicMock()),
            pytest.raises(SystemExit) as exc_info,
        ):
            await main()

        assert exc_info.value.code == 1
        app.stop.assert_awaited_once()
        assert add_signal_handler.call_count == 2
