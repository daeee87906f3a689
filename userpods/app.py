"""Process bootstrap for the userpods service.

``UserPodsApp`` builds the service bottom-up and tears it down top-down:

    config -> logging -> cluster client -> metadata cache -> provisioner -> REST

A failure while building any layer is fatal and surfaces as
``_ComponentError`` naming the layer.  Teardown never raises; each layer's
failure is logged and the remaining layers are still released.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING

from userpods import __version__
from userpods.config import load_config
from userpods.models.config import UserPodsConfig
from userpods.observability.logging import get_logger, setup_logging

if TYPE_CHECKING:
    from structlog.typing import FilteringBoundLogger

    from userpods.cache import PodMetadataCache
    from userpods.k8s import ClusterClient
    from userpods.provisioning import Provisioner

_SHUTDOWN_GRACE_SECONDS = 15
_LISTEN_HOST = "0.0.0.0"


class _ComponentError(Exception):
    """A layer of the service could not be built."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class UserPodsApp:
    """Owns the cluster client, metadata cache, provisioner and REST server.

    ``stop()`` is safe to call on an app that never started or has already
    stopped.
    """

    def __init__(self, config: UserPodsConfig | None = None) -> None:
        self.config: UserPodsConfig | None = config

        self._cluster: ClusterClient | None = None
        self._metadata: PodMetadataCache | None = None
        self._provisioner: Provisioner | None = None
        self._rest_server: object | None = None
        self._background_tasks: list[asyncio.Task[None]] = []

        self._running = False
        self._log: FilteringBoundLogger | None = None

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Build every layer in order.

        Raises _ComponentError for the first layer that fails.
        """
        if self.config is None:
            try:
                self.config = load_config()
            except ValueError as exc:
                raise _ComponentError("config", exc) from exc

        setup_logging(self.config.log.level, namespace=self.config.namespace)
        self._log = get_logger("app")
        self._log.info("app_starting", version=__version__)

        await self._start_k8s_client()
        self._start_cache()
        self._start_provisioner()
        await self._start_rest()

        self._running = True
        self._log.info("app_started", port=self.config.api.port)

    async def _start_k8s_client(self) -> None:
        """Load in-cluster credentials, falling back to the local kubeconfig."""
        assert self._log is not None and self.config is not None
        try:
            import kubernetes_asyncio.config as k8s_config

            from userpods.k8s import ClusterClient

            try:
                k8s_config.load_incluster_config()  # type: ignore[no-untyped-call]
                source = "in_cluster"
            except k8s_config.ConfigException:
                await k8s_config.load_kube_config()
                source = "kubeconfig"

            self._cluster = ClusterClient(namespace=self.config.namespace)
            self._log.info("k8s_client_configured", source=source)
        except Exception as exc:
            raise _ComponentError("k8s_client", exc) from exc

    def _start_cache(self) -> None:
        assert self._log is not None and self.config is not None and self._cluster is not None
        try:
            from userpods.cache import PodCacheStore, PodMetadataCache, TokenExtractor

            store = PodCacheStore(self.config.token_dir)
            extractor = TokenExtractor(self._cluster, byte_limit=self.config.token_byte_limit)
            self._metadata = PodMetadataCache(self._cluster, store, extractor)
            self._log.info(
                "pod_cache_ready",
                token_dir=str(self.config.token_dir),
                byte_limit=self.config.token_byte_limit,
            )
        except Exception as exc:
            raise _ComponentError("cache", exc) from exc

    def _start_provisioner(self) -> None:
        assert self._log is not None and self.config is not None
        assert self._cluster is not None and self._metadata is not None
        try:
            from userpods.provisioning import Provisioner

            self._provisioner = Provisioner(self._cluster, self.config, self._metadata)
            self._log.info(
                "provisioner_ready",
                create_timeout_s=self.config.timeouts.create_seconds,
                delete_timeout_s=self.config.timeouts.delete_seconds,
            )
        except Exception as exc:
            raise _ComponentError("provisioner", exc) from exc

    async def _start_rest(self) -> None:
        """Serve the REST API from a background task."""
        assert self._log is not None and self.config is not None and self._provisioner is not None
        try:
            import uvicorn

            from userpods.api import build_app

            server = uvicorn.Server(
                uvicorn.Config(
                    app=build_app(provisioner=self._provisioner, config=self.config),
                    host=_LISTEN_HOST,
                    port=self.config.api.port,
                    log_config=None,
                    access_log=False,
                )
            )
            self._background_tasks.append(asyncio.create_task(server.serve(), name="rest-server"))
            self._rest_server = server
            self._log.info("rest_api_listening", host=_LISTEN_HOST, port=self.config.api.port)
        except Exception as exc:
            raise _ComponentError("rest", exc) from exc

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Release every layer, REST first and cluster client last."""
        if not self._running and self._log is None:
            return

        log = self._log or get_logger("app")
        log.info("app_stopping")
        self._running = False

        if self._rest_server is not None and hasattr(self._rest_server, "should_exit"):
            self._rest_server.should_exit = True
        pending = [task for task in self._background_tasks if not task.done()]
        for task in pending:
            task.cancel()
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)
        self._background_tasks.clear()

        await self._stop_component("provisioner", self._provisioner)
        self._provisioner = None
        await self._stop_k8s_client()

        log.info("app_stopped")

    async def _stop_component(self, name: str, component: object | None) -> None:
        """Run ``component.stop()`` when it exists, bounded by the grace period."""
        stop_fn = getattr(component, "stop", None)
        if stop_fn is None:
            return
        log = self._log or get_logger("app")
        try:
            result = stop_fn()
            if asyncio.iscoroutine(result):
                await asyncio.wait_for(result, timeout=_SHUTDOWN_GRACE_SECONDS)
        except TimeoutError:
            log.warning("component_stop_timeout", component=name, timeout=_SHUTDOWN_GRACE_SECONDS)
        except Exception as exc:
            log.error("component_stop_failed", component=name, error=str(exc))

    async def _stop_k8s_client(self) -> None:
        """Close the connection pool behind the CoreV1Api."""
        if self._cluster is None:
            return
        try:
            await self._cluster.api.api_client.close()
        except Exception as exc:
            (self._log or get_logger("app")).debug("k8s_client_close_failed", error=str(exc))
        self._cluster = None


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main() -> None:
    """Run the service until SIGTERM or SIGINT."""
    app = UserPodsApp()
    shutdown = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown.set)

    try:
        await app.start()
        await shutdown.wait()
    except _ComponentError as exc:
        get_logger("app").critical("startup_failed", component=exc.component, error=str(exc.cause))
        await app.stop()
        raise SystemExit(1) from exc
    finally:
        if app.running:
            await app.stop()
