"""On-disk store for pod metadata caches.

One JSON file per pod, named by pod name, under the configured token
directory::

    {"tokens": {"<annotation key>": "<value>"}, "otherResourceInfo": {"sshPort": "31022"}}

Saving removes any previous file for the pod and writes the new one with
mode 0600. Loading a pod that has no file yet is a cache miss and returns an
empty :class:`PodCache`. Concurrent writers to the same pod are not
coordinated; the last writer wins.
"""

from __future__ import annotations

import json
import os
from pathlib import Path

from userpods.errors import CacheStoreError
from userpods.models.resources import PodCache
from userpods.observability.logging import get_logger
from userpods.observability.metrics import cache_writes_total

_FILE_MODE = 0o600


class PodCacheStore:
    """Reads and writes :class:`PodCache` files keyed by pod name."""

    def __init__(self, directory: Path | str) -> None:
        self._dir = Path(directory)
        self._log = get_logger("cache.pod")

    @property
    def directory(self) -> Path:
        return self._dir

    def path_for(self, pod_name: str) -> Path:
        """Return the cache file path for ``pod_name``.

        Raises:
            ValueError: if the name could escape the cache directory.
        """
        if not pod_name or "/" in pod_name or pod_name in (".", ".."):
            raise ValueError(f"Invalid pod name for cache file: {pod_name!r}")
        return self._dir / pod_name

    def save(self, pod_name: str, cache: PodCache) -> None:
        """Replace the pod's cache file with ``cache``.

        Raises:
            CacheStoreError: on any filesystem error.
        """
        path = self.path_for(pod_name)
        payload = json.dumps(cache.to_dict(), sort_keys=True)
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            path.unlink(missing_ok=True)
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, _FILE_MODE)
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
        except OSError as exc:
            cache_writes_total.labels(result="error").inc()
            self._log.error("pod_cache_save_failed", pod=pod_name, error=str(exc))
            raise CacheStoreError(pod_name, exc) from exc
        cache_writes_total.labels(result="ok").inc()
        self._log.debug(
            "pod_cache_saved",
            pod=pod_name,
            tokens=len(cache.tokens),
            other_resource_info=len(cache.other_resource_info),
        )

    def load(self, pod_name: str) -> PodCache:
        """Read the pod's cache file; a missing file yields an empty cache.

        Raises:
            CacheStoreError: if the file exists but cannot be read or parsed.
        """
        path = self.path_for(pod_name)
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            self._log.debug("pod_cache_miss", pod=pod_name)
            return PodCache()
        except OSError as exc:
            raise CacheStoreError(pod_name, exc) from exc

        try:
            data = json.loads(text)
            if not isinstance(data, dict):
                raise ValueError("cache file does not contain an object")
            return PodCache.from_dict(data)
        except ValueError as exc:
            raise CacheStoreError(pod_name, exc) from exc

    def remove(self, pod_name: str) -> bool:
        """Delete the pod's cache file. Returns True if a file was removed.

        Raises:
            CacheStoreError: on filesystem errors other than a missing file.
        """
        path = self.path_for(pod_name)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise CacheStoreError(pod_name, exc) from exc
        self._log.debug("pod_cache_removed", pod=pod_name)
        return True
