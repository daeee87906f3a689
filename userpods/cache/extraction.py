"""Extraction of pod-generated files into a :class:`PodCache`.

Any pod annotation whose value is ``copyForFrontend`` names a file
``/tmp/<key>`` that the pod's first container writes at startup. The file
is read with ``cat`` through remote exec, truncated to the byte limit, and
stored under ``tokens[<key>]``.

A :class:`RetryPolicy` bounds how hard each file is tried:

- :data:`NEW_POD_POLICY` gives a freshly started pod ten attempts one second
  apart to create the file.
- :data:`EXISTING_POD_POLICY` tries a running pod once; a miss is logged.
"""

from __future__ import annotations

import asyncio
import codecs
from dataclasses import dataclass
from typing import Any

from userpods.k8s.client import ClusterClient
from userpods.models.resources import PodCache
from userpods.observability.logging import get_logger
from userpods.observability.metrics import token_reads_total

COPY_FOR_FRONTEND = "copyForFrontend"
TOKEN_BYTE_LIMIT = 4096

_log = get_logger("cache.extraction")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded attempts with a fixed delay between them."""

    max_attempts: int
    delay_s: float = 0.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.delay_s < 0:
            raise ValueError("delay_s must not be negative")


NEW_POD_POLICY = RetryPolicy(max_attempts=10, delay_s=1.0)
EXISTING_POD_POLICY = RetryPolicy(max_attempts=1)


class TokenReadError(Exception):
    """A single attempt to read a file from a pod failed."""


def keys_to_copy(annotations: dict[str, str] | None) -> list[str]:
    """Return the annotation keys marked for extraction, in sorted order."""
    return sorted(key for key, value in (annotations or {}).items() if value == COPY_FOR_FRONTEND)


class TokenExtractor:
    """Reads annotated ``/tmp`` files out of running pods."""

    def __init__(self, cluster: ClusterClient, byte_limit: int = TOKEN_BYTE_LIMIT) -> None:
        self._cluster = cluster
        self._byte_limit = byte_limit

    async def read_file(self, pod_name: str, container: str, key: str) -> str:
        """Read ``/tmp/<key>`` once, truncated to the byte limit.

        Raises:
            TokenReadError: if exec fails or the file produced no output.
        """
        try:
            result = await self._cluster.exec_in_pod(pod_name, container, ["cat", f"/tmp/{key}"])
        except Exception as exc:
            raise TokenReadError(f"Couldn't call pod exec for pod {pod_name}: {exc}") from exc
        if not result.stdout:
            detail = result.stderr or result.error
            raise TokenReadError(f"Empty response. Stderr: {detail}")
        return _decode_truncated(result.stdout[: self._byte_limit])

    async def read_with_policy(self, pod_name: str, container: str, key: str, policy: RetryPolicy) -> str | None:
        """Read ``/tmp/<key>`` under ``policy``; None if every attempt failed.

        Each failed attempt is logged. Never raises for read failures.
        """
        for attempt in range(1, policy.max_attempts + 1):
            try:
                value = await self.read_file(pod_name, container, key)
            except TokenReadError as exc:
                token_reads_total.labels(result="error").inc()
                _log.warning(
                    "token_read_failed",
                    pod=pod_name,
                    key=key,
                    attempt=attempt,
                    max_attempts=policy.max_attempts,
                    error=str(exc),
                )
                if attempt < policy.max_attempts and policy.delay_s > 0:
                    await asyncio.sleep(policy.delay_s)
                continue
            token_reads_total.labels(result="ok").inc()
            if attempt > 1:
                _log.info("token_read_succeeded", pod=pod_name, key=key, attempt=attempt)
            return value

        _log.error("token_copy_gave_up", pod=pod_name, key=key, attempts=policy.max_attempts)
        return None

    async def fill_tokens(self, pod: Any, cache: PodCache, policy: RetryPolicy) -> PodCache:
        """Populate ``cache.tokens`` for every annotated key of ``pod``.

        Keys are read concurrently. A key whose reads all fail is left out of
        the cache rather than stored empty.
        """
        metadata = pod.metadata
        keys = keys_to_copy(metadata.annotations)
        if not keys:
            return cache
        containers = pod.spec.containers or []
        if not containers:
            _log.warning("token_pod_has_no_containers", pod=metadata.name)
            return cache
        container = containers[0].name

        values = await asyncio.gather(
            *(self.read_with_policy(metadata.name, container, key, policy) for key in keys)
        )
        for key, value in zip(keys, values, strict=True):
            if value is not None:
                cache.tokens[key] = value
        return cache


def _decode_truncated(data: bytes) -> str:
    """Decode UTF-8 cut at an arbitrary byte.

    A multi-byte character split by the cut is dropped; invalid bytes
    elsewhere become U+FFFD.
    """
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    return decoder.decode(data, final=False)
