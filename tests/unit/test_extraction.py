"""Unit tests for userpods.cache.extraction."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from kubernetes_asyncio import client
from structlog.testing import capture_logs

from userpods.cache.extraction import (
    EXISTING_POD_POLICY,
    NEW_POD_POLICY,
    RetryPolicy,
    TokenExtractor,
    TokenReadError,
    keys_to_copy,
)
from userpods.k8s.client import ExecResult
from userpods.models.resources import PodCache

_MISSING = ExecResult(stdout=b"", stderr="cat: /tmp/jupyterToken: No such file or directory")


def _cluster(*results: ExecResult | Exception) -> MagicMock:
    cluster = MagicMock()
    cluster.exec_in_pod = AsyncMock(side_effect=list(results))
    return cluster


def _pod(annotations: dict[str, str]) -> client.V1Pod:
    return client.V1Pod(
        metadata=client.V1ObjectMeta(name="alice-pod", annotations=annotations),
        spec=client.V1PodSpec(
            containers=[
                client.V1Container(name="jupyter", image="jupyter"),
                client.V1Container(name="sidecar", image="sidecar"),
            ]
        ),
    )


class TestRetryPolicy:
    def test_builtin_policies(self) -> None:
        assert NEW_POD_POLICY == RetryPolicy(max_attempts=10, delay_s=1.0)
        assert EXISTING_POD_POLICY.max_attempts == 1

    def test_rejects_zero_attempts(self) -> None:
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)

    def test_rejects_negative_delay(self) -> None:
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=1, delay_s=-1.0)


class TestKeysToCopy:
    def test_only_marked_keys(self) -> None:
        annotations = {"sshPublicKey": "copyForFrontend", "note": "hello", "jupyterToken": "copyForFrontend"}
        assert keys_to_copy(annotations) == ["jupyterToken", "sshPublicKey"]

    def test_no_annotations(self) -> None:
        assert keys_to_copy(None) == []


class TestReadFile:
    async def test_reads_with_cat(self) -> None:
        cluster = _cluster(ExecResult(stdout=b"abc123\n", stderr=""))
        value = await TokenExtractor(cluster).read_file("alice-pod", "jupyter", "jupyterToken")
        assert value == "abc123\n"
        cluster.exec_in_pod.assert_awaited_once_with("alice-pod", "jupyter", ["cat", "/tmp/jupyterToken"])

    async def test_truncates_to_byte_limit(self) -> None:
        cluster = _cluster(ExecResult(stdout=b"x" * 5000, stderr=""))
        value = await TokenExtractor(cluster).read_file("alice-pod", "jupyter", "jupyterToken")
        assert len(value.encode()) == 4096

    async def test_exact_limit_is_kept(self) -> None:
        cluster = _cluster(ExecResult(stdout=b"y" * 4096, stderr=""))
        value = await TokenExtractor(cluster).read_file("alice-pod", "jupyter", "jupyterToken")
        assert value == "y" * 4096

    async def test_truncation_drops_split_character(self) -> None:
        payload = b"a" + "é".encode() * 3000
        cluster = _cluster(ExecResult(stdout=payload, stderr=""))
        value = await TokenExtractor(cluster).read_file("alice-pod", "jupyter", "jupyterToken")
        assert value == "a" + "é" * 2047

    async def test_invalid_bytes_are_marked_not_dropped(self) -> None:
        cluster = _cluster(ExecResult(stdout=b"ab\xffcd", stderr=""))
        value = await TokenExtractor(cluster).read_file("alice-pod", "jupyter", "jupyterToken")
        assert value == "ab\ufffdcd"

    async def test_custom_limit(self) -> None:
        cluster = _cluster(ExecResult(stdout=b"abcdef", stderr=""))
        value = await TokenExtractor(cluster, byte_limit=3).read_file("alice-pod", "jupyter", "k")
        assert value == "abc"

    async def test_empty_output_is_a_failure(self) -> None:
        with pytest.raises(TokenReadError, match="No such file"):
            await TokenExtractor(_cluster(_MISSING)).read_file("alice-pod", "jupyter", "jupyterToken")

    async def test_exec_error_is_a_failure(self) -> None:
        cluster = _cluster(ConnectionError("handshake failed"))
        with pytest.raises(TokenReadError, match="handshake failed"):
            await TokenExtractor(cluster).read_file("alice-pod", "jupyter", "jupyterToken")


class TestFillTokens:
    async def test_file_appears_on_sixth_attempt(self) -> None:
        cluster = _cluster(*([_MISSING] * 5), ExecResult(stdout=b"abc123", stderr=""))
        cache = PodCache()
        pod = _pod({"jupyterToken": "copyForFrontend"})

        with capture_logs() as logs:
            await TokenExtractor(cluster).fill_tokens(pod, cache, RetryPolicy(max_attempts=10, delay_s=0.0))

        assert cache.tokens == {"jupyterToken": "abc123"}
        failures = [entry for entry in logs if entry["event"] == "token_read_failed"]
        assert [entry["attempt"] for entry in failures] == [1, 2, 3, 4, 5]
        assert all(entry["log_level"] == "warning" for entry in failures)
        assert not [entry for entry in logs if entry["event"] == "token_copy_gave_up"]
        assert cluster.exec_in_pod.await_count == 6

    async def test_uses_first_container(self) -> None:
        cluster = _cluster(ExecResult(stdout=b"abc123", stderr=""))
        await TokenExtractor(cluster).fill_tokens(_pod({"jupyterToken": "copyForFrontend"}), PodCache(), NEW_POD_POLICY)
        assert cluster.exec_in_pod.await_args.args[1] == "jupyter"

    async def test_gives_up_and_leaves_key_absent(self) -> None:
        cluster = _cluster(*([_MISSING] * 3))
        cache = PodCache(tokens={"other": "kept"})

        with capture_logs() as logs:
            await TokenExtractor(cluster).fill_tokens(
                _pod({"jupyterToken": "copyForFrontend"}), cache, RetryPolicy(max_attempts=3)
            )

        assert cache.tokens == {"other": "kept"}
        gave_up = [entry for entry in logs if entry["event"] == "token_copy_gave_up"]
        assert len(gave_up) == 1
        assert gave_up[0]["log_level"] == "error"

    async def test_existing_pod_policy_tries_once(self) -> None:
        cluster = _cluster(_MISSING)
        cache = PodCache()

        with capture_logs() as logs:
            await TokenExtractor(cluster).fill_tokens(
                _pod({"jupyterToken": "copyForFrontend"}), cache, EXISTING_POD_POLICY
            )

        assert cluster.exec_in_pod.await_count == 1
        assert cache.tokens == {}
        assert [entry["event"] for entry in logs if entry["log_level"] != "debug"] == [
            "token_read_failed",
            "token_copy_gave_up",
        ]

    async def test_waits_between_attempts(self) -> None:
        cluster = _cluster(_MISSING, _MISSING, ExecResult(stdout=b"abc123", stderr=""))
        sleep = AsyncMock()

        with patch("userpods.cache.extraction.asyncio.sleep", sleep):
            value = await TokenExtractor(cluster).read_with_policy(
                "alice-pod", "jupyter", "jupyterToken", RetryPolicy(max_attempts=3, delay_s=1.0)
            )

        assert value == "abc123"
        assert sleep.await_count == 2
        sleep.assert_awaited_with(1.0)

    async def test_each_key_is_read(self) -> None:
        cluster = MagicMock()

        async def exec_in_pod(pod_name: str, container: str, command: list[str]) -> ExecResult:
            return ExecResult(stdout=command[1].encode(), stderr="")

        cluster.exec_in_pod = AsyncMock(side_effect=exec_in_pod)
        cache = PodCache()
        pod = _pod({"jupyterToken": "copyForFrontend", "sshPublicKey": "copyForFrontend", "note": "x"})

        await TokenExtractor(cluster).fill_tokens(pod, cache, EXISTING_POD_POLICY)

        assert cache.tokens == {"jupyterToken": "/tmp/jupyterToken", "sshPublicKey": "/tmp/sshPublicKey"}

    async def test_no_marked_annotations_skips_exec(self) -> None:
        cluster = _cluster()
        await TokenExtractor(cluster).fill_tokens(_pod({"note": "x"}), PodCache(), NEW_POD_POLICY)
        cluster.exec_in_pod.assert_not_awaited()
