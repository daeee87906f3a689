"""Thin asynchronous wrapper over the Kubernetes control plane."""

from userpods.k8s.client import ClusterClient, ExecResult

__all__ = ["ClusterClient", "ExecResult"]
