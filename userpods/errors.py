"""Exception types raised at userpods setup boundaries.

Readiness waits never raise; these exceptions are reserved for
configuration errors, watch setup failures, cache file I/O and
control-plane calls rejected synchronously.
"""

from __future__ import annotations


class UserPodsError(Exception):
    """Base class for all userpods errors."""


class UnsupportedResourceKindError(UserPodsError, ValueError):
    """Raised when a watch is requested for a kind or condition with no classifier."""

    def __init__(self, kind: str, condition: str = "") -> None:
        detail = f"{kind}/{condition}" if condition else kind
        super().__init__(f"Unsupported resource kind for watch: {detail}")
        self.kind = kind
        self.condition = condition


class WatchSetupError(UserPodsError):
    """Raised when a watch subscription cannot be opened.

    The session's signal has already been resolved ``False`` when this is raised.
    """

    def __init__(self, kind: str, name: str, cause: Exception) -> None:
        super().__init__(f"Could not open watch for {kind}/{name}: {cause}")
        self.kind = kind
        self.name = name
        self.cause = cause


class CacheStoreError(UserPodsError):
    """Raised when a pod cache file cannot be read or written."""

    def __init__(self, pod_name: str, cause: Exception) -> None:
        super().__init__(f"Pod cache I/O failed for {pod_name}: {cause}")
        self.pod_name = pod_name
        self.cause = cause


class ProvisioningError(UserPodsError):
    """Raised when a create or delete request is rejected before any wait starts."""


class PodNotFoundError(ProvisioningError):
    """Raised when a user asks to delete a pod they do not own."""

    def __init__(self, pod_name: str, user_id: str) -> None:
        super().__init__(f"Pod {pod_name} not found for user {user_id or '<all>'}")
        self.pod_name = pod_name
        self.user_id = user_id
