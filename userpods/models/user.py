"""User identity and the deterministic names derived from it.

Every resource a user owns is found through these names and label
selectors; there is no separate index.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass


@dataclass(frozen=True)
class User:
    """A platform user identified by ``name@domain`` (domain optional)."""

    user_id: str = ""
    name: str = ""
    domain: str = ""

    @classmethod
    def from_id(cls, user_id: str) -> User:
        if not user_id:
            return cls()
        name, _, domain = user_id.partition("@")
        return cls(user_id=user_id, name=name, domain=domain)

    @classmethod
    def from_labels(cls, labels: Mapping[str, str] | None) -> User:
        """Rebuild the owner from a resource's ``user`` and ``domain`` labels."""
        labels = labels or {}
        name = labels.get("user", "")
        if not name:
            return cls()
        domain = labels.get("domain", "")
        return cls.from_id(f"{name}@{domain}" if domain else name)

    @property
    def user_string(self) -> str:
        """The user id made safe for resource names."""
        return self.user_id.replace("@", "-").replace(".", "-")

    @property
    def storage_name(self) -> str:
        """Name shared by the user's storage PV and PVC."""
        return f"user-storage-{self.user_string}"

    @property
    def pod_selector(self) -> str:
        """Label selector for the user's pods; empty (all pods) for the anonymous user."""
        if not self.user_id:
            return ""
        return f"user={self.name},domain={self.domain}"

    @property
    def storage_selector(self) -> str:
        return f"name={self.storage_name}"

    def owner_labels(self) -> dict[str, str]:
        return {"user": self.name, "domain": self.domain}
