"""Pydantic request/response models for the userpods REST API.

All models use Pydantic v2 syntax.  Field descriptions are also used
by FastAPI to generate the OpenAPI spec.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

from userpods.models.resources import PodInfo
from userpods.provisioning import ProvisioningResult

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class CreatePodRequest(BaseModel):
    """Request body for ``POST /api/v1/pods``."""

    user_id: str = Field(
        ...,
        description="Owner of the new pod, ``name@domain`` or a bare name.",
        examples=["alice@example.org"],
    )
    manifest: dict[str, Any] = Field(
        ...,
        description="Pod manifest in Kubernetes JSON form (camelCase keys).",
    )
    storage_server: str = Field(
        default="",
        description="NFS server backing the user's storage, required when the pod mounts it.",
        examples=["10.0.0.12"],
    )

    @field_validator("user_id")
    @classmethod
    def validate_user_id(cls, value: str) -> str:
        """Reject blank user ids; pods are always owned."""
        if not value.strip():
            raise ValueError("user_id must not be empty")
        return value.strip()


class StorageRequest(BaseModel):
    """Request body for ``POST /api/v1/storage``."""

    user_id: str = Field(..., examples=["alice@example.org"])
    storage_server: str = Field(..., examples=["10.0.0.12"])

    @field_validator("user_id", "storage_server")
    @classmethod
    def validate_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be empty")
        return value.strip()


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class HealthStatus(BaseModel):
    """Response body for ``GET /healthz``."""

    status: str = Field(
        ...,
        description="Always ``ok`` while the process is running.",
        examples=["ok"],
    )
    version: str = Field(..., examples=["0.1.0"])
    namespace: str = Field(..., examples=["sciencedata-dev"])


class ErrorResponse(BaseModel):
    """Standard error envelope returned for all 4xx and 5xx responses."""

    error: str = Field(
        ...,
        description="Machine-readable error code.",
        examples=["INVALID_MANIFEST", "PROVISIONING_REJECTED", "POD_NOT_FOUND", "INTERNAL_ERROR"],
    )
    detail: str = Field(..., description="Human-readable description of the error.")


class PodInfoResponse(BaseModel):
    """Serialised PodInfo for ``GET /api/v1/pods``."""

    pod_name: str
    container_name: str
    image_name: str
    pod_ip: str
    node_ip: str
    owner: str
    age: str
    status: str
    url: str = ""
    tokens: dict[str, str] = Field(default_factory=dict)
    k8s_pod_info: dict[str, str] = Field(default_factory=dict)

    @classmethod
    def from_info(cls, info: PodInfo) -> PodInfoResponse:
        return cls(
            pod_name=info.pod_name,
            container_name=info.container_name,
            image_name=info.image_name,
            pod_ip=info.pod_ip,
            node_ip=info.node_ip,
            owner=info.owner,
            age=info.age,
            status=info.status,
            url=info.url,
            tokens=dict(info.tokens),
            k8s_pod_info=dict(info.k8s_pod_info),
        )


class ProvisioningResponse(BaseModel):
    """Outcome of a create or delete request."""

    name: str
    ready: bool = Field(..., description="True only if every dependent resource reached its condition.")
    dependencies: dict[str, bool] = Field(
        default_factory=dict,
        description="Per-resource outcome keyed ``<Kind>/<name>``.",
    )
    errors: list[str] = Field(default_factory=list)

    @classmethod
    def from_result(cls, result: ProvisioningResult) -> ProvisioningResponse:
        return cls(
            name=result.name,
            ready=result.ready,
            dependencies=dict(result.dependencies),
            errors=list(result.errors),
        )


class RefreshResponse(BaseModel):
    """Response body for ``POST /api/v1/pods/refresh``."""

    refreshed: int = Field(..., description="Number of running pods whose cache was re-extracted.")
