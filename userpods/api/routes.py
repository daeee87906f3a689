"""FastAPI route handlers for the userpods REST API.

All routes are registered on a single APIRouter that ``build_app`` mounts
under the ``/api/v1`` prefix.

Error code conventions:
    400 INVALID_MANIFEST        -- submitted manifest is not a valid Pod
    400 PROVISIONING_REJECTED   -- request refused (image, missing name, API rejection)
    404 POD_NOT_FOUND           -- user owns no pod by that name
    500 INTERNAL_ERROR          -- unexpected server-side failure
A dependency that never became ready is not an error: the response is 200
with ``ready: false``.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from userpods.api.schemas import (
    CreatePodRequest,
    ErrorResponse,
    PodInfoResponse,
    ProvisioningResponse,
    RefreshResponse,
    StorageRequest,
)
from userpods.errors import PodNotFoundError, ProvisioningError
from userpods.models.user import User
from userpods.provisioning import Provisioner
from userpods.provisioning.manifests import pod_from_manifest

_log = structlog.get_logger(component="api.routes")

router = APIRouter()


def _error(status_code: int, error: str, detail: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, detail=detail).model_dump(),
    )


def _provisioner(request: Request) -> Provisioner:
    provisioner: Provisioner = request.app.state.provisioner
    return provisioner


# ---------------------------------------------------------------------------
# Pods
# ---------------------------------------------------------------------------


@router.get(
    "/pods",
    response_model=list[PodInfoResponse],
    summary="List a user's pods",
    description="Describes every pod owned by ``user_id``, or every pod when it is omitted.",
)
async def list_pods(request: Request, user_id: str = "") -> list[PodInfoResponse]:
    """``GET /api/v1/pods?user_id={id}``"""
    try:
        infos = await _provisioner(request).get_pod_infos(User.from_id(user_id))
    except Exception as exc:
        _log.error("list_pods_endpoint_error", user_id=user_id, error=str(exc))
        return _error(500, "INTERNAL_ERROR", "An unexpected error occurred.")  # type: ignore[return-value]
    return [PodInfoResponse.from_info(info) for info in infos]


@router.post(
    "/pods",
    response_model=ProvisioningResponse,
    summary="Create a pod",
    description=(
        "Creates the pod and every resource it depends on, and returns once all "
        "of them are ready or the first has timed out."
    ),
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def create_pod(request: Request, body: CreatePodRequest) -> ProvisioningResponse:
    """``POST /api/v1/pods``"""
    try:
        pod_body = await pod_from_manifest(body.manifest)
    except (ValueError, TypeError) as exc:
        return _error(400, "INVALID_MANIFEST", str(exc))  # type: ignore[return-value]

    try:
        result = await _provisioner(request).create_pod(User.from_id(body.user_id), pod_body, body.storage_server)
    except ProvisioningError as exc:
        _log.warning("create_pod_rejected", user_id=body.user_id, error=str(exc))
        return _error(400, "PROVISIONING_REJECTED", str(exc))  # type: ignore[return-value]
    except Exception as exc:
        _log.error("create_pod_endpoint_error", user_id=body.user_id, error=str(exc))
        return _error(500, "INTERNAL_ERROR", "An unexpected error occurred.")  # type: ignore[return-value]
    return ProvisioningResponse.from_result(result)


@router.post(
    "/pods/refresh",
    response_model=RefreshResponse,
    summary="Refresh pod metadata",
    description="Re-extracts the cached tokens of the user's running pods, one attempt each.",
)
async def refresh_pods(request: Request, user_id: str = "") -> RefreshResponse:
    """``POST /api/v1/pods/refresh?user_id={id}``"""
    try:
        refreshed = await _provisioner(request).refresh_caches(User.from_id(user_id))
    except Exception as exc:
        _log.error("refresh_endpoint_error", user_id=user_id, error=str(exc))
        return _error(500, "INTERNAL_ERROR", "An unexpected error occurred.")  # type: ignore[return-value]
    return RefreshResponse(refreshed=refreshed)


@router.delete(
    "/pods/{name}",
    response_model=ProvisioningResponse,
    summary="Delete a pod",
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
async def delete_pod(request: Request, name: str, user_id: str) -> ProvisioningResponse:
    """``DELETE /api/v1/pods/{name}?user_id={id}``"""
    if not user_id.strip():
        return _error(400, "PROVISIONING_REJECTED", "user_id must not be empty")  # type: ignore[return-value]
    try:
        result = await _provisioner(request).delete_pod(User.from_id(user_id), name)
    except PodNotFoundError as exc:
        return _error(404, "POD_NOT_FOUND", str(exc))  # type: ignore[return-value]
    except ProvisioningError as exc:
        _log.warning("delete_pod_rejected", pod=name, error=str(exc))
        return _error(400, "PROVISIONING_REJECTED", str(exc))  # type: ignore[return-value]
    except Exception as exc:
        _log.error("delete_pod_endpoint_error", pod=name, error=str(exc))
        return _error(500, "INTERNAL_ERROR", "An unexpected error occurred.")  # type: ignore[return-value]
    return ProvisioningResponse.from_result(result)


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


@router.post(
    "/storage",
    response_model=ProvisioningResponse,
    summary="Ensure a user's storage exists",
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def ensure_storage(request: Request, body: StorageRequest) -> ProvisioningResponse:
    """``POST /api/v1/storage``"""
    try:
        result = await _provisioner(request).ensure_user_storage(User.from_id(body.user_id), body.storage_server)
    except ProvisioningError as exc:
        return _error(400, "PROVISIONING_REJECTED", str(exc))  # type: ignore[return-value]
    except Exception as exc:
        _log.error("ensure_storage_endpoint_error", user_id=body.user_id, error=str(exc))
        return _error(500, "INTERNAL_ERROR", "An unexpected error occurred.")  # type: ignore[return-value]
    return ProvisioningResponse.from_result(result)


@router.delete(
    "/storage",
    response_model=ProvisioningResponse,
    summary="Delete a user's storage",
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def delete_storage(request: Request, user_id: str) -> ProvisioningResponse:
    """``DELETE /api/v1/storage?user_id={id}``"""
    if not user_id.strip():
        return _error(400, "PROVISIONING_REJECTED", "user_id must not be empty")  # type: ignore[return-value]
    try:
        result = await _provisioner(request).delete_user_storage(User.from_id(user_id))
    except ProvisioningError as exc:
        return _error(400, "PROVISIONING_REJECTED", str(exc))  # type: ignore[return-value]
    except Exception as exc:
        _log.error("delete_storage_endpoint_error", user_id=user_id, error=str(exc))
        return _error(500, "INTERNAL_ERROR", "An unexpected error occurred.")  # type: ignore[return-value]
    return ProvisioningResponse.from_result(result)
