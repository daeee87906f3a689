"""userpods command-line interface.

Commands:
    userpods pods [--user ID] [--json]                  List pods via REST API.
    userpods create MANIFEST --user ID [--storage-server HOST]
                                                        Create a pod via REST API.
    userpods delete NAME --user ID                      Delete a pod via REST API.
    userpods refresh [--user ID]                        Re-extract pod metadata.
    userpods version                                    Print version and exit.
    userpods serve                                      Run the provisioning service.

All client commands call the REST API at http://localhost:8080 (configurable
via ``--api-url``).
"""

from __future__ import annotations

import asyncio
import json
from typing import IO

import click
import httpx

from userpods import __version__

_DEFAULT_API_URL = "http://localhost:8080"

# Provisioning requests block until every dependency is ready or timed out.
_PROVISIONING_TIMEOUT_S = 660.0

_PHASE_COLORS: dict[str, str] = {
    "Running": "green",
    "Pending": "yellow",
    "Succeeded": "cyan",
    "Failed": "red",
    "Unknown": "red",
}


def _styled_status(status: str) -> str:
    phase = status.split(":", 1)[0]
    return click.style(phase or "?", fg=_PHASE_COLORS.get(phase, "white"))


def _styled_ready(ready: bool) -> str:
    return click.style("ready", fg="green", bold=True) if ready else click.style("not ready", fg="red", bold=True)


# ---------------------------------------------------------------------------
# HTTP helpers
# ---------------------------------------------------------------------------


def _request(
    api_url: str,
    method: str,
    path: str,
    params: dict[str, str] | None = None,
    body: dict[str, object] | None = None,
    timeout: float = 30.0,
) -> object:
    """Perform a request and return the parsed JSON body.

    Raises click.ClickException on connection errors or non-2xx responses.
    """
    url = api_url.rstrip("/") + path
    try:
        with httpx.Client(timeout=timeout) as client:
            response = client.request(method, url, params=params or None, json=body)
        response.raise_for_status()
        return response.json()
    except httpx.ConnectError as err:
        raise click.ClickException(f"Cannot connect to userpods API at {api_url}. Is the server running?") from err
    except httpx.HTTPStatusError as exc:
        _handle_error_response(exc.response)
        raise


def _get(api_url: str, path: str, params: dict[str, str] | None = None) -> object:
    return _request(api_url, "GET", path, params=params)


def _post(api_url: str, path: str, body: dict[str, object], params: dict[str, str] | None = None) -> object:
    return _request(api_url, "POST", path, params=params, body=body, timeout=_PROVISIONING_TIMEOUT_S)


def _delete(api_url: str, path: str, params: dict[str, str] | None = None) -> object:
    return _request(api_url, "DELETE", path, params=params, timeout=_PROVISIONING_TIMEOUT_S)


def _handle_error_response(response: httpx.Response) -> None:
    """Parse an error response body and raise a friendly ClickException."""
    try:
        data: dict[str, object] = response.json()
        error_code = str(data.get("error", "ERROR"))
        detail = str(data.get("detail", "Unknown error"))
        msg = f"{error_code}: {detail}"
    except ValueError:
        msg = f"HTTP {response.status_code}: {response.text[:200]}"
    raise click.ClickException(msg)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--api-url",
    default=_DEFAULT_API_URL,
    envvar="USERPODS_API_URL",
    show_default=True,
    help="userpods REST API base URL.",
)
@click.pass_context
def cli(ctx: click.Context, api_url: str) -> None:
    """userpods - per-user pod provisioning."""
    ctx.ensure_object(dict)
    ctx.obj["api_url"] = api_url


@cli.command("version")
def cmd_version() -> None:
    """Print the userpods version and exit."""
    click.echo(f"userpods {__version__}")


# ---------------------------------------------------------------------------
# userpods pods
# ---------------------------------------------------------------------------


@cli.command("pods")
@click.option("--user", "user_id", default="", metavar="ID", help="Owner to list pods for.  Omit for all pods.")
@click.option("--json", "output_json", is_flag=True, default=False, help="Print raw JSON response.")
@click.pass_context
def cmd_pods(ctx: click.Context, user_id: str, output_json: bool) -> None:
    """List pods with their status and cached metadata."""
    params = {"user_id": user_id} if user_id else None
    data = _get(ctx.obj["api_url"], "/api/v1/pods", params=params)

    if output_json:
        click.echo(json.dumps(data, indent=2))
        return

    pods: list[dict[str, object]] = data if isinstance(data, list) else []
    if not pods:
        click.echo("No pods.")
        return
    for pod in pods:
        click.echo(
            f"{click.style(str(pod.get('pod_name', '?')), bold=True)}  "
            f"{_styled_status(str(pod.get('status', '')))}  "
            f"owner={pod.get('owner', '')}  age={pod.get('age', '')}  image={pod.get('image_name', '')}"
        )
        info: dict[str, str] = pod.get("k8s_pod_info", {})  # type: ignore[assignment]
        if info.get("sshPort"):
            click.echo(f"  ssh port: {info['sshPort']}")
        tokens: dict[str, str] = pod.get("tokens", {})  # type: ignore[assignment]
        if tokens:
            click.echo(f"  tokens: {', '.join(sorted(tokens))}")


# ---------------------------------------------------------------------------
# userpods create / delete / refresh
# ---------------------------------------------------------------------------


def _print_result(data: object) -> None:
    result: dict[str, object] = data if isinstance(data, dict) else {}
    click.echo(f"{click.style(str(result.get('name', '?')), bold=True)}: {_styled_ready(bool(result.get('ready')))}")
    dependencies: dict[str, bool] = result.get("dependencies", {})  # type: ignore[assignment]
    for dependency, ready in sorted(dependencies.items()):
        click.echo(f"  {dependency}: {_styled_ready(ready)}")
    errors: list[str] = result.get("errors", [])  # type: ignore[assignment]
    for error in errors:
        click.echo(click.style(f"  error: {error}", fg="yellow"))


@cli.command("create")
@click.argument("manifest", type=click.File("r"))
@click.option("--user", "user_id", required=True, metavar="ID", help="Owner of the new pod.")
@click.option("--storage-server", default="", metavar="HOST", help="NFS server for the user's storage.")
@click.pass_context
def cmd_create(ctx: click.Context, manifest: IO[str], user_id: str, storage_server: str) -> None:
    """Create a pod from a JSON MANIFEST file and wait until it is ready."""
    try:
        body = json.load(manifest)
    except ValueError as err:
        raise click.ClickException(f"Manifest is not valid JSON: {err}") from err
    data = _post(
        ctx.obj["api_url"],
        "/api/v1/pods",
        body={"user_id": user_id, "manifest": body, "storage_server": storage_server},
    )
    _print_result(data)
    if not isinstance(data, dict) or not data.get("ready"):
        ctx.exit(1)


@cli.command("delete")
@click.argument("name")
@click.option("--user", "user_id", required=True, metavar="ID", help="Owner of the pod.")
@click.pass_context
def cmd_delete(ctx: click.Context, name: str, user_id: str) -> None:
    """Delete pod NAME and wait until it is gone."""
    data = _delete(ctx.obj["api_url"], f"/api/v1/pods/{name}", params={"user_id": user_id})
    _print_result(data)
    if not isinstance(data, dict) or not data.get("ready"):
        ctx.exit(1)


@cli.command("refresh")
@click.option("--user", "user_id", default="", metavar="ID", help="Owner whose pods to refresh.  Omit for all.")
@click.pass_context
def cmd_refresh(ctx: click.Context, user_id: str) -> None:
    """Re-extract the cached metadata of running pods."""
    params = {"user_id": user_id} if user_id else None
    data = _post(ctx.obj["api_url"], "/api/v1/pods/refresh", body={}, params=params)
    refreshed = data.get("refreshed", 0) if isinstance(data, dict) else 0
    click.echo(f"Refreshed {refreshed} pod(s).")


# ---------------------------------------------------------------------------
# userpods serve
# ---------------------------------------------------------------------------


@cli.command("serve")
def cmd_serve() -> None:
    """Run the provisioning service until SIGTERM or SIGINT."""
    from userpods.app import main

    asyncio.run(main())


if __name__ == "__main__":
    cli()
