from typing import Any

import requests

DEFAULT_SERVER_URL = "http://localhost:8000"


def _error_detail(response: requests.Response) -> str:
    try:
        detail = response.json().get("detail")
    except ValueError:
        detail = None
    return f"{response.status_code} {detail or response.reason}"


def _request(
    method: str,
    path: str,
    server_url: str = DEFAULT_SERVER_URL,
    timeout: float = 30,
    **kwargs: Any,
) -> Any:
    """
    Send a request to the auto-update server and decode the JSON response.

    Raises:
        RuntimeError: On network failure or a non-2xx response
    """
    try:
        response = requests.request(method, f"{server_url}{path}", timeout=timeout, **kwargs)
    except requests.exceptions.RequestException as e:
        raise RuntimeError(f"Error contacting auto-update server: {e}") from e

    if not response.ok:
        raise RuntimeError(f"Server returned {_error_detail(response)}")
    if response.status_code == 204 or not response.content:
        return None
    return response.json()


def list_intents(server_url: str = DEFAULT_SERVER_URL) -> list[dict[str, Any]]:
    return _request("GET", "/intents", server_url)["intents"]


def get_intent(intent_id: str, server_url: str = DEFAULT_SERVER_URL) -> dict[str, Any]:
    return _request("GET", f"/intents/{intent_id}", server_url)


def create_intent(
    image_repo: str | None = None,
    stack_name: str | None = None,
    service_name: str | None = None,
    container_name: str | None = None,
    description: str | None = None,
    enabled: bool = False,
    server_url: str = DEFAULT_SERVER_URL,
) -> dict[str, Any]:
    """
    Create an intent.

    Exactly one criteria shape must be given: image_repo, stack_name plus
    service_name, or container_name. The server rejects anything else.
    """
    body: dict[str, Any] = {"enabled": enabled}
    for key, value in (
        ("imageRepo", image_repo),
        ("stackName", stack_name),
        ("serviceName", service_name),
        ("containerName", container_name),
        ("description", description),
    ):
        if value is not None:
            body[key] = value
    return _request("POST", "/intents", server_url, json=body)


def dry_run_intent(intent_id: str, server_url: str = DEFAULT_SERVER_URL) -> dict[str, Any]:
    """Dry-run an intent; nothing is upgraded."""
    return _request("POST", f"/intents/{intent_id}/test-match", server_url, timeout=120)


def set_intent_enabled(
    intent_id: str, enabled: bool, server_url: str = DEFAULT_SERVER_URL
) -> dict[str, Any]:
    action = "enable" if enabled else "disable"
    return _request("POST", f"/intents/{intent_id}/{action}", server_url)


def delete_intent(intent_id: str, server_url: str = DEFAULT_SERVER_URL) -> None:
    _request("DELETE", f"/intents/{intent_id}", server_url)


def list_intent_executions(
    intent_id: str, limit: int = 50, server_url: str = DEFAULT_SERVER_URL
) -> list[dict[str, Any]]:
    """Per-pass execution summaries for an intent, newest first."""
    return _request(
        "GET", f"/intents/{intent_id}/executions", server_url, params={"limit": limit}
    )["executions"]


def list_history(
    limit: int | None = None,
    offset: int = 0,
    container_name: str | None = None,
    status: str | None = None,
    server_url: str = DEFAULT_SERVER_URL,
) -> list[dict[str, Any]]:
    params: dict[str, Any] = {"offset": offset}
    if limit is not None:
        params["limit"] = limit
    if container_name:
        params["containerName"] = container_name
    if status:
        params["status"] = status
    return _request("GET", "/upgrade-history", server_url, params=params)["history"]


def get_history_record(record_id: str, server_url: str = DEFAULT_SERVER_URL) -> dict[str, Any]:
    return _request("GET", f"/upgrade-history/{record_id}", server_url)


def get_history_stats(
    endpoints: list[str] | None = None, server_url: str = DEFAULT_SERVER_URL
) -> dict[str, Any]:
    """Ledger stats, summary and charts, optionally restricted to endpoints."""
    params = [("endpoint", name) for name in endpoints or []]
    return _request("GET", "/upgrade-history/stats", server_url, params=params)


def upgrade_container(container_id: str, server_url: str = DEFAULT_SERVER_URL) -> dict[str, Any]:
    return _request(
        "POST", f"/containers/{container_id}/upgrade", server_url, timeout=900
    )


def run_batch_pass(server_url: str = DEFAULT_SERVER_URL) -> dict[str, Any]:
    """Trigger one batch pass; blocks until the pass finishes."""
    return _request("POST", "/auto-update/run", server_url, timeout=3600)
