# src/tasksync/remote/client.py

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..core.errors import RemoteRejected, RemoteUnreachable
from ..core.ports import Session
from ..tasks.task_models import Task, normalize_task_list

logger = logging.getLogger(__name__)

# Statuses that say "try again later" rather than "this request is wrong".
_TRANSIENT_STATUSES = frozenset({408, 425, 429})


class StaticSession:
    """Opaque bearer credential handed in by whoever owns login/token storage."""

    def __init__(self, token: str | None = None) -> None:
        self._token = (token or "").strip() or None

    def credential(self) -> str | None:
        return self._token


def _is_transient_status(status_code: int) -> bool:
    return status_code >= 500 or status_code in _TRANSIENT_STATUSES


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return (response.text or "").strip()[:200]
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            val = body.get(key)
            if val:
                return str(val)[:200]
    return ""


def _make_timeout_obj(timeout_s: float) -> httpx.Timeout:
    connect_s = min(5.0, timeout_s)
    return httpx.Timeout(timeout_s, connect=connect_s)


class HttpRemoteAuthority:
    """
    REST client for the task authority.

    Routes:
    - POST   /tasks       -> {_id, ...task fields}
    - PUT    /tasks/{id}  -> updated fields
    - DELETE /tasks/{id}
    - GET    /tasks       -> {items: [...]} or a bare list

    Failures are mapped to RemoteUnreachable (transport, timeout, 5xx/408/425/429)
    or RemoteRejected (other 4xx). Nothing here touches local state.
    """

    def __init__(
            self,
            base_url: str,
            session: Session | None = None,
            *,
            timeout_seconds: float = 10.0,
            client: httpx.AsyncClient | None = None,
    ) -> None:
        if not base_url or not base_url.strip():
            raise ValueError("base_url is required")
        self._base_url = base_url.rstrip("/")
        self._session = session or StaticSession(None)
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            base_url=self._base_url,
            timeout=_make_timeout_obj(max(0.5, float(timeout_seconds))),
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        token = self._session.credential()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _request(
            self,
            method: str,
            path: str,
            *,
            json: dict[str, Any] | None = None,
            allow_not_found: bool = False,
    ) -> httpx.Response | None:
        try:
            response = await self._client.request(method, path, json=json, headers=self._headers())
        except httpx.TimeoutException as e:
            raise RemoteUnreachable(f"{method} {path}: timeout") from e
        except httpx.TransportError as e:
            raise RemoteUnreachable(f"{method} {path}: {e.__class__.__name__}: {e}") from e

        status = response.status_code
        if allow_not_found and status == 404:
            logger.debug("%s %s -> 404 (treated as already applied)", method, path)
            return None
        if _is_transient_status(status):
            raise RemoteUnreachable(f"{method} {path}: HTTP {status}")
        if status >= 400:
            raise RemoteRejected(status, _error_detail(response))

        logger.debug("%s %s -> %s", method, path, status)
        return response

    @staticmethod
    def _json_body(response: httpx.Response | None) -> Any:
        if response is None or not response.content:
            return {}
        try:
            return response.json()
        except ValueError:
            logger.warning("Non-JSON response body from %s", response.request.url)
            return {}

    async def create_task(self, payload: dict[str, Any]) -> dict[str, Any]:
        response = await self._request("POST", "/tasks", json=payload)
        body = self._json_body(response)
        status = response.status_code if response else 0
        if not isinstance(body, dict):
            raise RemoteRejected(status, "unexpected create response")
        task = body.get("task") if isinstance(body.get("task"), dict) else body
        if not str(task.get("_id", task.get("id")) or "").strip():
            raise RemoteRejected(status, "create response carries no task id")
        return body

    async def update_task(self, task_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        response = await self._request("PUT", f"/tasks/{task_id}", json=payload)
        body = self._json_body(response)
        return body if isinstance(body, dict) else {}

    async def delete_task(self, task_id: str) -> None:
        await self._request("DELETE", f"/tasks/{task_id}", allow_not_found=True)

    async def list_tasks(self) -> list[Task]:
        response = await self._request("GET", "/tasks")
        return normalize_task_list(self._json_body(response))

    async def ping(self) -> bool:
        """True when the authority answers at all (any HTTP status below 500)."""
        try:
            response = await self._client.request("GET", "/tasks", headers=self._headers())
        except httpx.HTTPError:
            return False
        return response.status_code < 500
