"""
identity_portal.directory.keycloak

Async client for the Keycloak admin REST API.

Responsibilities:
- Obtain and cache an admin token via client credentials (refreshed 30s before expiry).
- Proxy user, group and group-membership operations for one realm.
- Read and write the user attributes that back self-service SSH key registration.
- Translate Keycloak responses into the shared error taxonomy.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx

from identity_portal.directory.models import (
    CreateGroupRequest,
    CreateUserRequest,
    Group,
    UpdateGroupRequest,
    UpdateUserRequest,
    User,
)
from identity_portal.errors import (
    Conflict,
    InvalidRequest,
    NotFound,
    UpstreamUnavailable,
    validate_path_segment,
)
from identity_portal.observability.logging import get_logger
from identity_portal.observability.metrics import UPSTREAM_REQUESTS_TOTAL

log = get_logger(__name__)

_UPSTREAM = "keycloak"
_TOKEN_EXPIRY_BUFFER = 30.0


@dataclass(frozen=True, slots=True)
class _AdminToken:
    value: str
    refresh_at: float


class KeycloakAdminClient:
    def __init__(
        self,
        *,
        http: httpx.AsyncClient,
        realm: str,
        client_id: str,
        client_secret: str,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._http = http
        self._realm = validate_path_segment(realm)
        self._client_id = client_id
        self._client_secret = client_secret
        self._clock = clock
        self._token: _AdminToken | None = None
        self._lock = asyncio.Lock()

    # -- auth ----------------------------------------------------------------

    async def _admin_token(self) -> str:
        token = self._token
        if token is not None and self._clock() < token.refresh_at:
            return token.value
        async with self._lock:
            token = self._token
            if token is not None and self._clock() < token.refresh_at:
                return token.value
            token = await self._fetch_token()
            self._token = token
            return token.value

    async def _fetch_token(self) -> _AdminToken:
        try:
            resp = await self._http.post(
                f"/realms/{self._realm}/protocol/openid-connect/token",
                data={
                    "grant_type": "client_credentials",
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                },
            )
        except httpx.TransportError as e:
            UPSTREAM_REQUESTS_TOTAL.labels(_UPSTREAM, "admin_login", "error").inc()
            raise UpstreamUnavailable("identity provider unreachable", upstream=_UPSTREAM) from e
        if resp.status_code != 200:
            UPSTREAM_REQUESTS_TOTAL.labels(_UPSTREAM, "admin_login", "error").inc()
            log.error("keycloak_admin_login_failed", status=resp.status_code)
            raise UpstreamUnavailable(
                "identity provider rejected the admin credential",
                upstream=_UPSTREAM,
                bad_response=resp.status_code < 500,
            )
        body = resp.json()
        expires_in = float(body.get("expires_in", 60))
        UPSTREAM_REQUESTS_TOTAL.labels(_UPSTREAM, "admin_login", "ok").inc()
        log.info("keycloak_admin_token_refreshed", expires_in=expires_in)
        return _AdminToken(
            value=body["access_token"],
            refresh_at=self._clock() + max(expires_in - _TOKEN_EXPIRY_BUFFER, 0.0),
        )

    def _invalidate(self, value: str) -> None:
        token = self._token
        if token is not None and token.value == value:
            self._token = None

    # -- transport -----------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        *,
        operation: str,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        url = f"/admin/realms/{self._realm}{path}"
        for attempt in (1, 2):
            token = await self._admin_token()
            try:
                resp = await self._http.request(
                    method,
                    url,
                    json=json,
                    params=params,
                    headers={"Authorization": f"Bearer {token}"},
                )
            except httpx.TransportError as e:
                UPSTREAM_REQUESTS_TOTAL.labels(_UPSTREAM, operation, "error").inc()
                raise UpstreamUnavailable(
                    "identity provider unreachable", upstream=_UPSTREAM
                ) from e
            if resp.status_code == 401 and attempt == 1:
                # Token revoked or realm keys rotated; fetch a fresh one and retry once.
                self._invalidate(token)
                continue
            break

        self._raise_for_status(resp, operation)
        UPSTREAM_REQUESTS_TOTAL.labels(_UPSTREAM, operation, "ok").inc()
        return resp

    def _raise_for_status(self, resp: httpx.Response, operation: str) -> None:
        status = resp.status_code
        if status < 400:
            return
        UPSTREAM_REQUESTS_TOTAL.labels(_UPSTREAM, operation, "error").inc()
        detail = _error_message(resp)
        if status == 404:
            raise NotFound(detail or "resource not found")
        if status == 409:
            raise Conflict(detail or "resource already exists")
        if status == 400:
            raise InvalidRequest(detail or "identity provider rejected the request")
        if status in (401, 403):
            log.error("keycloak_admin_forbidden", operation=operation, status=status)
            raise UpstreamUnavailable(
                "admin credential lacks permission", upstream=_UPSTREAM, bad_response=True
            )
        raise UpstreamUnavailable(
            f"identity provider returned HTTP {status}", upstream=_UPSTREAM
        )

    # -- users ---------------------------------------------------------------

    async def list_users(
        self, *, first: int = 0, max_results: int = 100, search: str | None = None
    ) -> list[User]:
        params: dict[str, Any] = {"first": first, "max": max_results}
        if search:
            params["search"] = search
        resp = await self._request("GET", "/users", operation="list_users", params=params)
        return [User.from_keycloak(u) for u in resp.json()]

    async def _raw_user(self, user_id: str) -> dict[str, Any]:
        uid = _segment(user_id)
        resp = await self._request("GET", f"/users/{uid}", operation="get_user")
        return resp.json()

    async def get_user(self, user_id: str) -> User:
        return User.from_keycloak(await self._raw_user(user_id))

    async def create_user(self, req: CreateUserRequest) -> User:
        resp = await self._request(
            "POST", "/users", operation="create_user", json=req.to_keycloak()
        )
        location = resp.headers.get("location", "")
        user_id = location.rstrip("/").rsplit("/", 1)[-1]
        if not user_id:
            raise UpstreamUnavailable(
                "create user response has no Location", upstream=_UPSTREAM, bad_response=True
            )
        if req.password is not None:
            await self.reset_password(
                user_id, req.password.get_secret_value(), temporary=req.temporary_password
            )
        return await self.get_user(user_id)

    async def update_user(self, user_id: str, req: UpdateUserRequest) -> User:
        existing = await self._raw_user(user_id)
        merged = req.merge_into(existing)
        await self._request(
            "PUT", f"/users/{_segment(user_id)}", operation="update_user", json=merged
        )
        return User.from_keycloak(merged)

    async def delete_user(self, user_id: str) -> None:
        await self._request("DELETE", f"/users/{_segment(user_id)}", operation="delete_user")

    async def reset_password(self, user_id: str, password: str, *, temporary: bool = True) -> None:
        await self._request(
            "PUT",
            f"/users/{_segment(user_id)}/reset-password",
            operation="reset_password",
            json={"type": "password", "value": password, "temporary": temporary},
        )

    # -- group membership ----------------------------------------------------

    async def user_groups(self, user_id: str) -> list[Group]:
        resp = await self._request(
            "GET", f"/users/{_segment(user_id)}/groups", operation="user_groups"
        )
        return [Group.from_keycloak(g) for g in resp.json()]

    async def add_user_to_group(self, user_id: str, group_id: str) -> None:
        await self._request(
            "PUT",
            f"/users/{_segment(user_id)}/groups/{_segment(group_id)}",
            operation="add_user_to_group",
        )

    async def remove_user_from_group(self, user_id: str, group_id: str) -> None:
        await self._request(
            "DELETE",
            f"/users/{_segment(user_id)}/groups/{_segment(group_id)}",
            operation="remove_user_from_group",
        )

    # -- groups --------------------------------------------------------------

    async def list_groups(self, *, search: str | None = None) -> list[Group]:
        params = {"search": search} if search else None
        resp = await self._request("GET", "/groups", operation="list_groups", params=params)
        return [Group.from_keycloak(g) for g in resp.json()]

    async def _raw_group(self, group_id: str) -> dict[str, Any]:
        resp = await self._request("GET", f"/groups/{_segment(group_id)}", operation="get_group")
        return resp.json()

    async def get_group(self, group_id: str) -> Group:
        return Group.from_keycloak(await self._raw_group(group_id))

    async def group_members(self, group_id: str) -> list[User]:
        resp = await self._request(
            "GET", f"/groups/{_segment(group_id)}/members", operation="group_members"
        )
        return [User.from_keycloak(u) for u in resp.json()]

    async def create_group(self, req: CreateGroupRequest) -> Group:
        resp = await self._request(
            "POST", "/groups", operation="create_group", json={"name": req.name}
        )
        group_id = resp.headers.get("location", "").rstrip("/").rsplit("/", 1)[-1]
        if not group_id:
            raise UpstreamUnavailable(
                "create group response has no Location", upstream=_UPSTREAM, bad_response=True
            )
        return await self.get_group(group_id)

    async def update_group(self, group_id: str, req: UpdateGroupRequest) -> Group:
        existing = await self._raw_group(group_id)
        merged = {**existing, "name": req.name}
        await self._request(
            "PUT", f"/groups/{_segment(group_id)}", operation="update_group", json=merged
        )
        return await self.get_group(group_id)

    async def delete_group(self, group_id: str) -> None:
        await self._request("DELETE", f"/groups/{_segment(group_id)}", operation="delete_group")

    # -- self service --------------------------------------------------------

    async def find_user(self, username: str) -> dict[str, Any] | None:
        """Exact username lookup; returns the raw representation (with attributes)."""

        resp = await self._request(
            "GET",
            "/users",
            operation="find_user",
            params={"username": username, "exact": "true", "briefRepresentation": "false"},
        )
        for user in resp.json():
            if user.get("username") == username:
                return user
        return None

    async def set_user_attributes(self, user_id: str, updates: dict[str, str | None]) -> None:
        """Set (or, for None, remove) user attributes with one read-modify-write."""

        existing = await self._raw_user(user_id)
        attributes = dict(existing.get("attributes") or {})
        for name, value in updates.items():
            if value is None:
                attributes.pop(name, None)
            else:
                attributes[name] = [value]
        await self._request(
            "PUT",
            f"/users/{_segment(user_id)}",
            operation="set_user_attributes",
            json={**existing, "attributes": attributes},
        )


def _segment(value: str) -> str:
    return validate_path_segment(value)


def _error_message(resp: httpx.Response) -> str | None:
    try:
        body = resp.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        msg = body.get("errorMessage") or body.get("error_description") or body.get("error")
        return str(msg) if msg else None
    return None


# --- Module Notes -----------------------------------------------------------
# Authorization is not checked here; callers go through `directory.gateway`.
