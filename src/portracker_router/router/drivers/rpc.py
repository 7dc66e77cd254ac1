"""UCI driver over LuCI's JSON-RPC endpoint.

Requires the ``luci-mod-rpc`` package on the router. Each call is a POST of
``{"id": n, "method": ..., "params": [...]}`` to
``{base_url}{rpc_path}/{group}`` where *group* is ``auth``, ``uci`` or
``sys``. The token returned by ``auth.login`` is sent in the
``X-LuCI-Auth`` header on every later call.
"""

from __future__ import annotations

import itertools
import logging
from typing import Any, Sequence

import httpx

from portracker_router.errors import (
    AuthenticationError,
    CommandExecutionError,
    RouterError,
    RpcTimeoutError,
    RpcTransportError,
    TransportUnavailable,
)
from portracker_router.models import ConnectionResult, SystemInfo, TransportMode
from portracker_router.router.address import RouterEndpoint
from portracker_router.router.drivers.base import UciDriver
from portracker_router.router.rules import UCI_CONFIG, UCI_SECTION_TYPE

logger = logging.getLogger(__name__)

AUTH_HEADER = "X-LuCI-Auth"
DEFAULT_TIMEOUT = 10.0


class LuciRpcDriver(UciDriver):
    """Port-forwarding driver using the LuCI JSON-RPC API.

    Parameters
    ----------
    endpoint:
        Base URL and RPC path of the router's LuCI installation.
    username, password:
        LuCI login credentials.
    timeout:
        Per-request timeout in seconds. Timeouts are not retried.
    client:
        Optional pre-built ``httpx.AsyncClient`` (used by tests). A client
        passed in is not closed by :meth:`close`.
    """

    mode = TransportMode.RPC

    def __init__(
        self,
        endpoint: RouterEndpoint,
        username: str,
        password: str,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._endpoint = endpoint
        self._username = username
        self._password = password
        self._timeout = timeout
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._token: str | None = None
        self._ids = itertools.count(1)

    def __repr__(self) -> str:
        return f"LuciRpcDriver({self._endpoint.base_url}{self._endpoint.rpc_path})"

    @property
    def token(self) -> str | None:
        return self._token

    # -- transport -------------------------------------------------------

    async def call_rpc(
        self, group: str, method: str, params: Sequence[Any] = (),
    ) -> dict[str, Any]:
        """POST one JSON-RPC envelope and return the decoded response body."""
        url = f"{self._endpoint.base_url}{self._endpoint.rpc_path}/{group}"
        payload = {"id": next(self._ids), "method": method, "params": list(params)}
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers[AUTH_HEADER] = self._token

        try:
            response = await self._client.post(
                url, json=payload, headers=headers, timeout=self._timeout,
            )
        except httpx.TimeoutException as exc:
            raise RpcTimeoutError(
                f"RPC call {group}.{method} timed out after {self._timeout}s"
            ) from exc
        except httpx.TransportError as exc:
            raise TransportUnavailable(f"Cannot reach {url}: {exc}") from exc

        if response.is_error:
            raise RpcTransportError(
                response.status_code,
                f"HTTP {response.status_code}: {response.reason_phrase}",
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise RpcTransportError(
                response.status_code, f"Malformed RPC response from {url}",
            ) from exc
        if not isinstance(body, dict):
            raise RpcTransportError(response.status_code, f"Malformed RPC response from {url}")
        return body

    async def authenticate(self) -> str:
        """Log in and store the session token."""
        try:
            body = await self.call_rpc("auth", "login", [self._username, self._password])
        except RpcTransportError as exc:
            raise AuthenticationError(f"Authentication failed: {exc}") from exc

        error = body.get("error")
        token = body.get("result")
        if error is not None:
            raise AuthenticationError(f"Authentication failed: {error}")
        if not token or not isinstance(token, str):
            raise AuthenticationError("Authentication failed: invalid username or password")

        self._token = token
        logger.info("Authenticated with LuCI RPC at %s", self._endpoint.base_url)
        return token

    async def _call_checked(self, group: str, method: str, *params: Any) -> Any:
        if self._token is None:
            await self.authenticate()
        body = await self.call_rpc(group, method, params)
        error = body.get("error")
        result = body.get("result")
        if error is not None or result is False:
            detail = str(error) if error is not None else "call returned false"
            raise CommandExecutionError(
                f"{group}.{method} failed: {detail}", exit_code=None, stderr=detail,
            )
        return result

    async def _uci(self, method: str, *params: Any) -> Any:
        return await self._call_checked("uci", method, *params)

    # -- driver ----------------------------------------------------------

    async def test_connection(self) -> ConnectionResult:
        try:
            await self.authenticate()
        except RouterError as exc:
            logger.debug("LuCI RPC connection test failed: %s", exc)
            return ConnectionResult(success=False, message=str(exc), mode=self.mode)
        return ConnectionResult(
            success=True, message="Connected via LuCI RPC", mode=self.mode,
        )

    async def get_system_info(self) -> SystemInfo:
        """Best-effort hostname, uptime and memory summary."""
        try:
            hostname = await self._uci("get", "system", "@system[0]", "hostname")
            uptime = await self._call_checked("sys", "exec", "uptime")
            memory = await self._call_checked(
                "sys", "exec", "grep -E 'MemTotal|MemFree' /proc/meminfo",
            )
        except RouterError as exc:
            logger.warning("Failed to get system info: %s", exc)
            return SystemInfo()
        return SystemInfo(
            hostname=str(hostname or "Unknown").strip(),
            uptime=str(uptime or "Unknown").strip(),
            memory=str(memory or "Unknown").strip(),
        )

    async def close(self) -> None:
        self._token = None
        if self._owns_client:
            await self._client.aclose()

    # -- primitives ------------------------------------------------------

    async def _load_redirects(self) -> dict[str, dict[str, Any]]:
        result = await self._uci("get_all", UCI_CONFIG)
        sections: dict[str, dict[str, Any]] = {}
        for key, section in (result or {}).items():
            if not isinstance(section, dict) or section.get(".type") != UCI_SECTION_TYPE:
                continue
            sections[section.get(".name", key)] = {
                k: v for k, v in section.items() if not k.startswith(".")
            }
        return sections

    async def _uci_add(self, config: str, section_type: str) -> str:
        result = await self._uci("add", config, section_type)
        return str(result) if result else f"@{section_type}[-1]"

    async def _uci_rename(self, config: str, section: str, name: str) -> None:
        await self._uci("rename", config, section, name)

    async def _uci_set(self, config: str, section: str, option: str, value: str) -> None:
        await self._uci("set", config, section, option, value)

    async def _uci_delete(self, config: str, section: str) -> None:
        await self._uci("delete", config, section)

    async def _uci_commit(self, config: str) -> None:
        await self._uci("commit", config)

    async def _reload_firewall(self) -> None:
        await self._call_checked("sys", "exec", "/etc/init.d/firewall reload")
