"""Unified router client with transport auto-detection.

The client probes SSH first (it needs nothing installed on the router) and
falls back to LuCI RPC. The first transport that passes its connection test
is pinned for the lifetime of the client; every later operation is a plain
dispatch to that driver.

State transitions::

    unbound -> probing_interactive -> bound
                                   -> probing_rpc -> bound
                                                  -> unreachable
    any state -> closed (after close())

An unreachable client fails every operation with
:class:`RouterUnreachableError` until :meth:`RouterClient.initialize` is
called again. A closed client fails every operation with
:class:`ClientClosedError`.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Mapping

from portracker_router.config import Settings
from portracker_router.errors import (
    ClientClosedError,
    RouterError,
    RouterUnreachableError,
    ValidationError,
)
from portracker_router.models import (
    ConnectionResult,
    DecryptedCredential,
    MutationResult,
    PortForwardingRule,
    RouterConfig,
    RuleInput,
    RuleUpdate,
    TransportMode,
)
from portracker_router.router.address import RouterAddress, parse_address, parse_router_url
from portracker_router.router.drivers.base import RouterDriver, check_native_id
from portracker_router.router.drivers.rpc import LuciRpcDriver
from portracker_router.router.drivers.ssh import SSHSession, SSHUciDriver
from portracker_router.router.rules import coerce_rule_input, coerce_rule_update
from portracker_router.secrets.codec import CredentialCodec

logger = logging.getLogger(__name__)


class ClientState(str, Enum):
    UNBOUND = "unbound"
    PROBING_INTERACTIVE = "probing_interactive"
    PROBING_RPC = "probing_rpc"
    BOUND = "bound"
    UNREACHABLE = "unreachable"
    CLOSED = "closed"


# Probe order when no transport is preferred.
_PROBE_ORDER = (TransportMode.INTERACTIVE, TransportMode.RPC)
_PROBE_STATES = {
    TransportMode.INTERACTIVE: ClientState.PROBING_INTERACTIVE,
    TransportMode.RPC: ClientState.PROBING_RPC,
}


class RouterClient:
    """Port-forwarding client bound to a single transport.

    Parameters
    ----------
    drivers:
        One driver per transport mode.
    preference:
        Bind this transport directly instead of probing. A failed
        connection then raises without trying the other transport.
    """

    def __init__(
        self,
        drivers: Mapping[TransportMode, RouterDriver],
        preference: TransportMode | None = None,
    ) -> None:
        if preference is not None and preference not in drivers:
            raise ValueError(f"No driver for preferred transport {preference.value}")
        self._drivers = dict(drivers)
        self._preference = preference
        self._state = ClientState.UNBOUND
        self._driver: RouterDriver | None = None
        self._causes: dict[str, str] = {}
        self._bound_message = ""

    def __repr__(self) -> str:
        mode = self.mode.value if self.mode else None
        return f"RouterClient(state={self._state.value}, mode={mode})"

    async def __aenter__(self) -> RouterClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def mode(self) -> TransportMode | None:
        return self._driver.mode if self._driver is not None else None

    @property
    def driver(self) -> RouterDriver | None:
        return self._driver

    # -- mode selection --------------------------------------------------

    async def _probe(self, mode: TransportMode) -> ConnectionResult:
        driver = self._drivers[mode]
        try:
            return await driver.test_connection()
        except RouterError as exc:
            return ConnectionResult(success=False, message=str(exc), mode=mode)

    async def initialize(self) -> None:
        """Select and pin a transport.

        Does nothing once a transport is pinned.

        Raises
        ------
        RouterUnreachableError:
            No transport could connect.
        ClientClosedError:
            The client was closed.
        """
        await self._bind()

    async def _bind(self) -> RouterDriver:
        if self._state is ClientState.CLOSED:
            raise ClientClosedError("Router client is closed")
        if self._state is ClientState.BOUND and self._driver is not None:
            return self._driver

        if self._preference is not None:
            order = [self._preference]
        else:
            order = [mode for mode in _PROBE_ORDER if mode in self._drivers]

        causes: dict[str, str] = {}
        for mode in order:
            self._state = _PROBE_STATES[mode]
            result = await self._probe(mode)
            if result.success:
                self._driver = self._drivers[mode]
                self._state = ClientState.BOUND
                self._causes = {}
                self._bound_message = result.message
                logger.info("Router transport pinned to %s: %s", mode.value, result.message)
                return self._driver
            logger.info("Router %s probe failed: %s", mode.value, result.message)
            causes[mode.value] = result.message

        self._state = ClientState.UNREACHABLE
        self._causes = causes
        raise self._unreachable()

    def _unreachable(self) -> RouterUnreachableError:
        detail = "; ".join(f"{mode}: {message}" for mode, message in self._causes.items())
        return RouterUnreachableError(
            f"Router unreachable ({detail})" if detail else "Router unreachable",
            causes=self._causes,
        )

    async def _bound(self) -> RouterDriver:
        if self._state is ClientState.UNREACHABLE:
            raise self._unreachable()
        return await self._bind()

    # -- operations ------------------------------------------------------

    async def test_connection(self) -> ConnectionResult:
        """Report reachability; never changes the pinned transport."""
        if self._state is ClientState.CLOSED:
            return ConnectionResult(success=False, message="Router client is closed")
        if self._state is ClientState.UNREACHABLE:
            return ConnectionResult(success=False, message=str(self._unreachable()))
        if self._driver is None:
            try:
                await self.initialize()
            except RouterUnreachableError as exc:
                return ConnectionResult(success=False, message=str(exc))
            return ConnectionResult(success=True, message=self._bound_message, mode=self.mode)

        result = await self._driver.test_connection()
        return ConnectionResult(success=result.success, message=result.message, mode=self.mode)

    async def list_rules(self) -> list[PortForwardingRule]:
        driver = await self._bound()
        return await driver.list_rules()

    async def add_rule(self, rule: RuleInput | dict[str, Any]) -> MutationResult:
        # Validate before probing so invalid input never touches the router.
        rule = coerce_rule_input(rule)
        driver = await self._bound()
        return await driver.add_rule(rule)

    async def update_rule(
        self, native_id: str, update: RuleUpdate | dict[str, Any],
    ) -> MutationResult:
        check_native_id(native_id)
        update = coerce_rule_update(update)
        driver = await self._bound()
        return await driver.update_rule(native_id, update)

    async def delete_rule(self, native_id: str) -> MutationResult:
        check_native_id(native_id)
        driver = await self._bound()
        return await driver.delete_rule(native_id)

    async def set_enabled(self, native_id: str, enabled: bool) -> MutationResult:
        check_native_id(native_id)
        driver = await self._bound()
        return await driver.set_enabled(native_id, enabled)

    async def close(self) -> None:
        """Close every driver and forget the credentials they hold.

        The client cannot be used afterwards. Closing twice is a no-op.
        """
        for driver in self._drivers.values():
            await driver.close()
        self._drivers.clear()
        self._driver = None
        self._state = ClientState.CLOSED


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

def _coerce_mode(value: TransportMode | str | None) -> TransportMode | None:
    if value is None or value == "":
        return None
    if isinstance(value, TransportMode):
        return value
    try:
        return TransportMode(str(value).lower())
    except ValueError as exc:
        raise ValidationError("transport_preference", f"Unknown transport: {value}") from exc


def create_client(
    config: DecryptedCredential | Mapping[str, Any],
    settings: Settings | None = None,
    transport_preference: TransportMode | str | None = None,
) -> RouterClient:
    """Build a :class:`RouterClient` for a decrypted credential.

    *config* is a :class:`DecryptedCredential` or a mapping with ``host``,
    ``port``, ``username``, ``password`` and optionally
    ``transport_preference``.

    The host may be a bare address (``192.168.1.1``, ``router.lan:2222``)
    or a LuCI URL (``https://192.168.1.1:8443``). For a bare address any
    port is the SSH port. For a URL the port belongs to the web server and
    SSH uses ``config.port`` or ``router.ssh_port``.
    """
    settings = settings or Settings()
    if isinstance(config, DecryptedCredential):
        credential = config
    else:
        transport_preference = transport_preference or config.get("transport_preference")
        credential = DecryptedCredential(
            host=config["host"],
            port=config.get("port"),
            username=config.get("username") or "",
            password=config.get("password") or "",
        )

    ssh_default = credential.port or settings.router.ssh_port
    if "://" in credential.host:
        ssh_address = RouterAddress(host=parse_address(credential.host).host, port=ssh_default)
        endpoint = parse_router_url(credential.host, default_path=settings.router.rpc_path)
    else:
        ssh_address = parse_address(credential.host, default_port=ssh_default)
        endpoint = parse_router_url(
            ssh_address.host,
            default_path=settings.router.rpc_path,
            scheme=settings.router.rpc_scheme,
        )

    session = SSHSession(
        host=ssh_address.host,
        port=ssh_address.port,
        username=credential.username,
        password=credential.password,
        timeout=settings.router.ssh_timeout,
    )
    drivers: dict[TransportMode, RouterDriver] = {
        TransportMode.INTERACTIVE: SSHUciDriver(session),
        TransportMode.RPC: LuciRpcDriver(
            endpoint,
            username=credential.username,
            password=credential.password,
            timeout=settings.router.rpc_timeout,
        ),
    }
    preference = _coerce_mode(transport_preference or settings.router.transport)
    logger.info(
        "Router client for %s (ssh port %d, rpc %s%s)",
        ssh_address.host, ssh_address.port, endpoint.base_url, endpoint.rpc_path,
    )
    return RouterClient(drivers, preference=preference)


def create_client_from_record(
    record: RouterConfig,
    codec: CredentialCodec,
    settings: Settings | None = None,
    transport_preference: TransportMode | str | None = None,
) -> RouterClient:
    """Decrypt a stored router record and build a client for it."""
    if not record.username:
        raise ValidationError("username", f"Router {record.name or record.host} has no username")
    password = codec.decrypt_password(record) if record.has_password else ""
    credential = DecryptedCredential(
        host=record.host,
        port=record.port,
        username=record.username,
        password=password,
    )
    return create_client(credential, settings, transport_preference)
