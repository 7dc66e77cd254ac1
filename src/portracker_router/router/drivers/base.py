"""Transport-independent router driver interface.

:class:`RouterDriver` is the capability set the mode selector dispatches
to. :class:`UciDriver` implements the port-forwarding CRUD operations once,
on top of a handful of UCI primitives (add, rename, set, delete, commit,
firewall reload) that each transport provides in its own way: shell
commands over SSH or JSON-RPC calls to LuCI.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from typing import Any

from portracker_router.errors import RouterError, ValidationError
from portracker_router.models import (
    ConnectionResult,
    MutationResult,
    PortForwardingRule,
    RuleInput,
    RuleUpdate,
    TransportMode,
)
from portracker_router.router.rules import (
    UCI_CONFIG,
    UCI_SECTION_TYPE,
    coerce_rule_input,
    coerce_rule_update,
    generate_uci_name,
    input_to_options,
    rule_from_uci,
    update_to_options,
)

logger = logging.getLogger(__name__)

_SECTION_NAME = re.compile(r"^[A-Za-z0-9_]+$")


def check_native_id(native_id: str) -> str:
    """Reject section ids that could address anything but a whole section."""
    if not isinstance(native_id, str) or not _SECTION_NAME.match(native_id):
        raise ValidationError("native_id", f"Invalid rule identifier: {native_id!r}")
    return native_id


class RouterDriver(ABC):
    """Abstract port-forwarding driver for one transport."""

    mode: TransportMode

    @abstractmethod
    async def test_connection(self) -> ConnectionResult:
        """Check reachability and credentials without changing router state.

        Never raises; failures are reported with ``success=False``.
        """

    @abstractmethod
    async def list_rules(self) -> list[PortForwardingRule]:
        """Return every redirect rule currently configured on the router."""

    @abstractmethod
    async def add_rule(self, rule: RuleInput | dict[str, Any]) -> MutationResult:
        """Create a rule and return its section id."""

    @abstractmethod
    async def update_rule(
        self, native_id: str, update: RuleUpdate | dict[str, Any],
    ) -> MutationResult:
        """Write the fields present in *update* to an existing rule."""

    @abstractmethod
    async def delete_rule(self, native_id: str) -> MutationResult:
        """Remove a rule from the router."""

    async def set_enabled(self, native_id: str, enabled: bool) -> MutationResult:
        return await self.update_rule(native_id, RuleUpdate(enabled=enabled))

    async def close(self) -> None:
        """Release transport resources. Safe to call more than once."""


class UciDriver(RouterDriver):
    """CRUD over UCI primitives supplied by a concrete transport."""

    # -- primitives ------------------------------------------------------

    @abstractmethod
    async def _load_redirects(self) -> dict[str, dict[str, Any]]:
        """Return ``{section_id: options}`` for every redirect section."""

    @abstractmethod
    async def _uci_add(self, config: str, section_type: str) -> str:
        """Create an anonymous section and return its id."""

    @abstractmethod
    async def _uci_rename(self, config: str, section: str, name: str) -> None: ...

    @abstractmethod
    async def _uci_set(self, config: str, section: str, option: str, value: str) -> None: ...

    @abstractmethod
    async def _uci_delete(self, config: str, section: str) -> None: ...

    @abstractmethod
    async def _uci_commit(self, config: str) -> None: ...

    @abstractmethod
    async def _reload_firewall(self) -> None: ...

    # -- operations ------------------------------------------------------

    async def list_rules(self) -> list[PortForwardingRule]:
        sections = await self._load_redirects()
        return [rule_from_uci(sid, options) for sid, options in sections.items()]

    async def add_rule(self, rule: RuleInput | dict[str, Any]) -> MutationResult:
        rule = coerce_rule_input(rule)
        uci_name = generate_uci_name(rule.name)

        section = await self._uci_add(UCI_CONFIG, UCI_SECTION_TYPE)
        # Rename before anything else so later steps never address the
        # anonymous section by position.
        native_id = section
        try:
            await self._uci_rename(UCI_CONFIG, section, uci_name)
            native_id = uci_name
            for option, value in input_to_options(rule):
                await self._uci_set(UCI_CONFIG, native_id, option, value)
            await self._uci_commit(UCI_CONFIG)
        except RouterError as exc:
            exc.native_id = native_id
            logger.error(
                "Adding port forward %r stopped after creating section %s: %s",
                rule.name, native_id, exc,
            )
            raise

        logger.info(
            "Added port forward %s (%d -> %s:%d) via %s",
            rule.name, rule.external_port, rule.internal_ip, rule.internal_port,
            self.mode.value,
        )
        return await self._finish(native_id, f'Port forwarding "{rule.name}" added')

    async def update_rule(
        self, native_id: str, update: RuleUpdate | dict[str, Any],
    ) -> MutationResult:
        check_native_id(native_id)
        update = coerce_rule_update(update)
        if update.is_empty():
            raise ValidationError("update", "No fields to update")

        try:
            for option, value in update_to_options(update):
                await self._uci_set(UCI_CONFIG, native_id, option, value)
            await self._uci_commit(UCI_CONFIG)
        except RouterError as exc:
            exc.native_id = native_id
            raise

        logger.info("Updated port forward %s via %s", native_id, self.mode.value)
        return await self._finish(native_id, f'Port forwarding "{native_id}" updated')

    async def delete_rule(self, native_id: str) -> MutationResult:
        check_native_id(native_id)
        await self._uci_delete(UCI_CONFIG, native_id)
        await self._uci_commit(UCI_CONFIG)

        logger.info("Deleted port forward %s via %s", native_id, self.mode.value)
        return await self._finish(native_id, f'Port forwarding "{native_id}" deleted')

    async def _finish(self, native_id: str, message: str) -> MutationResult:
        """Reload the firewall; a failed reload downgrades the result only."""
        try:
            await self._reload_firewall()
        except RouterError as exc:
            logger.warning("Firewall reload failed after committing %s: %s", native_id, exc)
            return MutationResult(
                native_id=native_id,
                firewall_reloaded=False,
                message=f"{message}; firewall reload failed: {exc}",
            )
        return MutationResult(native_id=native_id, firewall_reloaded=True, message=message)
