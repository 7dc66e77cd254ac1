"""UCI driver over an interactive SSH session.

Every command opens a fresh SSH connection, authenticates with the router
password, runs exactly one command and closes the connection again. Staged
UCI changes live in the router's ``/tmp/.uci`` delta directory, so a
sequence of ``add``/``set`` commands followed by ``commit`` works across
separate connections.

Commands are built from argument lists and shell-quoted individually; no
caller-supplied text is ever interpolated into a command string.

paramiko is blocking, so each command runs in a worker thread.
"""

from __future__ import annotations

import asyncio
import logging
import re
import shlex
from typing import Any, Sequence

import paramiko

from portracker_router.errors import CommandExecutionError, RouterError, TransportUnavailable
from portracker_router.models import ConnectionResult, TransportMode
from portracker_router.router.drivers.base import UciDriver
from portracker_router.router.rules import RULE_OPTIONS, UCI_CONFIG, UCI_SECTION_TYPE

logger = logging.getLogger(__name__)

_RELEASE_FILE = "/etc/openwrt_release"
_FIREWALL_INIT = "/etc/init.d/firewall"

# "firewall.cfg0a1b2c=redirect" as printed by ``uci -X show firewall``
_SECTION_LINE = re.compile(r"^(?P<config>[^.=\s]+)\.(?P<section>[^.=\s]+)=(?P<type>\S+)$")
_RELEASE_DESCRIPTION = re.compile(r"""^DISTRIB_DESCRIPTION=['"]?(?P<value>[^'"]*)['"]?$""", re.M)


class SSHSession:
    """Runs single commands on the router over short-lived SSH connections.

    Parameters
    ----------
    host, port:
        SSH endpoint of the router.
    username, password:
        Login credentials. Key and agent authentication are disabled.
    timeout:
        Seconds allowed for connecting and for the command itself.
    """

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self._username = username
        self._password = password
        self._timeout = timeout

    def __repr__(self) -> str:
        return f"SSHSession({self._username}@{self.host}:{self.port})"

    async def exec(self, argv: Sequence[str]) -> str:
        """Run *argv* on the router and return its standard output.

        Raises
        ------
        TransportUnavailable:
            Connection or authentication failed.
        CommandExecutionError:
            The command exited with a non-zero status.
        """
        command = shlex.join(argv)
        logger.debug("ssh %s: %s", self.host, command)
        return await asyncio.to_thread(self._exec_sync, command)

    def _connect(self) -> paramiko.SSHClient:
        client = paramiko.SSHClient()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=self.host,
                port=self.port,
                username=self._username,
                password=self._password or None,
                timeout=self._timeout,
                auth_timeout=self._timeout,
                banner_timeout=self._timeout,
                look_for_keys=False,
                allow_agent=False,
            )
        except paramiko.AuthenticationException as exc:
            client.close()
            raise TransportUnavailable(
                f"SSH authentication failed for {self._username}@{self.host}"
            ) from exc
        except (paramiko.SSHException, OSError) as exc:
            client.close()
            raise TransportUnavailable(
                f"SSH connection to {self.host}:{self.port} failed: {exc}"
            ) from exc
        return client

    def _exec_sync(self, command: str) -> str:
        client = self._connect()
        try:
            _stdin, stdout, stderr = client.exec_command(command, timeout=self._timeout)
            out = stdout.read().decode("utf-8", errors="replace")
            err = stderr.read().decode("utf-8", errors="replace")
            status = stdout.channel.recv_exit_status()
        except (paramiko.SSHException, OSError) as exc:
            raise TransportUnavailable(
                f"SSH session to {self.host}:{self.port} failed: {exc}"
            ) from exc
        finally:
            client.close()

        if status != 0:
            raise CommandExecutionError(
                f"Command exited with status {status}: {err.strip() or command}",
                exit_code=status,
                stderr=err,
            )
        return out


def parse_section_ids(show_output: str, section_type: str = UCI_SECTION_TYPE) -> list[str]:
    """Return ids of sections of *section_type* from ``uci show`` output."""
    ids = []
    for line in show_output.splitlines():
        match = _SECTION_LINE.match(line.strip())
        if match and match.group("type") == section_type:
            ids.append(match.group("section"))
    return ids


class SSHUciDriver(UciDriver):
    """Port-forwarding driver that runs the ``uci`` CLI over SSH."""

    mode = TransportMode.INTERACTIVE

    def __init__(self, session: SSHSession) -> None:
        self._session = session

    async def _uci(self, *args: str) -> str:
        return await self._session.exec(["uci", *args])

    async def test_connection(self) -> ConnectionResult:
        try:
            release = await self._session.exec(["cat", _RELEASE_FILE])
        except RouterError as exc:
            logger.debug("SSH connection test failed: %s", exc)
            return ConnectionResult(success=False, message=str(exc), mode=self.mode)

        match = _RELEASE_DESCRIPTION.search(release)
        version = match.group("value").strip() if match else "OpenWrt"
        return ConnectionResult(
            success=True,
            message=f"Connected via SSH ({version})",
            mode=self.mode,
        )

    # -- primitives ------------------------------------------------------

    async def _get_option(self, section: str, option: str) -> str | None:
        try:
            value = await self._uci("get", f"{UCI_CONFIG}.{section}.{option}")
        except CommandExecutionError:
            # uci exits 1 with "Entry not found" for unset options
            return None
        return value.strip()

    async def _load_redirects(self) -> dict[str, dict[str, Any]]:
        output = await self._uci("-X", "show", UCI_CONFIG)
        sections: dict[str, dict[str, Any]] = {}
        for section in parse_section_ids(output):
            options: dict[str, Any] = {}
            for option in RULE_OPTIONS:
                value = await self._get_option(section, option)
                if value is not None:
                    options[option] = value
            sections[section] = options
        return sections

    async def _uci_add(self, config: str, section_type: str) -> str:
        output = await self._uci("add", config, section_type)
        return output.strip() or f"@{section_type}[-1]"

    async def _uci_rename(self, config: str, section: str, name: str) -> None:
        await self._uci("rename", f"{config}.{section}={name}")

    async def _uci_set(self, config: str, section: str, option: str, value: str) -> None:
        await self._uci("set", f"{config}.{section}.{option}={value}")

    async def _uci_delete(self, config: str, section: str) -> None:
        await self._uci("delete", f"{config}.{section}")

    async def _uci_commit(self, config: str) -> None:
        await self._uci("commit", config)

    async def _reload_firewall(self) -> None:
        await self._session.exec([_FIREWALL_INIT, "reload"])
