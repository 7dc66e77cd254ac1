"""Shared fixtures for integration tests: a scripted router behind SSH."""

from __future__ import annotations

from typing import Sequence

import pytest

from portracker_router.errors import CommandExecutionError

RELEASE = "DISTRIB_ID='OpenWrt'\nDISTRIB_RELEASE='23.05.2'\nDISTRIB_DESCRIPTION='OpenWrt 23.05.2 r23630-842932a63d'\n"


class ScriptedRouter:
    """Answers ``uci`` commands from an in-memory firewall config.

    Staged changes become visible to ``uci get`` immediately and are only
    counted as saved on ``uci commit``, which is enough to follow the
    add/rename/set/commit flow end to end.
    """

    def __init__(self) -> None:
        self.sections: dict[str, dict[str, str]] = {}
        self.commands: list[list[str]] = []
        self.commits = 0
        self.reloads = 0
        self._next = 0x0C8F3D

    async def exec(self, argv: Sequence[str]) -> str:
        argv = list(argv)
        self.commands.append(argv)
        if argv == ["cat", "/etc/openwrt_release"]:
            return RELEASE
        if argv == ["/etc/init.d/firewall", "reload"]:
            self.reloads += 1
            return ""
        if argv[0] != "uci":
            raise CommandExecutionError(f"sh: {argv[0]}: not found", exit_code=127)
        return self._uci(argv[1:])

    def _uci(self, args: list[str]) -> str:
        verb = args[0]
        if verb == "-X" and args[1:] == ["show", "firewall"]:
            lines = [f"firewall.{sid}=redirect" for sid in self.sections]
            return "\n".join(lines) + "\n"
        if verb == "add":
            sid = f"cfg{self._next:06x}"
            self._next += 1
            self.sections[sid] = {}
            return sid + "\n"
        if verb == "rename":
            path, new = args[1].split("=", 1)
            old = path.split(".")[1]
            self.sections[new] = self.sections.pop(old)
            return ""
        if verb == "set":
            path, value = args[1].split("=", 1)
            _config, sid, option = path.split(".")
            if sid not in self.sections:
                raise CommandExecutionError("uci: Invalid argument", exit_code=1)
            self.sections[sid][option] = value
            return ""
        if verb == "get":
            _config, sid, option = args[1].split(".")
            try:
                return self.sections[sid][option] + "\n"
            except KeyError:
                raise CommandExecutionError("uci: Entry not found", exit_code=1) from None
        if verb == "delete":
            sid = args[1].split(".")[1]
            if self.sections.pop(sid, None) is None:
                raise CommandExecutionError("uci: Entry not found", exit_code=1)
            return ""
        if verb == "commit":
            self.commits += 1
            return ""
        raise CommandExecutionError(f"uci: unknown command {verb}", exit_code=1)


@pytest.fixture
def router() -> ScriptedRouter:
    return ScriptedRouter()
