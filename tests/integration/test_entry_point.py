"""Integration tests for the command-line entry point (__main__.py).

The router client factory is patched so the tests exercise argument
parsing, settings loading and output without network access.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
import yaml

from portracker_router.__main__ import main, parse_args
from portracker_router.errors import RouterUnreachableError
from portracker_router.models import ConnectionResult, MutationResult, PortForwardingRule, TransportMode
from portracker_router.secrets.codec import CredentialCodec

from tests.conftest import TEST_KEY


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def config_file(tmp_path: Path) -> Path:
    """Write a minimal YAML config to a temporary file."""
    config = {
        "router": {"ssh_port": 2222, "transport": None},
        "encryption": {"key": TEST_KEY},
        "logging": {"level": "WARNING"},
    }
    config_path = tmp_path / "config.yaml"
    config_path.write_text(yaml.dump(config))
    return config_path


@pytest.fixture()
def mock_client() -> MagicMock:
    client = MagicMock()
    client.__aenter__ = AsyncMock(return_value=client)
    client.__aexit__ = AsyncMock(return_value=None)
    client.test_connection = AsyncMock(
        return_value=ConnectionResult(
            success=True, message="Connected via SSH (OpenWrt 23.05.2)", mode=TransportMode.INTERACTIVE,
        )
    )
    client.list_rules = AsyncMock(return_value=[
        PortForwardingRule(name="web", external_port=8080, internal_ip="10.0.0.5", internal_port=80, native_id="web"),
    ])
    client.add_rule = AsyncMock(return_value=MutationResult(native_id="web"))
    client.update_rule = AsyncMock(return_value=MutationResult(native_id="web"))
    client.delete_rule = AsyncMock(return_value=MutationResult(native_id="web"))
    client.set_enabled = AsyncMock(return_value=MutationResult(native_id="web"))
    return client


@pytest.fixture(autouse=True)
def router_password(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ROUTER_PASSWORD", "secret")


def _run(argv: list[str]) -> int:
    with pytest.raises(SystemExit) as excinfo:
        main(argv)
    return excinfo.value.code


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


class TestParseArgs:
    def test_defaults(self) -> None:
        args = parse_args(["--host", "192.168.1.1", "list"])
        assert args.host == "192.168.1.1"
        assert args.username == "root"
        assert args.port is None
        assert args.transport is None
        assert args.command == "list"

    def test_add(self) -> None:
        args = parse_args(["--host", "r", "add", "web", "8080", "10.0.0.5", "80", "--protocol", "udp"])
        assert (args.name, args.external_port, args.internal_ip, args.internal_port) == (
            "web", 8080, "10.0.0.5", 80,
        )
        assert args.protocol == "udp"

    def test_unknown_transport_rejected(self) -> None:
        with pytest.raises(SystemExit):
            parse_args(["--transport", "telnet", "list"])


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class TestCommands:
    def test_list(self, config_file: Path, mock_client: MagicMock, capsys: pytest.CaptureFixture) -> None:
        with patch("portracker_router.__main__.create_client", return_value=mock_client) as factory:
            code = _run(["--config", str(config_file), "--host", "192.168.1.1", "list"])

        assert code == 0
        rules = json.loads(capsys.readouterr().out)
        assert rules[0]["native_id"] == "web"
        credential = factory.call_args.args[0]
        assert credential["host"] == "192.168.1.1"
        assert credential["password"] == "secret"
        assert factory.call_args.kwargs["settings"].router.ssh_port == 2222
        mock_client.__aexit__.assert_awaited()

    def test_test_command(self, config_file: Path, mock_client: MagicMock, capsys: pytest.CaptureFixture) -> None:
        with patch("portracker_router.__main__.create_client", return_value=mock_client):
            code = _run(["--config", str(config_file), "--host", "192.168.1.1", "test"])

        assert code == 0
        out = json.loads(capsys.readouterr().out)
        assert out["mode"] == "interactive"

    def test_failed_test_command_exit_code(self, config_file: Path, mock_client: MagicMock) -> None:
        mock_client.test_connection.return_value = ConnectionResult(success=False, message="Router unreachable")
        with patch("portracker_router.__main__.create_client", return_value=mock_client):
            assert _run(["--config", str(config_file), "--host", "192.168.1.1", "test"]) == 1

    def test_add(self, config_file: Path, mock_client: MagicMock) -> None:
        with patch("portracker_router.__main__.create_client", return_value=mock_client):
            code = _run([
                "--config", str(config_file), "--host", "192.168.1.1",
                "add", "web", "8080", "10.0.0.5", "80",
            ])

        assert code == 0
        rule: dict[str, Any] = mock_client.add_rule.await_args.args[0]
        assert rule == {
            "name": "web", "protocol": "tcp", "external_port": 8080,
            "internal_ip": "10.0.0.5", "internal_port": 80,
        }

    def test_update_sends_only_given_fields(self, config_file: Path, mock_client: MagicMock) -> None:
        with patch("portracker_router.__main__.create_client", return_value=mock_client):
            _run([
                "--config", str(config_file), "--host", "192.168.1.1",
                "update", "web", "--internal-port", "8081",
            ])
        mock_client.update_rule.assert_awaited_once_with("web", {"internal_port": 8081})

    def test_disable(self, config_file: Path, mock_client: MagicMock) -> None:
        with patch("portracker_router.__main__.create_client", return_value=mock_client):
            _run(["--config", str(config_file), "--host", "192.168.1.1", "disable", "web"])
        mock_client.set_enabled.assert_awaited_once_with("web", False)

    def test_missing_host(self, config_file: Path) -> None:
        with patch("portracker_router.__main__.create_client") as factory:
            assert _run(["--config", str(config_file), "list"]) == 2
        factory.assert_not_called()

    def test_router_error_exit_code(self, config_file: Path, mock_client: MagicMock) -> None:
        mock_client.list_rules.side_effect = RouterUnreachableError("Router unreachable")
        with patch("portracker_router.__main__.create_client", return_value=mock_client):
            assert _run(["--config", str(config_file), "--host", "192.168.1.1", "list"]) == 1

    def test_encrypt_password(self, config_file: Path, capsys: pytest.CaptureFixture) -> None:
        code = _run(["--config", str(config_file), "encrypt-password"])

        assert code == 0
        fields = json.loads(capsys.readouterr().out)
        assert set(fields) == {"encrypted_password", "encryption_iv", "encryption_tag"}
        codec = CredentialCodec(TEST_KEY)
        assert codec.decrypt(
            fields["encrypted_password"], fields["encryption_iv"], fields["encryption_tag"],
        ) == "secret"
