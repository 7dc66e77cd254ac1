"""Rule validation and mapping between caller fields and UCI options.

A port-forwarding rule is stored on OpenWrt as a ``redirect`` section in
``/etc/config/firewall``. Callers use descriptive field names
(``internal_ip``, ``external_port``...) while UCI uses its own option names
(``dest_ip``, ``src_dport``...). Validation runs before any remote call so
invalid input never leaves partial state on the router.
"""

from __future__ import annotations

import ipaddress
import re
from typing import Any, Mapping

import pydantic

from portracker_router.errors import ValidationError
from portracker_router.models import PortForwardingRule, Protocol, RuleInput, RuleUpdate

UCI_CONFIG = "firewall"
UCI_SECTION_TYPE = "redirect"
UCI_NAME_MAX_LENGTH = 32

_UCI_NAME_INVALID = re.compile(r"[^a-z0-9_]")

# caller field -> UCI option
FIELD_TO_OPTION: dict[str, str] = {
    "name": "name",
    "target": "target",
    "src": "src",
    "dest": "dest",
    "protocol": "proto",
    "external_port": "src_dport",
    "internal_ip": "dest_ip",
    "internal_port": "dest_port",
    "enabled": "enabled",
}
OPTION_TO_FIELD: dict[str, str] = {v: k for k, v in FIELD_TO_OPTION.items()}

# Options read back for every redirect section, in read order.
RULE_OPTIONS: tuple[str, ...] = (
    "name", "target", "src", "dest", "proto",
    "src_dport", "dest_ip", "dest_port", "enabled",
)

_PROTOCOLS = {p.value for p in Protocol}


def generate_uci_name(name: str) -> str:
    """Return a UCI-safe section name derived from a rule name.

    >>> generate_uci_name("My Rule #1")
    'my_rule__1'
    """
    return _UCI_NAME_INVALID.sub("_", name.lower())[:UCI_NAME_MAX_LENGTH]


def is_valid_ipv4(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    try:
        ipaddress.IPv4Address(value)
    except ValueError:
        return False
    return True


def is_valid_port(value: Any) -> bool:
    # bool is an int subclass; True must not pass as port 1
    return isinstance(value, int) and not isinstance(value, bool) and 1 <= value <= 65535


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _check_ip(field: str, value: Any) -> None:
    if not is_valid_ipv4(value):
        raise ValidationError(field, f"Invalid internal IP address: {value}")


def _check_port(field: str, value: Any) -> None:
    if not is_valid_port(value):
        label = field.replace("_", " ")
        raise ValidationError(field, f"Invalid {label}: {value}")


def _check_protocol(value: Any) -> None:
    if value not in _PROTOCOLS:
        raise ValidationError("protocol", f"Invalid protocol: {value}")


def validate_rule_input(rule: RuleInput) -> None:
    """Raise :class:`ValidationError` if *rule* cannot be sent to the router."""
    _check_ip("internal_ip", rule.internal_ip)
    _check_port("external_port", rule.external_port)
    _check_port("internal_port", rule.internal_port)
    _check_protocol(rule.protocol)
    if not rule.name or not generate_uci_name(rule.name):
        raise ValidationError("name", "Rule name is required")


def validate_rule_update(update: RuleUpdate) -> None:
    """Validate only the fields present in *update*."""
    if update.internal_ip is not None:
        _check_ip("internal_ip", update.internal_ip)
    if update.external_port is not None:
        _check_port("external_port", update.external_port)
    if update.internal_port is not None:
        _check_port("internal_port", update.internal_port)
    if update.protocol is not None:
        _check_protocol(update.protocol)


def _from_pydantic(exc: pydantic.ValidationError) -> ValidationError:
    first = exc.errors()[0]
    field = str(first["loc"][0]) if first.get("loc") else "rule"
    return ValidationError(field, f"Invalid {field}: {first.get('msg', 'invalid value')}")


def _check_fields(data: Mapping[str, Any], partial: bool) -> None:
    # Same order as validate_rule_input: address, ports, protocol.
    if not partial or data.get("internal_ip") is not None:
        _check_ip("internal_ip", data.get("internal_ip"))
    for field in ("external_port", "internal_port"):
        if not partial or data.get(field) is not None:
            _check_port(field, data.get(field))
    if data.get("protocol") is not None:
        _check_protocol(data["protocol"])


def coerce_rule_input(rule: RuleInput | Mapping[str, Any]) -> RuleInput:
    """Build and validate a :class:`RuleInput` from a model or plain dict.

    Address, ports and protocol of a dict are checked before the model is
    built, so a bad address is reported even when other fields are missing.
    """
    if not isinstance(rule, RuleInput):
        _check_fields(rule, partial=False)
        try:
            rule = RuleInput(**rule)
        except pydantic.ValidationError as exc:
            raise _from_pydantic(exc) from exc
    validate_rule_input(rule)
    return rule


def coerce_rule_update(update: RuleUpdate | Mapping[str, Any]) -> RuleUpdate:
    if not isinstance(update, RuleUpdate):
        _check_fields(update, partial=True)
        try:
            update = RuleUpdate(**update)
        except pydantic.ValidationError as exc:
            raise _from_pydantic(exc) from exc
    validate_rule_update(update)
    return update


# ---------------------------------------------------------------------------
# Mapping
# ---------------------------------------------------------------------------

def _option_value(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


def input_to_options(rule: RuleInput) -> list[tuple[str, str]]:
    """Return the ordered ``(option, value)`` pairs set on a new section.

    The rule name is not among them: the section itself is renamed to the
    UCI-safe form of the name.
    """
    return [
        ("target", rule.target),
        ("src", rule.src),
        ("dest", rule.dest),
        ("proto", rule.protocol),
        ("src_dport", _option_value(rule.external_port)),
        ("dest_ip", rule.internal_ip),
        ("dest_port", _option_value(rule.internal_port)),
        ("enabled", "1"),
    ]


def update_to_options(update: RuleUpdate) -> list[tuple[str, str]]:
    """Return ``(option, value)`` pairs for the fields present in *update*."""
    pairs = []
    for field, value in update.model_dump(exclude_none=True).items():
        pairs.append((FIELD_TO_OPTION[field], _option_value(value)))
    return pairs


def _to_int(value: Any) -> int:
    try:
        return int(str(value).split("-")[0])
    except (TypeError, ValueError):
        return 0


def rule_from_uci(section_id: str, options: dict[str, Any]) -> PortForwardingRule:
    """Build a :class:`PortForwardingRule` from a redirect section's options.

    Sections without a ``name`` option get the section id as their name.
    A missing ``enabled`` option means enabled, as in UCI itself. Port
    ranges (``8000-8010``) are reduced to their first port.
    """
    name = options.get("name") or section_id
    protocol = str(options.get("proto") or Protocol.TCPUDP.value)
    # LuCI writes "tcp udp" for the combined protocol
    if protocol.replace(" ", "") == Protocol.TCPUDP.value:
        protocol = Protocol.TCPUDP.value
    return PortForwardingRule(
        name=name,
        protocol=protocol,
        external_port=_to_int(options.get("src_dport")),
        internal_ip=options.get("dest_ip") or "",
        internal_port=_to_int(options.get("dest_port") or options.get("src_dport")),
        enabled=str(options.get("enabled", "1")) != "0",
        native_id=section_id,
        target=options.get("target"),
        src=options.get("src"),
        dest=options.get("dest"),
    )
