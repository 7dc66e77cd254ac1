"""Pydantic domain models for the router integration.

These models define the data exchanged with callers: the stored router
configuration record, the transient decrypted credential, port-forwarding
rules, and operation results. All models support ``from_attributes=True``
for ORM-style loading from database rows.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class TransportMode(str, Enum):
    INTERACTIVE = "interactive"
    RPC = "rpc"


class Protocol(str, Enum):
    TCP = "tcp"
    UDP = "udp"
    TCPUDP = "tcpudp"


class BatchAction(str, Enum):
    ENABLE = "enable"
    DISABLE = "disable"
    DELETE = "delete"


# ---------------------------------------------------------------------------
# Router configuration and credentials
# ---------------------------------------------------------------------------

class RouterConfig(BaseModel):
    """Router record as persisted by the caller.

    The encryption fields are either all present or all absent; a router
    without a stored password is allowed.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int | str | None = None
    name: str = ""
    host: str
    port: int | None = None
    username: str | None = None
    encrypted_password: str | None = None
    encryption_iv: str | None = None
    encryption_tag: str | None = None

    @model_validator(mode="after")
    def _check_encryption_fields(self) -> RouterConfig:
        present = [
            value is not None
            for value in (self.encrypted_password, self.encryption_iv, self.encryption_tag)
        ]
        if any(present) and not all(present):
            raise ValueError(
                "encrypted_password, encryption_iv and encryption_tag must be set together"
            )
        return self

    @property
    def has_password(self) -> bool:
        return self.encrypted_password is not None


class DecryptedCredential(BaseModel):
    """Cleartext router credential, held only for the life of a client."""

    host: str
    port: int | None = None
    username: str
    password: str = Field(default="", repr=False)


# ---------------------------------------------------------------------------
# Port forwarding rules
# ---------------------------------------------------------------------------

class PortForwardingRule(BaseModel):
    """Canonical port-forwarding rule exchanged with callers.

    ``native_id`` is the UCI section name on the router and stays ``None``
    until the rule has been created there.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int | str | None = None
    name: str
    protocol: str = Protocol.TCP.value
    external_port: int
    internal_ip: str
    internal_port: int
    enabled: bool = True
    native_id: str | None = None
    target: str | None = None
    src: str | None = None
    dest: str | None = None


class RuleInput(BaseModel):
    """Fields needed to create a rule on the router."""

    name: str
    protocol: str = Protocol.TCP.value
    # Ports must be real ints: "80", 80.0 and True are rejected
    external_port: int = Field(strict=True)
    internal_ip: str
    internal_port: int = Field(strict=True)
    src: str = "wan"
    dest: str = "lan"
    target: str = "DNAT"

    @classmethod
    def from_rule(cls, rule: PortForwardingRule) -> RuleInput:
        return cls(
            name=rule.name,
            protocol=rule.protocol,
            external_port=rule.external_port,
            internal_ip=rule.internal_ip,
            internal_port=rule.internal_port,
        )


class RuleUpdate(BaseModel):
    """Partial update; only fields that are not ``None`` are written."""

    name: str | None = None
    protocol: str | None = None
    external_port: int | None = Field(default=None, strict=True)
    internal_ip: str | None = None
    internal_port: int | None = Field(default=None, strict=True)
    enabled: bool | None = None

    def is_empty(self) -> bool:
        return not self.model_dump(exclude_none=True)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

class ConnectionResult(BaseModel):
    success: bool
    message: str
    mode: TransportMode | None = None


class MutationResult(BaseModel):
    """Outcome of a committed mutation.

    ``firewall_reloaded`` is ``False`` when the UCI commit succeeded but the
    firewall service reload did not; the change is stored on the router and
    takes effect on the next reload.
    """

    native_id: str
    firewall_reloaded: bool = True
    message: str = ""


class SystemInfo(BaseModel):
    hostname: str = "Unknown"
    uptime: str = "Unknown"
    memory: str = "Unknown"
