"""Error taxonomy for the router integration.

Every error raised by the package derives from :class:`RouterError`.
Validation and encryption errors indicate caller misuse and are never
retried. Transport errors propagate unchanged except during mode
selection, where probe failures only drive fallback and are aggregated
into :class:`RouterUnreachableError` once every transport is exhausted.
"""

from __future__ import annotations


class RouterError(Exception):
    """Base class for router integration errors.

    ``native_id`` is set when a mutation partially applied on the router
    (e.g. the section was created but a later ``set`` failed), so the
    caller can clean up or retry the remaining steps.
    """

    def __init__(self, message: str, *, native_id: str | None = None) -> None:
        super().__init__(message)
        self.native_id = native_id


class InvalidAddressError(RouterError):
    """The router address could not be parsed into a host component."""


class ValidationError(RouterError):
    """A rule field failed validation before any remote call was made."""

    def __init__(self, field: str, message: str) -> None:
        super().__init__(message)
        self.field = field


class EncryptionError(RouterError):
    """Encryption or decryption of a stored credential failed."""


class AuthenticationError(RouterError):
    """The router rejected the supplied credentials."""


class TransportUnavailable(RouterError):
    """The transport could not connect or authenticate."""


class CommandExecutionError(RouterError):
    """A remote UCI command or RPC call reported failure.

    ``exit_code`` is the remote exit status for SSH commands and ``None``
    for RPC calls, where ``stderr`` carries the error payload instead.
    """

    def __init__(
        self,
        message: str,
        *,
        exit_code: int | None = None,
        stderr: str = "",
        native_id: str | None = None,
    ) -> None:
        super().__init__(message, native_id=native_id)
        self.exit_code = exit_code
        self.stderr = stderr


class RpcTransportError(RouterError):
    """The RPC endpoint answered with a non-success HTTP status."""

    def __init__(self, http_status: int, message: str = "") -> None:
        super().__init__(message or f"HTTP {http_status}")
        self.http_status = http_status


class RpcTimeoutError(RouterError):
    """An RPC call exceeded the configured timeout."""


class RouterUnreachableError(RouterError):
    """No transport could reach the router.

    ``causes`` maps each probed transport mode to the failure message it
    produced.
    """

    def __init__(self, message: str, causes: dict[str, str] | None = None) -> None:
        super().__init__(message)
        self.causes = dict(causes or {})


class ClientClosedError(RouterError):
    """The client was used after :meth:`RouterClient.close`."""
