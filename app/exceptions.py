"""Error taxonomy for the transaction relay."""

from __future__ import annotations

from typing import Any


class TxRelayError(Exception):
    """Base exception for transaction relay errors."""

    def __init__(self, message: str, details: Any = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class ConfigurationError(TxRelayError):
    """Required configuration is missing (e.g. the signing key)."""

    pass


class GatewayNotFoundError(TxRelayError):
    """No chain gateway is configured for the requested chain id."""

    pass


class PreflightRejectedError(TxRelayError):
    """Call encoding or gas estimation rejected the transaction."""

    pass


class SendRetriesExhaustedError(TxRelayError):
    """Every send attempt failed."""

    pass


class InvalidTransitionError(TxRelayError):
    """A status change outside the transaction state machine."""

    pass


class MalformedEventError(TxRelayError):
    """A queue entry or bus message does not match its schema."""

    pass


class InfrastructureUnavailableError(TxRelayError):
    """Redis could not be reached after all connection attempts."""

    pass
