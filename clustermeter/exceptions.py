"""Exception hierarchy for metering, pricing and the billing ledger.

Everything derives from MeteringError so a caller can catch the whole
family at one boundary. Where an error is also a plain value or lookup
problem it subclasses ValueError/KeyError as well.
"""

from typing import Any, Optional


class MeteringError(Exception):
    """Base exception for the metering core."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidQuantityError(MeteringError, ValueError):
    """Raised when a quantity or unit string cannot be parsed."""

    def __init__(self, text: Any, reason: str = "unable to parse quantity"):
        super().__init__(f"{reason}: {text!r}")
        self.text = text


class RegistryError(MeteringError, ValueError):
    """Raised when a property list cannot form a registry (duplicate keys)."""


class UnknownPropertyError(MeteringError, KeyError):
    """Raised when pricing a property the registry does not know."""

    def __init__(self, key: Any):
        super().__init__(f"unknown billable property: {key!r}")
        self.key = key

    def __str__(self) -> str:
        return self.message


class UnknownResourceError(MeteringError, KeyError):
    """Raised when normalizing a resource kind that has no billing unit."""

    def __init__(self, resource: str):
        super().__init__(f"no billing unit for resource: {resource!r}")
        self.resource = resource

    def __str__(self) -> str:
        return self.message


class PriceDecryptionError(MeteringError):
    """Raised when an encrypted unit price is missing or cannot be decrypted."""

    def __init__(self, message: str, property_name: Optional[str] = None):
        super().__init__(message)
        self.property_name = property_name


class PriceQueryError(MeteringError):
    """Raised when the price store times out or the query fails."""


class LedgerValidationError(MeteringError, ValueError):
    """Raised when a billing record violates a ledger invariant."""

    def __init__(self, message: str, order_id: Optional[str] = None):
        super().__init__(message)
        self.order_id = order_id
