"""
Exception hierarchy for SpendGuard.

Guard decisions (DENIED, PAYMENT_REQUIRED) are values, not exceptions.
These exceptions cover configuration mistakes, bad administrative input
and collaborator defects (storage or provider failures).
"""

from __future__ import annotations

from typing import Any


class SpendGuardError(Exception):
    """
    Base exception for all SpendGuard errors.

    Example:
        >>> try:
        ...     await guard.execute_guarded(request)
        ... except SpendGuardError as e:
        ...     print(f"Guard infrastructure error: {e}")
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(SpendGuardError):
    """
    Configuration is missing or invalid.

    Raised when:
    - Environment variables hold unparseable values
    - Limits are negative or TTLs are not positive
    - An unknown storage backend is requested
    """

    pass


class ValidationError(SpendGuardError):
    """
    Administrative input is invalid.

    Raised when:
    - A negative daily limit is set
    - A policy update names an unknown field
    """

    pass


class StorageError(SpendGuardError):
    """
    Storage backend failed.

    Raised when:
    - The backend is unreachable
    - A compare-and-swap loop gives up after too many conflicts
    """

    def __init__(
        self,
        message: str,
        collection: str | None = None,
        key: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.collection = collection
        self.key = key


class ProviderError(SpendGuardError):
    """
    The upstream pay-per-call provider failed.

    Raised when the provider cannot be reached or crashes. The orchestrator
    lets this propagate so the calling layer can answer with a 5xx.
    """

    def __init__(
        self,
        message: str,
        provider_name: str = "unknown",
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.provider_name = provider_name
        self.status_code = status_code

    def __str__(self) -> str:
        return f"[{self.provider_name}] {self.message}"


class UnexpectedProviderResponse(ProviderError):
    """
    Provider answered, but not with a payment requirement or a result.

    The orchestrator turns this into a DENIED decision.
    """

    pass


class PaymentProofError(SpendGuardError):
    """
    Payment proof header could not be decoded.

    Raised when:
    - The header is not valid base64
    - The decoded bytes are not a JSON object
    - nonce, payer or signature is missing
    """

    pass
