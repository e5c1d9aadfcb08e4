"""
Error taxonomy for the reconciliation engine.

ValidationError         bad input to the Team Resolver; no side effect, reported to caller
TransientProviderError  network/timeout from a provider call; that provider contributes nothing
DataIntegrityAnomaly    malformed provider record; skip it and continue the batch
CircuitOpen             downstream dependency judged unhealthy; skip the cycle
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from shared.models.enums import ErrorKind

T = TypeVar("T")


class ReconciliationError(Exception):
    kind: ErrorKind


class ValidationError(ReconciliationError):
    kind = ErrorKind.VALIDATION


class TransientProviderError(ReconciliationError):
    kind = ErrorKind.TRANSIENT_PROVIDER

    def __init__(self, provider: str, message: str) -> None:
        self.provider = provider
        super().__init__(f"{provider}: {message}")


class DataIntegrityAnomaly(ReconciliationError):
    kind = ErrorKind.DATA_INTEGRITY


class CircuitOpen(ReconciliationError):
    """Raised when a circuit is open and calls are being rejected."""
    kind = ErrorKind.CIRCUIT_OPEN

    def __init__(self, name: str, retry_after: float) -> None:
        self.name = name
        self.retry_after = retry_after
        super().__init__(f"Circuit breaker '{name}' is OPEN. Retry after {retry_after:.0f}s.")


@dataclass
class RecordResult(Generic[T]):
    """Per-record outcome: either a value or an error with its kind."""
    value: Optional[T] = None
    error: Optional[str] = None
    kind: Optional[ErrorKind] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "RecordResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, error: str) -> "RecordResult[T]":
        return cls(error=error, kind=kind)
