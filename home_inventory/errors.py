from __future__ import annotations

from dataclasses import dataclass


class InventoryError(Exception):
    pass


class ValidationError(InventoryError, ValueError):
    """Caller input failed a required-field, enum or format check."""

    def __init__(self, field: str, message: str | None = None, *, code: str | None = None) -> None:
        self.field = field
        self.code = code or f'{field}_invalid'
        super().__init__(message or f'{field} is invalid')

    @classmethod
    def required(cls, field: str) -> ValidationError:
        return cls(field, f'{field} is required', code=f'{field}_required')


class PayloadTooLargeError(ValidationError):
    def __init__(self, field: str, limit: int) -> None:
        self.limit = limit
        super().__init__(field, f'{field} exceeds the {limit} byte upload limit', code=f'{field}_too_large')


class NotFoundError(InventoryError, LookupError):
    def __init__(self, resource: str, resource_id: int) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f'{resource} {resource_id} not found')


class TransientError(InventoryError):
    """Connectivity loss, pool exhaustion or timeout. Safe to retry."""


class FatalError(InventoryError):
    """The baseline schema could not be created; the process cannot start."""


@dataclass(frozen=True)
class AdvisoryFailure:
    """A best-effort step that failed without affecting the outcome."""

    step: str
    target: str
    error: str

    def describe(self) -> str:
        return f'{self.step} {self.target}: {self.error}'
