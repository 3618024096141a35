"""Rejection taxonomy shared by the ledgers and the reconciliation engine.

Every error carries a stable ``rule`` code so callers can tell which business
rule rejected the operation without parsing messages. All of them are
recoverable at the call site; none of them leave partial state behind.
"""

from __future__ import annotations


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""

    rule = "BUSINESS_RULE"

    def __init__(self, message: str, *, rule: str | None = None) -> None:
        super().__init__(message)
        if rule is not None:
            self.rule = rule

    def as_dict(self) -> dict[str, str]:
        """Return a structured rejection suitable for an external caller."""

        return {"rule": self.rule, "message": str(self)}


class ValidationError(BusinessRuleViolation, ValueError):
    """Malformed, missing or non-positive input rejected before any write."""

    rule = "VALIDATION"


class MissingReferenceError(BusinessRuleViolation, LookupError):
    """Raised when a referenced medicine, vendor, order, or sale is unknown."""

    rule = "NOT_FOUND"


class InsufficientStock(BusinessRuleViolation):
    """A deduction would drive a medicine's stock below zero."""

    rule = "INSUFFICIENT_STOCK"


class OverpaymentRejected(BusinessRuleViolation):
    """A payment exceeds the outstanding due amount."""

    rule = "OVERPAYMENT"


class InvalidTransition(BusinessRuleViolation):
    """A status change is not allowed from the entity's current state."""

    rule = "INVALID_TRANSITION"


class ConcurrencyConflict(BusinessRuleViolation):
    """A versioned write observed a stale row; retry the whole operation."""

    rule = "CONCURRENCY_CONFLICT"


__all__ = [
    "BusinessRuleViolation",
    "ValidationError",
    "MissingReferenceError",
    "InsufficientStock",
    "OverpaymentRejected",
    "InvalidTransition",
    "ConcurrencyConflict",
]
