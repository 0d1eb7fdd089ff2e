# Overview: Engine error taxonomy shared by services, routes and the CLI.

from __future__ import annotations

from typing import Any, Optional


class EngineError(Exception):
    """Base class for every business error the engine raises."""

    http_status = 400
    code = "engine_error"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.message, "code": self.code}
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(EngineError):
    http_status = 400
    code = "validation_error"


class NotFoundError(EngineError):
    http_status = 404
    code = "not_found"


class InsufficientStock(EngineError):
    """Raised when an outgoing delta would take a stock level below zero."""

    http_status = 409
    code = "insufficient_stock"

    def __init__(self, lines: list[dict[str, Any]], message: str = "Insufficient stock"):
        super().__init__(message, details={"lines": lines})
        self.lines = lines


class UnitConversionError(EngineError):
    http_status = 422
    code = "unit_conversion_error"


class IncompatibleUnits(UnitConversionError):
    code = "incompatible_units"


class CyclicUnitGraph(UnitConversionError):
    code = "cyclic_unit_graph"


class LockTimeout(EngineError):
    """Lock or version conflict that outlived the retry budget. Safe to retry."""

    http_status = 503
    code = "lock_timeout"
    retryable = True


class PaymentOverAllocation(EngineError):
    http_status = 409
    code = "payment_over_allocation"


class InvalidStateTransition(EngineError):
    http_status = 409
    code = "invalid_state_transition"


class CouponUnavailable(EngineError):
    http_status = 409
    code = "coupon_unavailable"


class FundingSourceError(EngineError):
    http_status = 409
    code = "funding_source_error"


class RegisterError(EngineError):
    http_status = 409
    code = "register_error"
