from __future__ import annotations

from typing import Optional


class GearOutError(Exception):
    """Base error for everything the checkout core raises."""
    code = 500
    retryable = False

    def __init__(self, message: str, code: Optional[int] = None, payload: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.payload = payload

    def to_dict(self) -> dict:
        rv = dict(self.payload or ())
        rv["message"] = self.message
        rv["code"] = self.code
        rv["retryable"] = self.retryable
        rv["success"] = False
        return rv


class NotFound(GearOutError):
    """Scanned or typed code matched no equipment."""
    code = 404

    def __init__(self, message: str = "Equipment not found", variants=(), payload=None):
        super().__init__(message, payload=payload)
        self.variants = tuple(variants)


class Unavailable(GearOutError):
    """Equipment resolved but cannot be checked out right now."""
    code = 409

    def __init__(self, message: str, reason: str, payload=None):
        super().__init__(message, payload=dict(payload or {}, reason=reason))
        self.reason = reason


class ValidationError(GearOutError):
    code = 400

    def __init__(self, message: str = "Invalid data", payload=None):
        super().__init__(message, payload=payload)


class InvalidTransition(ValidationError):
    pass


class ConflictError(GearOutError):
    """Stock changed between the availability check and the write."""
    code = 409
    retryable = True

    def __init__(self, message: str = "Stock changed, please retry", payload=None):
        super().__init__(message, payload=payload)


class PersistenceError(GearOutError):
    code = 503
    retryable = True

    def __init__(self, message: str = "Could not save changes, please retry", payload=None):
        super().__init__(message, payload=payload)
