"""Exceptions and the typed failure value returned to callers of the session API."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


class BridgeError(Exception):
    """Base class for songbridge errors."""


class CatalogError(BridgeError):
    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class RateLimitedError(CatalogError):
    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message, status=429)
        self.retry_after = retry_after


class TransferCancelled(BridgeError):
    """Raised at a cancellation checkpoint once the token has been tripped."""


class InvalidTransition(BridgeError):
    def __init__(self, current: Any, target: Any):
        super().__init__(f"Cannot move session from {current} to {target}")
        self.current = current
        self.target = target


MISSING_FIELDS = "missing_fields"
SESSION_NOT_FOUND = "session_not_found"
WRONG_STATE = "wrong_state"
INVALID_PAYLOAD = "invalid_payload"
COMMIT_FAILED = "commit_failed"


@dataclass(frozen=True)
class Failure:
    code: str
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message}
