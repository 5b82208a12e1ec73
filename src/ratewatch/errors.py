from __future__ import annotations

from typing import Optional


class RatewatchError(Exception):
    """Base for all errors raised by ratewatch components."""


class ConfigError(RatewatchError):
    pass


class FetchError(RatewatchError):
    """
    One failed upstream request for one category.
    retryable=True for network errors, timeouts, 429 and 5xx.
    """
    def __init__(self, category: str, message: str, *, retryable: bool, status: Optional[int] = None):
        super().__init__(message)
        self.category = category
        self.retryable = retryable
        self.status = status
        self.attempts = 1

    @classmethod
    def from_status(cls, category: str, status: int, body: str = "") -> "FetchError":
        retryable = status == 429 or 500 <= status < 600
        msg = f"upstream returned HTTP {status}"
        if body:
            msg = f"{msg}: {body[:200]}"
        return cls(category, msg, retryable=retryable, status=status)


class MalformedPayloadError(FetchError):
    def __init__(self, category: str, message: str):
        super().__init__(category, message, retryable=False)


class StoreError(RatewatchError):
    """Rule/subscription persistence failed or rejected the request."""


class RuleValidationError(StoreError, ValueError):
    pass
