# mlm_system/errors.py
"""
Error taxonomy for the compensation core.
"""
from typing import Optional


class MLMError(Exception):
    """Base class for all compensation core errors."""


class InvalidArgument(MLMError, ValueError):
    """Caller supplied bad pagination, options or identifiers."""


class InvalidRange(InvalidArgument):
    """Date window with end before start."""


class Unauthorized(MLMError):
    """Call made without a resolved caller identity."""


class MemberNotFound(MLMError):
    def __init__(self, memberId):
        super().__init__(f"Member {memberId} not found")
        self.memberId = memberId


class ProductNotFound(MLMError):
    def __init__(self, productId):
        super().__init__(f"Product {productId} not found")
        self.productId = productId


class CorruptHierarchy(MLMError):
    """A traversal reached the same member twice."""

    def __init__(self, memberId, relation: str):
        super().__init__(f"Cycle detected at member {memberId} in {relation} relation")
        self.memberId = memberId
        self.relation = relation


class ConfigurationConflict(MLMError):
    """Plan configuration cannot be interpreted unambiguously."""


class SettlementWriteFailure(MLMError):
    def __init__(self, memberId, reason: str):
        super().__init__(f"Settlement write for member {memberId} failed: {reason}")
        self.memberId = memberId
        self.reason = reason


class RateLimitExceeded(MLMError):
    def __init__(self, key: str, retryAfter: Optional[float] = None):
        super().__init__(f"Rate limit exceeded for {key}")
        self.key = key
        self.retryAfter = retryAfter
