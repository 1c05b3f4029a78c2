"""
Settlement Engine - Error Taxonomy.

============================================================
PURPOSE
============================================================
Classification of settlement failures.

ERROR CATEGORIES:
1. Input Errors - Malformed obligations
2. Recipient Errors - Bad preference, address or amount
3. Exchange Errors - Quote or order rejected
4. Rate Limit Errors - Throttled by the exchange
5. Compliance Errors - Caller jurisdiction denied
6. Internal Errors - Unexpected failures

RETRYABLE vs NON-RETRYABLE:
- Retryable: rate-limit, server and transport errors
- Non-retryable: client errors and compliance denial

============================================================
"""

from enum import Enum
from typing import Optional, Dict, Set, Tuple
from dataclasses import dataclass


# ============================================================
# ERROR CATEGORIES
# ============================================================

class ErrorCategory(Enum):
    """Error category classification."""

    INPUT = "INPUT"
    """Malformed input."""

    RECIPIENT = "RECIPIENT"
    """Recipient-specific precondition failed."""

    INVALID_REQUEST = "INVALID_REQUEST"
    """Exchange rejected the request (4xx)."""

    EXCHANGE_ERROR = "EXCHANGE_ERROR"
    """Exchange-side failure (5xx)."""

    NETWORK = "NETWORK"
    """Network/communication error."""

    RATE_LIMIT = "RATE_LIMIT"
    """Rate limit exceeded."""

    COMPLIANCE = "COMPLIANCE"
    """Caller not permitted."""

    INTERNAL = "INTERNAL"
    """Internal system error."""


class RetryEligibility(Enum):
    """Whether a failed call may be repeated."""

    RETRY = "RETRY"
    """Retry immediately."""

    NO_RETRY = "NO_RETRY"
    """Never retry."""

    BACKOFF = "BACKOFF"
    """Retry after exponential backoff."""


# ============================================================
# ERROR CODE REGISTRY
# ============================================================

@dataclass
class ErrorCodeInfo:
    """Information about an error code."""

    code: str
    """Error code."""

    category: ErrorCategory
    """Error category."""

    is_retryable: bool
    """Whether this error is retryable."""

    description: str
    """Human-readable description."""

    recommended_action: str
    """Recommended action to take."""


def _info(code, category, retryable, description, action) -> ErrorCodeInfo:
    return ErrorCodeInfo(
        code=code,
        category=category,
        is_retryable=retryable,
        description=description,
        recommended_action=action,
    )


ERROR_CODES: Dict[str, ErrorCodeInfo] = {
    # ========== RECIPIENT ERRORS ==========
    "PREFERENCE_MISSING": _info(
        "PREFERENCE_MISSING", ErrorCategory.RECIPIENT, False,
        "Recipient has no receive preference",
        "Ask the recipient for a receive unit, chain and address",
    ),
    "ADDRESS_MISSING": _info(
        "ADDRESS_MISSING", ErrorCategory.RECIPIENT, False,
        "Recipient has no receive address",
        "Ask the recipient for a receive address",
    ),
    "ADDRESS_INVALID": _info(
        "ADDRESS_INVALID", ErrorCategory.RECIPIENT, False,
        "Receive address or memo is invalid for the chain",
        "Correct the address and retry this recipient",
    ),
    "PAIR_UNAVAILABLE": _info(
        "PAIR_UNAVAILABLE", ErrorCategory.RECIPIENT, False,
        "Exchange does not support the deposit/settle pair",
        "Pick another receive unit or chain",
    ),
    "AMOUNT_BELOW_MINIMUM": _info(
        "AMOUNT_BELOW_MINIMUM", ErrorCategory.RECIPIENT, False,
        "Payment is below the pair minimum",
        "Settle this payment off-exchange",
    ),
    "AMOUNT_ABOVE_MAXIMUM": _info(
        "AMOUNT_ABOVE_MAXIMUM", ErrorCategory.RECIPIENT, False,
        "Payment is above the pair maximum",
        "Split the payment or pick another pair",
    ),

    # ========== EXCHANGE ERRORS ==========
    "QUOTE_FAILED": _info(
        "QUOTE_FAILED", ErrorCategory.INVALID_REQUEST, False,
        "Exchange refused to quote",
        "Retry this recipient later",
    ),
    "QUOTE_EXPIRED": _info(
        "QUOTE_EXPIRED", ErrorCategory.INVALID_REQUEST, False,
        "Quote expired before the order was created",
        "Retry this recipient to obtain a fresh quote",
    ),
    "ORDER_CREATION_FAILED": _info(
        "ORDER_CREATION_FAILED", ErrorCategory.INVALID_REQUEST, False,
        "Exchange refused to create the order",
        "Retry this recipient",
    ),
    "ORDER_NOT_FOUND": _info(
        "ORDER_NOT_FOUND", ErrorCategory.INVALID_REQUEST, False,
        "Exchange does not know the order",
        "Check the order id",
    ),
    "EXCHANGE_UNAVAILABLE": _info(
        "EXCHANGE_UNAVAILABLE", ErrorCategory.EXCHANGE_ERROR, True,
        "Exchange returned a server error",
        "Retry with backoff",
    ),
    "NETWORK_ERROR": _info(
        "NETWORK_ERROR", ErrorCategory.NETWORK, True,
        "Could not reach the exchange",
        "Retry with backoff",
    ),
    "RATE_LIMITED": _info(
        "RATE_LIMITED", ErrorCategory.RATE_LIMIT, True,
        "Exchange rate limit hit",
        "Retry with backoff",
    ),
    "RETRIES_EXHAUSTED": _info(
        "RETRIES_EXHAUSTED", ErrorCategory.RATE_LIMIT, False,
        "Retry budget exhausted",
        "Retry this recipient later",
    ),
    "INVALID_REQUEST": _info(
        "INVALID_REQUEST", ErrorCategory.INVALID_REQUEST, False,
        "Exchange rejected the request",
        "Fix the request",
    ),

    # ========== COMPLIANCE ==========
    "REGION_BLOCKED": _info(
        "REGION_BLOCKED", ErrorCategory.COMPLIANCE, False,
        "Exchange is not available in the caller's jurisdiction",
        "Do not retry",
    ),

    # ========== INTERNAL ==========
    "INTERNAL_ERROR": _info(
        "INTERNAL_ERROR", ErrorCategory.INTERNAL, False,
        "Unexpected internal error",
        "Investigate error",
    ),
}


def get_error_info(code: str) -> ErrorCodeInfo:
    """
    Get error info for a code.

    Args:
        code: Error code

    Returns:
        ErrorCodeInfo or default unknown error
    """
    return ERROR_CODES.get(code, ErrorCodeInfo(
        code=code,
        category=ErrorCategory.INTERNAL,
        is_retryable=False,
        description=f"Unknown error: {code}",
        recommended_action="Investigate error",
    ))


def is_retryable(code: str) -> bool:
    """Check if an error code is retryable."""
    return get_error_info(code).is_retryable


# ============================================================
# HTTP STATUS CLASSIFICATION
# ============================================================

def classify_http_status(status: int) -> Tuple[ErrorCategory, RetryEligibility]:
    """
    Map an HTTP status to (category, retry eligibility).

    429 and 5xx back off; 403 is a compliance denial; any other
    4xx is a definitive client error.
    """
    if status == 429:
        return ErrorCategory.RATE_LIMIT, RetryEligibility.BACKOFF
    if status >= 500:
        return ErrorCategory.EXCHANGE_ERROR, RetryEligibility.BACKOFF
    if status == 403:
        return ErrorCategory.COMPLIANCE, RetryEligibility.NO_RETRY
    if 400 <= status < 500:
        return ErrorCategory.INVALID_REQUEST, RetryEligibility.NO_RETRY
    return ErrorCategory.INTERNAL, RetryEligibility.NO_RETRY


def code_for_http_status(status: Optional[int]) -> str:
    """Registry code for an HTTP status."""
    if status is None:
        return "NETWORK_ERROR"
    if status == 429:
        return "RATE_LIMITED"
    if status >= 500:
        return "EXCHANGE_UNAVAILABLE"
    if status == 403:
        return "REGION_BLOCKED"
    if status == 404:
        return "ORDER_NOT_FOUND"
    return "INVALID_REQUEST"


# ============================================================
# RETRYABLE ERROR SETS
# ============================================================

RETRYABLE_ERROR_CODES: Set[str] = {
    code for code, info in ERROR_CODES.items() if info.is_retryable
}

RECIPIENT_ERROR_CODES: Set[str] = {
    code for code, info in ERROR_CODES.items()
    if info.category == ErrorCategory.RECIPIENT
}
