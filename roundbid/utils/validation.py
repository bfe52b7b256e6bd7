"""
Input Validation - Sanitization of values crossing the engine boundary.

Every validator returns (is_valid, error_message) so callers can turn a
failure into a typed INVALID_INPUT rejection without raising.
"""

import re
from typing import Tuple, Any, Optional

# =============================================================================
# Constants
# =============================================================================

MAX_IDENTIFIER_LENGTH = 64
MAX_NAME_LENGTH = 128

# Monetary bounds (whole currency units)
MIN_AMOUNT = 1
MAX_AMOUNT = 10**12

IDENTIFIER_PATTERN = r"^[A-Za-z0-9][A-Za-z0-9._:-]*$"


# =============================================================================
# Validation Functions
# =============================================================================


def validate_integer(
    value: Any,
    name: str,
    min_val: int,
    max_val: int,
) -> Tuple[bool, str]:
    """
    Validate integer within bounds.

    Args:
        value: Value to validate
        name: Field name for errors
        min_val: Minimum allowed value
        max_val: Maximum allowed value

    Returns:
        (is_valid, error_message)
    """
    if isinstance(value, bool) or not isinstance(value, int):
        return False, f"{name} must be int, got {type(value).__name__}"

    if value < min_val:
        return False, f"{name} must be >= {min_val}, got {value}"

    if value > max_val:
        return False, f"{name} must be <= {max_val}, got {value}"

    return True, ""


def validate_string(
    value: Any,
    name: str,
    max_length: int = MAX_NAME_LENGTH,
    pattern: Optional[str] = None,
) -> Tuple[bool, str]:
    """
    Validate string input.

    Args:
        value: Value to validate
        name: Field name for errors
        max_length: Maximum string length
        pattern: Optional regex pattern

    Returns:
        (is_valid, error_message)
    """
    if not isinstance(value, str):
        return False, f"{name} must be str, got {type(value).__name__}"

    if not value.strip():
        return False, f"{name} must not be empty"

    if len(value) > max_length:
        return False, f"{name} exceeds max length {max_length}"

    if pattern and not re.match(pattern, value):
        return False, f"{name} does not match required pattern"

    return True, ""


def validate_identifier(value: Any, name: str = "id") -> Tuple[bool, str]:
    """Validate an auction or participant identifier."""
    return validate_string(value, name, MAX_IDENTIFIER_LENGTH, IDENTIFIER_PATTERN)


def validate_amount(amount: Any, name: str = "amount") -> Tuple[bool, str]:
    """Validate a bid or fee amount."""
    return validate_integer(amount, name, MIN_AMOUNT, MAX_AMOUNT)


def validate_round(round_number: Any, total_rounds: int) -> Tuple[bool, str]:
    """Validate a round number against the auction's round count."""
    return validate_integer(round_number, "round", 1, total_rounds)


# =============================================================================
# Composite Validators
# =============================================================================


def validate_bid_request(
    auction_id: Any,
    participant_id: Any,
    round_number: Any,
    amount: Any,
    total_rounds: int,
) -> Tuple[bool, str]:
    """Validate all fields of a bid submission."""
    checks = (
        validate_identifier(auction_id, "auction_id"),
        validate_identifier(participant_id, "participant_id"),
        validate_round(round_number, total_rounds),
        validate_amount(amount),
    )
    for valid, err in checks:
        if not valid:
            return False, err
    return True, ""


__all__ = [
    "validate_integer",
    "validate_string",
    "validate_identifier",
    "validate_amount",
    "validate_round",
    "validate_bid_request",
    "MIN_AMOUNT",
    "MAX_AMOUNT",
]
