"""
Order data model and creation-time validation.

RULES:
- Immutable after creation: wallet, tokens, input amount, created_at
- Mutable fields (status, venue, output, execution ref, error) change only
  through the execution pipeline
- Output fields stay unset until CONFIRMED; error stays unset unless FAILED
- Amounts are Decimal, never float
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from swapdesk.errors import ValidationError


WALLET_MIN_LENGTH = 1
WALLET_MAX_LENGTH = 100
TOKEN_MAX_LENGTH = 32

# Amounts are carried to 9 decimal places
AMOUNT_QUANTUM = Decimal("0.000000001")

# Smallest input whose quoted output near par is still a whole quantum
MIN_INPUT_AMOUNT = AMOUNT_QUANTUM.scaleb(3)

# Inputs stay below 10**15 so outputs fit the 28-digit decimal context
# at 9 decimal places
MAX_INPUT_DIGITS = 15
MAX_INPUT_AMOUNT = Decimal(10) ** MAX_INPUT_DIGITS


# ============================================================================
# ORDER STATUS
# ============================================================================

class OrderStatus(Enum):
    """Order lifecycle states, declared in forward order."""
    PENDING = "pending"
    ROUTING = "routing"
    BUILDING = "building"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    FAILED = "failed"

    @property
    def rank(self) -> int:
        """Position in the forward order. CONFIRMED and FAILED share a rank."""
        return _RANKS[self]

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


_RANKS = {
    OrderStatus.PENDING: 0,
    OrderStatus.ROUTING: 1,
    OrderStatus.BUILDING: 2,
    OrderStatus.SUBMITTED: 3,
    OrderStatus.CONFIRMED: 4,
    OrderStatus.FAILED: 4,
}

TERMINAL_STATUSES = frozenset({OrderStatus.CONFIRMED, OrderStatus.FAILED})


# ============================================================================
# ORDER SNAPSHOT
# ============================================================================

@dataclass(frozen=True)
class Order:
    """
    Snapshot of one order as persisted.

    Instances are never mutated; the store hands out a fresh snapshot
    after every write.
    """
    # Identification
    order_id: str
    wallet: str

    # Swap parameters
    input_token: str
    output_token: str
    input_amount: Decimal

    # State tracking
    status: OrderStatus
    created_at: datetime
    updated_at: datetime

    # Execution tracking
    selected_venue: Optional[str] = None
    output_amount: Optional[Decimal] = None
    execution_ref: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_pending(self) -> bool:
        return self.status == OrderStatus.PENDING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "orderId": self.order_id,
            "wallet": self.wallet,
            "inputToken": self.input_token,
            "outputToken": self.output_token,
            "inputAmount": str(self.input_amount),
            "status": self.status.value,
            "selectedVenue": self.selected_venue,
            "outputAmount": str(self.output_amount) if self.output_amount is not None else None,
            "executionRef": self.execution_ref,
            "error": self.error,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


# ============================================================================
# INPUT VALIDATION
# ============================================================================

def parse_amount(value: Any, field: str = "input_amount") -> Decimal:
    """
    Coerce a user-supplied amount to a positive, finite Decimal.

    Floats go through str() so 0.1 stays 0.1.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(field, "must be a number")

    try:
        if isinstance(value, Decimal):
            amount = value
        elif isinstance(value, float):
            amount = Decimal(str(value))
        else:
            amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError(field, f"not a number: {value!r}")

    if not amount.is_finite():
        raise ValidationError(field, "must be finite")
    if amount <= 0:
        raise ValidationError(field, "must be greater than 0")
    return amount


def _parse_token(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(field, "is required")
    token = value.strip().upper()
    if len(token) > TOKEN_MAX_LENGTH:
        raise ValidationError(field, f"must be at most {TOKEN_MAX_LENGTH} characters")
    return token


def validate_order_input(
    wallet: Any,
    input_token: Any,
    output_token: Any,
    input_amount: Any,
) -> Tuple[str, str, str, Decimal]:
    """
    Validate and normalize order creation input.

    Returns:
        (wallet, input_token, output_token, input_amount), normalized

    Raises:
        ValidationError: naming the first offending field
    """
    if not isinstance(wallet, str) or not wallet.strip():
        raise ValidationError("wallet", "is required")
    wallet = wallet.strip()
    if not WALLET_MIN_LENGTH <= len(wallet) <= WALLET_MAX_LENGTH:
        raise ValidationError(
            "wallet",
            f"must be {WALLET_MIN_LENGTH}-{WALLET_MAX_LENGTH} characters",
        )

    token_in = _parse_token(input_token, "input_token")
    token_out = _parse_token(output_token, "output_token")
    if token_in == token_out:
        raise ValidationError("output_token", "must differ from input_token")

    amount = parse_amount(input_amount)
    if amount < MIN_INPUT_AMOUNT:
        raise ValidationError("input_amount", f"must be at least {MIN_INPUT_AMOUNT}")
    if amount >= MAX_INPUT_AMOUNT:
        raise ValidationError(
            "input_amount",
            f"must have at most {MAX_INPUT_DIGITS} integer digits",
        )
    return wallet, token_in, token_out, amount
