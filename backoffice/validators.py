"""
Business-rule validation for checkout requests.

Covers the rules a schema cannot express on its own.
"""
from typing import List, Tuple
from decimal import Decimal
from . import schemas

MAX_ORDER_LINES = 100
MAX_LINE_QUANTITY = 10000


def validate_order_lines(items: List[schemas.OrderLineIn]) -> Tuple[bool, str]:
    """
    Validate checkout lines for business rules.

    Args:
        items: Requested order lines

    Returns:
        Tuple of (is_valid, error_message)
    """
    if len(items) > MAX_ORDER_LINES:
        return False, f"Order cannot contain more than {MAX_ORDER_LINES} items"

    product_ids = [item.product_id for item in items]
    if len(product_ids) != len(set(product_ids)):
        return False, "Order contains duplicate products"

    for item in items:
        if item.quantity > MAX_LINE_QUANTITY:
            return False, f"Item {item.product_id}: quantity exceeds maximum ({MAX_LINE_QUANTITY})"

    return True, ""


def validate_claimed_total(calculated_total: Decimal, claimed_total: Decimal) -> Tuple[bool, str]:
    """
    Compare the total shown at the till with the server-side total.

    Args:
        calculated_total: Total recomputed from live product prices
        claimed_total: The total claimed by the client

    Returns:
        Tuple of (matches, message)
    """
    # Allow small rounding differences (up to 0.01)
    if abs(calculated_total - claimed_total) > Decimal("0.01"):
        return False, f"Order total mismatch: calculated {calculated_total}, claimed {claimed_total}"
    return True, ""
