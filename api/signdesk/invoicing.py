"""Invoice arithmetic and numbering.

Discounts apply to each line's ``quantity * rate``; tax applies to the
discounted line amount. Invoice totals are the sums over all lines.
"""
import random
from datetime import datetime
from typing import Iterable, Optional

from .utils import as_utc, utcnow

PAID_OR_CANCELLED = ("Paid", "Cancelled")


def _field(item, name: str, default=0.0):
    if isinstance(item, dict):
        value = item.get(name, default)
    else:
        value = getattr(item, name, default)
    return default if value is None else value


def line_amount(item) -> float:
    return _field(item, "quantity") * _field(item, "rate")


def line_discount(item) -> float:
    discount = _field(item, "discount")
    return line_amount(item) * discount / 100 if discount else 0.0


def line_tax(item) -> float:
    tax_rate = _field(item, "tax_rate")
    return (line_amount(item) - line_discount(item)) * tax_rate / 100 if tax_rate else 0.0


def calculate_item_total(item) -> float:
    return line_amount(item) - line_discount(item) + line_tax(item)


def calculate_invoice_totals(items: Iterable) -> dict:
    items = list(items)
    subtotal = sum(line_amount(i) for i in items)
    discount_amount = sum(line_discount(i) for i in items)
    tax_amount = sum(line_tax(i) for i in items)
    return {
        "subtotal": subtotal,
        "discount_amount": discount_amount,
        "tax_amount": tax_amount,
        "total": subtotal - discount_amount + tax_amount,
    }


def format_currency(amount: float) -> str:
    sign = "-" if amount < 0 else ""
    return f"{sign}${abs(amount):,.2f}"


def generate_invoice_number(now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    return f"INV-{now.year}{now.month:02d}-{random.randint(0, 999):03d}"


def is_overdue(due_date: Optional[datetime], status: str, now: Optional[datetime] = None) -> bool:
    if status in PAID_OR_CANCELLED or due_date is None:
        return False
    return as_utc(due_date) < as_utc(now or utcnow())
