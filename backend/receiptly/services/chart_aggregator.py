"""Fold verified receipts into per-category spending totals for charts.

Only receipts the user has verified count, and only when they carry a
non-zero amount; analytics reflect confirmed spending.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Dict, Iterable, List

from receiptly.models.enums import ReceiptCategory
from receiptly.models.schemas import ChartEntry

CATEGORY_COLORS: Dict[str, str] = {
    ReceiptCategory.FOOD.value: "#22c55e",
    ReceiptCategory.TRANSPORT.value: "#3b82f6",
    ReceiptCategory.LODGING.value: "#f59e0b",
    ReceiptCategory.OPTICAL.value: "#a855f7",
    ReceiptCategory.OTHER.value: "#94a3b8",
}


def get_category_color(category: str) -> str:
    """Display colour for ``category``; unknown categories use the ``other`` colour."""
    key = getattr(category, "value", category) or ""
    return CATEGORY_COLORS.get(str(key).lower(), CATEGORY_COLORS[ReceiptCategory.OTHER.value])


def aggregate_by_category(receipts: Iterable) -> List[ChartEntry]:
    """Sum verified amounts per category, in the order categories first appear."""
    totals: Dict[str, Decimal] = {}
    for receipt in receipts:
        if not receipt.is_verified or not receipt.amount:
            continue
        category = getattr(receipt.category, "value", receipt.category) or ReceiptCategory.OTHER.value
        totals[category] = totals.get(category, Decimal("0")) + Decimal(str(receipt.amount))
    return [
        ChartEntry(name=name.capitalize(), value=float(total), color=get_category_color(name))
        for name, total in totals.items()
    ]
