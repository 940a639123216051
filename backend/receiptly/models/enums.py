"""Enumeration types used throughout the receipt capture API.

Enumerations constrain the values that can be stored in the database
or passed through the API.  When modifying these enums you should
update the prompt in ``receiptly/prompts`` and the chart colours in
``receiptly.services.chart_aggregator`` so new values are handled
everywhere.
"""

from enum import Enum


class ReceiptCategory(str, Enum):
    """Spending category assigned to a receipt."""

    FOOD = "food"
    TRANSPORT = "transport"
    LODGING = "lodging"
    OPTICAL = "optical"
    OTHER = "other"


class StorageStatus(str, Enum):
    """Folder an uploaded object lives in inside its bucket."""

    PENDING = "pending"
    PROCESSED = "processed"
