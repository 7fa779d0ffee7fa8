from __future__ import annotations

from enum import Enum


class InvoiceStatus(str, Enum):
    """Invoice payment states. Any state may follow any other."""

    PENDING = "PENDING"
    SENT = "SENT"
    PAID = "PAID"
    OVERDUE = "OVERDUE"


class BillStatus(str, Enum):
    PENDING = "PENDING"
    PAID = "PAID"
