"""Enumerations shared across the pharmacy ledger modules.

Centralises domain constants so that the data access layer (DAL), the stock
and payment ledgers, the reconciliation engine, and the CLI rely on a single
source of truth for status values and sheet names.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

DEFAULT_LOW_STOCK_THRESHOLD = 10
DEFAULT_SALES_WINDOW_DAYS = 7

ZERO = Decimal("0.00")
CENT = Decimal("0.01")


class PaymentStatus(str, Enum):
    """Settlement state derived from paid and due amounts."""

    PAID = "PAID"
    PARTIAL = "PARTIAL"
    DUE = "DUE"


class PurchaseOrderStatus(str, Enum):
    """Lifecycle of a purchase order. ``RECEIVED`` and ``CANCELLED`` are terminal."""

    PENDING = "pending"
    RECEIVED = "received"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    """Enumerate supported payment mechanisms for sales."""

    CASH = "CASH"
    CREDIT = "CREDIT"
    CARD = "CARD"
    UPI = "UPI"
    INSURANCE = "INSURANCE"


class EntityKind(str, Enum):
    """Entities whose payment state is tracked by the payment ledger."""

    MEDICINE = "medicine"
    PURCHASE_ORDER = "purchase_order"
    SALE = "sale"


class VendorTransactionType(str, Enum):
    """Kinds of entries in a vendor's transaction history."""

    PURCHASE = "PURCHASE"
    PAYMENT = "PAYMENT"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    MEDICINES = "Medicines"
    VENDORS = "Vendors"
    PURCHASE_ORDERS = "PurchaseOrders"
    PURCHASE_ORDER_ITEMS = "PurchaseOrderItems"
    SALES = "Sales"
    SALE_ITEMS = "SaleItems"
    VENDOR_TRANSACTIONS = "VendorTransactions"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_LOW_STOCK_THRESHOLD",
    "DEFAULT_SALES_WINDOW_DAYS",
    "ZERO",
    "CENT",
    "PaymentStatus",
    "PurchaseOrderStatus",
    "PaymentMethod",
    "EntityKind",
    "VendorTransactionType",
    "SheetName",
]
