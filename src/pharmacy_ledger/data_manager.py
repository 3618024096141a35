"""Data access layer for the pharmacy ledger.

This module provides low-level helpers that read from and write to the
pharmacy master workbook. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading structured records, appending rows, and
   rewriting individual rows, including the version-checked write used by
   the ledgers.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass, replace
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import (
    CENT,
    DEFAULT_LOW_STOCK_THRESHOLD,
    DEFAULT_SALES_WINDOW_DAYS,
    ZERO,
    SheetName,
)


CONFIG_FILE_NAME = "config.ini"
MEDICINES_SHEET = SheetName.MEDICINES.value
VENDORS_SHEET = SheetName.VENDORS.value
PURCHASE_ORDERS_SHEET = SheetName.PURCHASE_ORDERS.value
PURCHASE_ORDER_ITEMS_SHEET = SheetName.PURCHASE_ORDER_ITEMS.value
SALES_SHEET = SheetName.SALES.value
SALE_ITEMS_SHEET = SheetName.SALE_ITEMS.value
VENDOR_TRANSACTIONS_SHEET = SheetName.VENDOR_TRANSACTIONS.value

VERSION_COLUMN = "Version"


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    pharmacy_name: str
    schema_version: str
    default_operator_id: str
    low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD
    sales_window_days: int = DEFAULT_SALES_WINDOW_DAYS


@dataclass(frozen=True)
class VendorRow:
    """In-memory view of a row from the ``Vendors`` sheet."""

    vendor_id: str
    name: str
    contact_person: Optional[str]
    phone: Optional[str]
    email: Optional[str]
    address: Optional[str]
    is_active: bool


@dataclass(frozen=True)
class MedicineRow:
    """In-memory view of a row from the ``Medicines`` sheet.

    ``paid_amount + due_amount`` is the liability recorded at intake. The
    payment status is never stored; see :func:`payment_ledger.recompute_status`.
    """

    medicine_id: str
    name: str
    category: str
    vendor_id: Optional[str]
    price: Decimal
    purchase_price: Decimal
    stock: int
    paid_amount: Decimal
    due_amount: Decimal
    is_active: bool
    version: int = 1


@dataclass(frozen=True)
class PurchaseOrderItemRow:
    """One line of a purchase order."""

    order_id: str
    medicine_id: str
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return (self.unit_price * self.quantity).quantize(CENT)


@dataclass(frozen=True)
class PurchaseOrderRow:
    """In-memory view of a ``PurchaseOrders`` row joined with its items."""

    order_id: str
    order_number: str
    vendor_id: str
    status: str
    total_amount: Decimal
    paid_amount: Decimal
    due_amount: Decimal
    created_at_iso: str
    ordered_by: Optional[str]
    version: int = 1
    items: tuple[PurchaseOrderItemRow, ...] = ()


@dataclass(frozen=True)
class SaleItemRow:
    """One line of a sale, priced at the moment of sale."""

    sale_id: str
    medicine_id: str
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return (self.unit_price * self.quantity).quantize(CENT)


@dataclass(frozen=True)
class SaleRow:
    """In-memory view of a ``Sales`` row joined with its items."""

    sale_id: str
    timestamp_iso: str
    customer: Optional[str]
    payment_method: str
    total_amount: Decimal
    discount: Decimal
    final_amount: Decimal
    paid_amount: Decimal
    due_amount: Decimal
    sold_by: Optional[str]
    notes: Optional[str]
    version: int = 1
    items: tuple[SaleItemRow, ...] = ()

    @property
    def is_paid(self) -> bool:
        return self.due_amount == ZERO


@dataclass(frozen=True)
class VendorTransactionRow:
    """One entry of a vendor's history on the ``VendorTransactions`` sheet.

    ``amount`` is the liability opened by a ``PURCHASE`` or the money sent by a
    ``PAYMENT``. ``paid_amount`` and ``due_amount`` are those of the referenced
    medicine or purchase order right after the event.
    """

    transaction_id: str
    vendor_id: str
    timestamp_iso: str
    transaction_type: str
    entity_kind: str
    entity_id: str
    amount: Decimal
    paid_amount: Decimal
    due_amount: Decimal
    notes: Optional[str] = None


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification, which allows the caller to deliberately target a
    non-standard location. When no explicit path is given the function walks up
    from the current working directory toward the filesystem root looking for a
    file named ``CONFIG_FILE_NAME``. The first match that exists on disk is
    considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search. May be relative to the current working directory.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    The ``[System]`` and ``[Defaults]`` sections are mandatory. The optional
    ``[Reporting]`` section tunes the low-stock threshold and the sales
    window; missing entries fall back to the package defaults. Relative
    ``DataFile`` paths are expanded against ``base_path`` when provided, or
    against the current working directory as a fallback.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory to use as the anchor for relative
            ``DataFile`` entries.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing from the
            configuration.
        ValueError: If a reporting option is not a positive integer.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        pharmacy_name = parser.get("System", "PharmacyName")
        schema_version = parser.get("System", "SchemaVersion")
        default_operator = parser.get("Defaults", "DefaultOperator")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    low_stock_threshold = parser.getint(
        "Reporting", "LowStockThreshold", fallback=DEFAULT_LOW_STOCK_THRESHOLD)
    sales_window_days = parser.getint(
        "Reporting", "SalesWindowDays", fallback=DEFAULT_SALES_WINDOW_DAYS)
    if low_stock_threshold < 0 or sales_window_days <= 0:
        raise ValueError("Reporting options must be positive integers")

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    return ConfigSettings(
        data_file=data_file_path,
        pharmacy_name=pharmacy_name,
        schema_version=schema_version,
        default_operator_id=default_operator,
        low_stock_threshold=low_stock_threshold,
        sales_window_days=sales_window_days,
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master Excel workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the master workbook.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk at an explicitly provided destination.

    Parent directories are created on demand.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def _iter_sheet(workbook: Workbook, sheet_name: str) -> Iterable[tuple]:
    """Yield raw value tuples for every non-empty data row of ``sheet_name``."""

    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def iter_vendors(workbook: Workbook) -> Iterable[VendorRow]:
    """Iterate over vendor records stored on the ``Vendors`` worksheet."""

    for raw in _iter_sheet(workbook, VENDORS_SHEET):
        yield deserialize_vendor(raw)


def iter_medicines(workbook: Workbook) -> Iterable[MedicineRow]:
    """Iterate over the ``Medicines`` worksheet and yield typed records.

    Header and completely empty rows are ignored. Remaining rows are converted
    into :class:`MedicineRow` instances which normalize the raw worksheet values
    into predictable Python types (``int`` stock, quantized ``Decimal`` money).
    """

    for raw in _iter_sheet(workbook, MEDICINES_SHEET):
        yield deserialize_medicine(raw)


def iter_purchase_order_items(workbook: Workbook) -> Iterable[PurchaseOrderItemRow]:
    for raw in _iter_sheet(workbook, PURCHASE_ORDER_ITEMS_SHEET):
        yield deserialize_purchase_order_item(raw)


def iter_sale_items(workbook: Workbook) -> Iterable[SaleItemRow]:
    for raw in _iter_sheet(workbook, SALE_ITEMS_SHEET):
        yield deserialize_sale_item(raw)


def iter_purchase_orders(workbook: Workbook) -> Iterable[PurchaseOrderRow]:
    """Stream purchase orders with their line items attached.

    Line items live on a separate sheet keyed by ``OrderID``; they are grouped
    in sheet order so each yielded :class:`PurchaseOrderRow` carries its items
    in the sequence they were recorded.
    """

    items: Dict[str, List[PurchaseOrderItemRow]] = {}
    for item in iter_purchase_order_items(workbook):
        items.setdefault(item.order_id, []).append(item)

    for raw in _iter_sheet(workbook, PURCHASE_ORDERS_SHEET):
        order = deserialize_purchase_order(raw)
        yield replace(order, items=tuple(items.get(order.order_id, ())))


def iter_sales(workbook: Workbook) -> Iterable[SaleRow]:
    """Stream sales with their line items attached, in sheet order."""

    items: Dict[str, List[SaleItemRow]] = {}
    for item in iter_sale_items(workbook):
        items.setdefault(item.sale_id, []).append(item)

    for raw in _iter_sheet(workbook, SALES_SHEET):
        sale = deserialize_sale(raw)
        yield replace(sale, items=tuple(items.get(sale.sale_id, ())))


def iter_vendor_transactions(workbook: Workbook) -> Iterable[VendorTransactionRow]:
    """Stream vendor history entries in the order they were recorded."""

    for raw in _iter_sheet(workbook, VENDOR_TRANSACTIONS_SHEET):
        yield deserialize_vendor_transaction(raw)


def header_map(workbook: Workbook, sheet_name: str) -> Dict[str, int]:
    """Return a mapping of header titles to 1-based column indices."""

    sheet = workbook[sheet_name]
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the column that stores the
            lookup key.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    headers = header_map(workbook, sheet_name)
    if key_column not in headers:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = headers[key_column]
    sheet = workbook[sheet_name]
    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        cell_value = row[key_col_index - 1]
        if cell_value is not None and str(cell_value) == key_value:
            return row_idx

    return None


def read_row(workbook: Workbook, sheet_name: str, row_index: int) -> List[object]:
    """Return the raw values of one worksheet row, padded to the header width."""

    sheet = workbook[sheet_name]
    width = len(header_map(workbook, sheet_name))
    return [sheet.cell(row=row_index, column=col).value for col in range(1, width + 1)]


def write_row(workbook: Workbook, sheet_name: str, row_index: int, values: Sequence[object]) -> None:
    """Overwrite one worksheet row with ``values`` in column order."""

    sheet = workbook[sheet_name]
    for col, value in enumerate(values, start=1):
        sheet.cell(row=row_index, column=col, value=value)


def append_row(workbook: Workbook, sheet_name: str, values: Sequence[object]) -> int:
    """Append ``values`` to ``sheet_name`` and return the new row's index."""

    sheet = workbook[sheet_name]
    # write below the last populated row; rows removed by delete_row leave no gap
    row_index = sheet.max_row + 1
    for col, value in enumerate(values, start=1):
        sheet.cell(row=row_index, column=col, value=value)
    return row_index


def delete_row(workbook: Workbook, sheet_name: str, row_index: int) -> None:
    """Remove one row, shifting the rows below it up by one."""

    workbook[sheet_name].delete_rows(row_index, 1)


def update_fields(workbook: Workbook, sheet_name: str, row_index: int, *, field_values: dict[str, Any]) -> None:
    """Update selected columns of an existing row.

    Only the specified fields are modified, leaving other columns untouched.

    Raises:
        KeyError: If any referenced column is missing from the header row.
    """

    headers = header_map(workbook, sheet_name)
    sheet = workbook[sheet_name]
    for field, value in field_values.items():
        if field not in headers:
            raise KeyError(f"Unknown {sheet_name} field: {field}")
        sheet.cell(row=row_index, column=headers[field], value=value)


def compare_and_set(
    workbook: Workbook,
    sheet_name: str,
    row_index: int,
    *,
    expected_version: int,
    field_values: dict[str, Any],
) -> bool:
    """Write ``field_values`` only if the row still carries ``expected_version``.

    On success the row's ``Version`` column is incremented alongside the
    requested fields and ``True`` is returned. A mismatch leaves the row
    untouched and returns ``False``; translating that into a domain error is
    the caller's job.
    """

    headers = header_map(workbook, sheet_name)
    if VERSION_COLUMN not in headers:
        raise KeyError(f"Sheet {sheet_name} is not versioned")

    sheet = workbook[sheet_name]
    current = _to_int(sheet.cell(row=row_index, column=headers[VERSION_COLUMN]).value, default=1)
    if current != expected_version:
        log.debug(
            "Version mismatch on %s row %d: expected %d, found %d",
            sheet_name,
            row_index,
            expected_version,
            current,
        )
        return False

    update_fields(
        workbook,
        sheet_name,
        row_index,
        field_values={**field_values, VERSION_COLUMN: current + 1},
    )
    return True


def serialize_vendor(record: VendorRow) -> list[object]:
    """Convert a vendor dataclass into the worksheet column ordering."""

    return [
        record.vendor_id,
        record.name,
        record.contact_person,
        record.phone,
        record.email,
        record.address,
        record.is_active,
    ]


def serialize_medicine(record: MedicineRow) -> list[object]:
    """Convert a medicine dataclass into the worksheet column ordering.

    Returns:
        list[object]: Values arranged as ``[MedicineID, Name, Category,
        VendorID, Price, PurchasePrice, Stock, PaidAmount, DueAmount,
        IsActive, Version]``.
    """

    return [
        record.medicine_id,
        record.name,
        record.category,
        record.vendor_id,
        record.price,
        record.purchase_price,
        record.stock,
        record.paid_amount,
        record.due_amount,
        record.is_active,
        record.version,
    ]


def serialize_purchase_order(record: PurchaseOrderRow) -> list[object]:
    """Convert a purchase order header into the worksheet column ordering.

    Line items are serialized separately via
    :func:`serialize_purchase_order_item`.
    """

    return [
        record.order_id,
        record.order_number,
        record.vendor_id,
        record.status,
        record.total_amount,
        record.paid_amount,
        record.due_amount,
        record.created_at_iso,
        record.ordered_by,
        record.version,
    ]


def serialize_purchase_order_item(record: PurchaseOrderItemRow) -> list[object]:
    return [record.order_id, record.medicine_id, record.quantity, record.unit_price]


def serialize_sale(record: SaleRow) -> list[object]:
    """Convert a sale header into the worksheet column ordering."""

    return [
        record.sale_id,
        record.timestamp_iso,
        record.customer,
        record.payment_method,
        record.total_amount,
        record.discount,
        record.final_amount,
        record.paid_amount,
        record.due_amount,
        record.sold_by,
        record.notes,
        record.version,
    ]


def serialize_sale_item(record: SaleItemRow) -> list[object]:
    return [record.sale_id, record.medicine_id, record.quantity, record.unit_price]


def serialize_vendor_transaction(record: VendorTransactionRow) -> list[object]:
    """Convert a vendor history entry into the worksheet column ordering."""

    return [
        record.transaction_id,
        record.vendor_id,
        record.timestamp_iso,
        record.transaction_type,
        record.entity_kind,
        record.entity_id,
        record.amount,
        record.paid_amount,
        record.due_amount,
        record.notes,
    ]


def _to_decimal(raw: object) -> Decimal:
    """Normalize a worksheet cell into a cent-quantized :class:`Decimal`."""

    if raw is None or raw == "":
        return ZERO
    try:
        return Decimal(str(raw)).quantize(CENT)
    except InvalidOperation as exc:
        raise ValueError(f"Invalid monetary value in workbook: {raw!r}") from exc


def _to_int(raw: object, *, default: int = 0) -> int:
    if raw is None or raw == "":
        return default
    return int(Decimal(str(raw)))


def _to_optional_str(raw: object) -> Optional[str]:
    return str(raw) if raw is not None else None


def deserialize_vendor(raw_row: Sequence[object]) -> VendorRow:
    """Convert a raw worksheet row into a strongly typed vendor record."""

    vendor_id, name, contact_person, phone, email, address, is_active = raw_row[:7]
    return VendorRow(
        vendor_id=str(vendor_id),
        name=str(name),
        contact_person=_to_optional_str(contact_person),
        phone=_to_optional_str(phone),
        email=_to_optional_str(email),
        address=_to_optional_str(address),
        is_active=bool(is_active),
    )


def deserialize_medicine(raw_row: Sequence[object]) -> MedicineRow:
    """Convert a raw worksheet row into a strongly typed medicine record.

    Identifier and name fields are coerced to ``str`` to avoid surprises caused
    by Excel automatically interpreting numbers. Money columns become
    :class:`~decimal.Decimal` and the stock column an ``int``.
    """

    (
        medicine_id,
        name,
        category,
        vendor_id,
        price,
        purchase_price,
        stock,
        paid_amount,
        due_amount,
        is_active,
        version,
    ) = raw_row[:11]

    return MedicineRow(
        medicine_id=str(medicine_id),
        name=str(name),
        category=str(category) if category is not None else "",
        vendor_id=_to_optional_str(vendor_id),
        price=_to_decimal(price),
        purchase_price=_to_decimal(purchase_price),
        stock=_to_int(stock),
        paid_amount=_to_decimal(paid_amount),
        due_amount=_to_decimal(due_amount),
        is_active=bool(is_active),
        version=_to_int(version, default=1),
    )


def deserialize_purchase_order(raw_row: Sequence[object]) -> PurchaseOrderRow:
    """Convert a raw ``PurchaseOrders`` row into a header record without items."""

    (
        order_id,
        order_number,
        vendor_id,
        status,
        total_amount,
        paid_amount,
        due_amount,
        created_at_iso,
        ordered_by,
        version,
    ) = raw_row[:10]

    return PurchaseOrderRow(
        order_id=str(order_id),
        order_number=str(order_number) if order_number is not None else "",
        vendor_id=str(vendor_id),
        status=str(status),
        total_amount=_to_decimal(total_amount),
        paid_amount=_to_decimal(paid_amount),
        due_amount=_to_decimal(due_amount),
        created_at_iso=str(created_at_iso) if created_at_iso is not None else "",
        ordered_by=_to_optional_str(ordered_by),
        version=_to_int(version, default=1),
    )


def deserialize_purchase_order_item(raw_row: Sequence[object]) -> PurchaseOrderItemRow:
    order_id, medicine_id, quantity, unit_price = raw_row[:4]
    return PurchaseOrderItemRow(
        order_id=str(order_id),
        medicine_id=str(medicine_id),
        quantity=_to_int(quantity),
        unit_price=_to_decimal(unit_price),
    )


def deserialize_sale(raw_row: Sequence[object]) -> SaleRow:
    """Convert a raw ``Sales`` row into a header record without items."""

    (
        sale_id,
        timestamp_iso,
        customer,
        payment_method,
        total_amount,
        discount,
        final_amount,
        paid_amount,
        due_amount,
        sold_by,
        notes,
        version,
    ) = raw_row[:12]

    return SaleRow(
        sale_id=str(sale_id),
        timestamp_iso=str(timestamp_iso) if timestamp_iso is not None else "",
        customer=_to_optional_str(customer),
        payment_method=str(payment_method),
        total_amount=_to_decimal(total_amount),
        discount=_to_decimal(discount),
        final_amount=_to_decimal(final_amount),
        paid_amount=_to_decimal(paid_amount),
        due_amount=_to_decimal(due_amount),
        sold_by=_to_optional_str(sold_by),
        notes=_to_optional_str(notes),
        version=_to_int(version, default=1),
    )


def deserialize_sale_item(raw_row: Sequence[object]) -> SaleItemRow:
    sale_id, medicine_id, quantity, unit_price = raw_row[:4]
    return SaleItemRow(
        sale_id=str(sale_id),
        medicine_id=str(medicine_id),
        quantity=_to_int(quantity),
        unit_price=_to_decimal(unit_price),
    )


def deserialize_vendor_transaction(raw_row: Sequence[object]) -> VendorTransactionRow:
    """Convert a raw ``VendorTransactions`` row into a typed history entry."""

    (
        transaction_id,
        vendor_id,
        timestamp_iso,
        transaction_type,
        entity_kind,
        entity_id,
        amount,
        paid_amount,
        due_amount,
        notes,
    ) = raw_row[:10]

    return VendorTransactionRow(
        transaction_id=str(transaction_id),
        vendor_id=str(vendor_id),
        timestamp_iso=str(timestamp_iso) if timestamp_iso is not None else "",
        transaction_type=str(transaction_type),
        entity_kind=str(entity_kind),
        entity_id=str(entity_id),
        amount=_to_decimal(amount),
        paid_amount=_to_decimal(paid_amount),
        due_amount=_to_decimal(due_amount),
        notes=_to_optional_str(notes),
    )
