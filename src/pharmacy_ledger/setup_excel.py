"""Utility for initializing the pharmacy ledger master workbook.

The module doubles as a script (``pharmacy-setup`` or
``python -m pharmacy_ledger.setup_excel``) and as a library used by tests or
other tooling. Shared helpers keep the workbook bootstrap logic consistent
regardless of the execution path.
"""

from __future__ import annotations

import argparse
from pathlib import Path
from typing import Mapping, Sequence
import sys

import openpyxl
from openpyxl.styles import Font
from openpyxl.workbook import Workbook

from . import data_manager
from .constants import SheetName

# Column order must match the serialize_* helpers in data_manager.
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.MEDICINES.value: [
        "MedicineID",
        "Name",
        "Category",
        "VendorID",
        "Price",
        "PurchasePrice",
        "Stock",
        "PaidAmount",
        "DueAmount",
        "IsActive",
        "Version",
    ],
    SheetName.VENDORS.value: [
        "VendorID",
        "VendorName",
        "ContactPerson",
        "Phone",
        "Email",
        "Address",
        "IsActive",
    ],
    SheetName.PURCHASE_ORDERS.value: [
        "OrderID",
        "OrderNumber",
        "VendorID",
        "Status",
        "TotalAmount",
        "PaidAmount",
        "DueAmount",
        "CreatedAt",
        "OrderedBy",
        "Version",
    ],
    SheetName.PURCHASE_ORDER_ITEMS.value: [
        "OrderID",
        "MedicineID",
        "Quantity",
        "UnitPrice",
    ],
    SheetName.SALES.value: [
        "SaleID",
        "Timestamp",
        "Customer",
        "PaymentMethod",
        "TotalAmount",
        "Discount",
        "FinalAmount",
        "PaidAmount",
        "DueAmount",
        "SoldBy",
        "Notes",
        "Version",
    ],
    SheetName.SALE_ITEMS.value: [
        "SaleID",
        "MedicineID",
        "Quantity",
        "UnitPrice",
    ],
    SheetName.VENDOR_TRANSACTIONS.value: [
        "TransactionID",
        "VendorID",
        "Timestamp",
        "TransactionType",
        "EntityKind",
        "EntityID",
        "Amount",
        "PaidAmount",
        "DueAmount",
        "Notes",
    ],
}

CONFIG_FILE = data_manager.CONFIG_FILE_NAME


def build_master_workbook(sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS) -> Workbook:
    """Return an in-memory workbook holding every sheet with a bold header row."""

    workbook = openpyxl.Workbook()

    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)

    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    return workbook


def create_master_workbook(
    destination: Path,
    *,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    overwrite: bool = False,
) -> Path:
    """Create the pharmacy master workbook at ``destination``.

    When ``overwrite`` is ``False`` (the default) this function raises
    ``FileExistsError`` if the target already exists.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing master workbook: {destination}"
        )

    destination.parent.mkdir(parents=True, exist_ok=True)
    build_master_workbook(sheet_columns).save(destination)
    return destination


def load_settings(config_path: Path) -> data_manager.ConfigSettings:
    """Read ``config.ini`` and resolve ``DataFile`` against its directory."""

    config_path = config_path.expanduser().resolve()
    parser = data_manager.read_config(config_path)
    return data_manager.parse_settings(parser, base_path=config_path.parent)


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook named by the configuration file."""

    settings = load_settings(config_path)
    return create_master_workbook(settings.data_file, overwrite=overwrite)


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the pharmacy ledger data file")
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Pharmacy Ledger Setup ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except FileNotFoundError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except (KeyError, ValueError) as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created master workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
