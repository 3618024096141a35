"""Unit tests documenting the expected behavior of the data access layer."""

from __future__ import annotations

import configparser
from decimal import Decimal
from pathlib import Path

import openpyxl
from openpyxl.workbook import Workbook as OpenpyxlWorkbook
import pytest

from pharmacy_ledger import constants, data_manager
from pharmacy_ledger.setup_excel import SHEET_COLUMNS, build_master_workbook


def _medicine_values(medicine_id: str = "M1", *, stock: int = 10, version: int = 1) -> list[object]:
    return [
        medicine_id,
        "Paracetamol",
        "Tablets",
        "V1",
        Decimal("5.00"),
        Decimal("2.50"),
        stock,
        Decimal("0.00"),
        Decimal("25.00"),
        True,
        version,
    ]


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def test_find_config_file_respects_explicit_path(config_file: Path):
    """Supplying an explicit path should be treated as the winning answer."""

    result = data_manager.find_config_file(config_file)
    assert result == config_file


def test_find_config_file_discovers_in_cwd(tmp_path, monkeypatch):
    """Auto-discovery should locate config.ini in the working directory tree."""

    config_dir = tmp_path / "nested"
    config_dir.mkdir(parents=True)
    config_file = config_dir / "config.ini"
    config_file.write_text("[System]\nDataFile=pharmacy_ledger.xlsx")
    monkeypatch.chdir(config_dir)

    result = data_manager.find_config_file()
    assert result == config_file


def test_find_config_file_walks_up_to_parent(tmp_path, monkeypatch):
    """A config.ini in a parent directory should be found from a child."""

    (tmp_path / "config.ini").write_text("[System]\n")
    child = tmp_path / "a" / "b"
    child.mkdir(parents=True)
    monkeypatch.chdir(child)

    assert data_manager.find_config_file() == tmp_path / "config.ini"


def test_find_config_file_raises_when_missing(tmp_path, monkeypatch):
    """Absent configuration should surface a clear FileNotFoundError."""

    monkeypatch.chdir(tmp_path)
    with pytest.raises(FileNotFoundError):
        data_manager.find_config_file()


def test_read_config_loads_sections(config_file: Path):
    """read_config should return a populated ConfigParser."""

    parser = data_manager.read_config(config_file)
    assert parser.get("System", "PharmacyName") == "Test Pharmacy"
    assert parser.get("Defaults", "DefaultOperator") == "OP-DEFAULT"


def test_read_config_missing_file_raises(tmp_path):
    """Missing files should propagate a FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        data_manager.read_config(tmp_path / "not_there.ini")


def test_parse_settings_resolves_relative_paths(config_factory):
    """Relative DataFile entries should be anchored to the config location."""

    parser = configparser.ConfigParser()
    bundle = config_factory(make_relative=True)
    parser.read(bundle.config_path)
    settings = data_manager.parse_settings(parser, base_path=bundle.config_path.parent)
    assert settings.data_file == (bundle.config_path.parent / bundle.workbook_path.name).resolve()
    assert settings.default_operator_id == "OP-DEFAULT"
    assert settings.pharmacy_name == "Test Pharmacy"


def test_parse_settings_uses_reporting_defaults(config_file: Path):
    """Without a [Reporting] section the package defaults apply."""

    settings = data_manager.parse_settings(data_manager.read_config(config_file))
    assert settings.low_stock_threshold == constants.DEFAULT_LOW_STOCK_THRESHOLD
    assert settings.sales_window_days == constants.DEFAULT_SALES_WINDOW_DAYS


def test_parse_settings_reads_reporting_section(config_factory):
    """[Reporting] entries should override the defaults."""

    bundle = config_factory(extra="\n[Reporting]\nLowStockThreshold = 3\nSalesWindowDays = 14\n")
    settings = data_manager.parse_settings(data_manager.read_config(bundle.config_path))
    assert settings.low_stock_threshold == 3
    assert settings.sales_window_days == 14


def test_parse_settings_rejects_non_positive_window(config_factory):
    """A zero-day sales window is a configuration error."""

    bundle = config_factory(extra="\n[Reporting]\nSalesWindowDays = 0\n")
    with pytest.raises(ValueError):
        data_manager.parse_settings(data_manager.read_config(bundle.config_path))


def test_parse_settings_requires_expected_sections(tmp_path):
    """Missing keys should result in a descriptive KeyError."""

    parser = configparser.ConfigParser()
    parser.read_string("[Other]\nvalue=1")
    with pytest.raises(KeyError):
        data_manager.parse_settings(parser, base_path=tmp_path)


# ---------------------------------------------------------------------------
# Workbook lifecycle
# ---------------------------------------------------------------------------


def test_open_workbook_returns_openpyxl_instance(master_workbook_path):
    """open_workbook should hand back a loaded Workbook object."""

    workbook = data_manager.open_workbook(master_workbook_path)
    assert isinstance(workbook, OpenpyxlWorkbook)
    assert set(SHEET_COLUMNS) <= set(workbook.sheetnames)


def test_open_workbook_missing_file_raises(tmp_path):
    """Missing workbook files should yield FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        data_manager.open_workbook(tmp_path / "missing.xlsx")


def test_save_workbook_persists_decimal_values(master_workbook_path):
    """Decimals written to cells should come back as equal cent amounts."""

    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_row(workbook, data_manager.MEDICINES_SHEET, _medicine_values())
    data_manager.save_workbook(workbook, master_workbook_path)

    reloaded = data_manager.open_workbook(master_workbook_path)
    (medicine,) = list(data_manager.iter_medicines(reloaded))
    assert medicine.price == Decimal("5.00")
    assert medicine.due_amount == Decimal("25.00")
    assert medicine.stock == 10
    assert medicine.is_active is True


def test_save_workbook_with_destination_creates_copy(master_workbook_path, tmp_path):
    """Providing a destination should create a new file independent of the source."""

    workbook = data_manager.open_workbook(master_workbook_path)
    workbook[data_manager.VENDORS_SHEET].append(["V2", "Jordan Supplies", None, None, None, None, True])
    copy_path = tmp_path / "nested" / "copy.xlsx"
    data_manager.save_workbook(workbook, destination=copy_path)

    copy = openpyxl.load_workbook(copy_path)
    rows = list(copy[data_manager.VENDORS_SHEET].iter_rows(min_row=2, values_only=True))
    assert ("V2", "Jordan Supplies", None, None, None, None, True) in rows


def test_refresh_workbook_discards_unsaved_changes(master_workbook_path):
    """refresh_workbook should return a freshly loaded workbook from disk."""

    original = data_manager.open_workbook(master_workbook_path)
    data_manager.append_row(original, data_manager.MEDICINES_SHEET, _medicine_values())

    refreshed = data_manager.refresh_workbook(master_workbook_path)
    assert refreshed is not original
    assert list(data_manager.iter_medicines(refreshed)) == []


# ---------------------------------------------------------------------------
# Row access
# ---------------------------------------------------------------------------


def test_append_row_returns_row_index_and_locate_finds_it():
    """Appended rows should be addressable by their key column."""

    workbook = build_master_workbook()
    first = data_manager.append_row(workbook, data_manager.MEDICINES_SHEET, _medicine_values("M1"))
    second = data_manager.append_row(workbook, data_manager.MEDICINES_SHEET, _medicine_values("M2"))

    assert (first, second) == (2, 3)
    assert data_manager.locate_row(workbook, data_manager.MEDICINES_SHEET, "MedicineID", "M2") == 3
    assert data_manager.locate_row(workbook, data_manager.MEDICINES_SHEET, "MedicineID", "M9") is None


def test_locate_row_unknown_column_raises():
    """Looking up by a column missing from the header is a programming error."""

    workbook = build_master_workbook()
    with pytest.raises(KeyError):
        data_manager.locate_row(workbook, data_manager.MEDICINES_SHEET, "Nope", "M1")


def test_delete_row_then_append_leaves_no_gap():
    """Rows removed during rollback must not leave holes before the next append."""

    workbook = build_master_workbook()
    data_manager.append_row(workbook, data_manager.MEDICINES_SHEET, _medicine_values("M1"))
    index = data_manager.append_row(workbook, data_manager.MEDICINES_SHEET, _medicine_values("M2"))
    data_manager.delete_row(workbook, data_manager.MEDICINES_SHEET, index)

    assert data_manager.append_row(workbook, data_manager.MEDICINES_SHEET, _medicine_values("M3")) == index
    ids = [row.medicine_id for row in data_manager.iter_medicines(workbook)]
    assert ids == ["M1", "M3"]


def test_read_row_pads_to_header_width():
    """read_row should return one value per header column."""

    workbook = build_master_workbook()
    index = data_manager.append_row(workbook, data_manager.PURCHASE_ORDER_ITEMS_SHEET, ["P1", "M1"])
    values = data_manager.read_row(workbook, data_manager.PURCHASE_ORDER_ITEMS_SHEET, index)
    assert values == ["P1", "M1", None, None]


def test_update_fields_rejects_unknown_column():
    """update_fields should refuse to write outside the declared schema."""

    workbook = build_master_workbook()
    index = data_manager.append_row(workbook, data_manager.MEDICINES_SHEET, _medicine_values())
    with pytest.raises(KeyError):
        data_manager.update_fields(workbook, data_manager.MEDICINES_SHEET, index, field_values={"Colour": "red"})


def test_compare_and_set_bumps_version_on_match():
    """A matching version should write the fields and increment Version."""

    workbook = build_master_workbook()
    index = data_manager.append_row(workbook, data_manager.MEDICINES_SHEET, _medicine_values(version=3))

    written = data_manager.compare_and_set(
        workbook,
        data_manager.MEDICINES_SHEET,
        index,
        expected_version=3,
        field_values={"Stock": 7},
    )

    medicine = data_manager.deserialize_medicine(data_manager.read_row(workbook, data_manager.MEDICINES_SHEET, index))
    assert written is True
    assert medicine.stock == 7
    assert medicine.version == 4


def test_compare_and_set_leaves_row_on_mismatch():
    """A stale version should leave the row untouched and report False."""

    workbook = build_master_workbook()
    index = data_manager.append_row(workbook, data_manager.MEDICINES_SHEET, _medicine_values(version=2))

    written = data_manager.compare_and_set(
        workbook,
        data_manager.MEDICINES_SHEET,
        index,
        expected_version=1,
        field_values={"Stock": 0},
    )

    medicine = data_manager.deserialize_medicine(data_manager.read_row(workbook, data_manager.MEDICINES_SHEET, index))
    assert written is False
    assert medicine.stock == 10
    assert medicine.version == 2


def test_compare_and_set_requires_versioned_sheet():
    """Vendors carry no Version column and cannot be compare-and-set."""

    workbook = build_master_workbook()
    index = data_manager.append_row(workbook, data_manager.VENDORS_SHEET, ["V1", "Acme", None, None, None, None, True])
    with pytest.raises(KeyError):
        data_manager.compare_and_set(
            workbook, data_manager.VENDORS_SHEET, index, expected_version=1, field_values={"IsActive": False}
        )


# ---------------------------------------------------------------------------
# (De)serialization
# ---------------------------------------------------------------------------


def test_serialize_medicine_matches_sheet_columns():
    """Serialized medicines should line up with the Medicines header."""

    record = data_manager.deserialize_medicine(_medicine_values())
    values = data_manager.serialize_medicine(record)
    assert len(values) == len(SHEET_COLUMNS[constants.SheetName.MEDICINES.value])
    assert values[0] == "M1"
    assert values[-1] == 1


def test_deserialize_medicine_normalizes_excel_values():
    """Numeric ids, float money and blank versions should be normalized."""

    record = data_manager.deserialize_medicine([101, "Ibuprofen", None, 7, 4.5, 2, 3.0, None, 6, 1, None])
    assert record.medicine_id == "101"
    assert record.vendor_id == "7"
    assert record.category == ""
    assert record.price == Decimal("4.50")
    assert record.stock == 3
    assert record.paid_amount == Decimal("0.00")
    assert record.due_amount == Decimal("6.00")
    assert record.version == 1


def test_deserialize_medicine_rejects_garbage_money():
    """Unparsable money cells should raise ValueError rather than guess."""

    values = _medicine_values()
    values[4] = "five"
    with pytest.raises(ValueError):
        data_manager.deserialize_medicine(values)


def test_iter_purchase_orders_attaches_items_in_sheet_order():
    """Purchase orders should carry their own items and nobody else's."""

    workbook = build_master_workbook()
    for order_id in ("P1", "P2"):
        data_manager.append_row(
            workbook,
            data_manager.PURCHASE_ORDERS_SHEET,
            [order_id, f"PO-20240101-000{order_id[-1]}", "V1", "pending", Decimal("10"), 0, Decimal("10"), "", None, 1],
        )
    data_manager.append_row(workbook, data_manager.PURCHASE_ORDER_ITEMS_SHEET, ["P1", "M1", 2, Decimal("2.50")])
    data_manager.append_row(workbook, data_manager.PURCHASE_ORDER_ITEMS_SHEET, ["P2", "M2", 1, Decimal("10")])
    data_manager.append_row(workbook, data_manager.PURCHASE_ORDER_ITEMS_SHEET, ["P1", "M3", 1, Decimal("5")])

    orders = {order.order_id: order for order in data_manager.iter_purchase_orders(workbook)}

    assert [item.medicine_id for item in orders["P1"].items] == ["M1", "M3"]
    assert [item.medicine_id for item in orders["P2"].items] == ["M2"]
    assert orders["P1"].items[0].line_total == Decimal("5.00")


def test_iter_sales_skips_blank_rows():
    """Completely empty rows between records should be ignored."""

    workbook = build_master_workbook()
    sheet = workbook[data_manager.SALES_SHEET]
    sheet.append(["S1", "2024-01-01T10:00:00+00:00", None, "CASH", 5, 0, 5, 5, 0, "OP", None, 1])
    sheet.append([None] * 12)
    sheet.append(["S2", "2024-01-01T11:00:00+00:00", "Ana", "CREDIT", 8, 0, 8, 0, 8, "OP", None, 1])

    sales = list(data_manager.iter_sales(workbook))

    assert [sale.sale_id for sale in sales] == ["S1", "S2"]
    assert sales[0].is_paid is True
    assert sales[1].is_paid is False


def test_vendor_transactions_read_back_from_sheet():
    """History rows follow the sheet columns and normalize Excel numbers to cents."""

    workbook = build_master_workbook()
    entry = data_manager.VendorTransactionRow(
        transaction_id="VT1",
        vendor_id="V1",
        timestamp_iso="2024-01-01T10:00:00+00:00",
        transaction_type="PAYMENT",
        entity_kind="medicine",
        entity_id="M1",
        amount=Decimal("200.00"),
        paid_amount=Decimal("200.00"),
        due_amount=Decimal("300.00"),
    )
    assert len(data_manager.serialize_vendor_transaction(entry)) == len(
        SHEET_COLUMNS[data_manager.VENDOR_TRANSACTIONS_SHEET]
    )
    data_manager.append_row(
        workbook, data_manager.VENDOR_TRANSACTIONS_SHEET, data_manager.serialize_vendor_transaction(entry)
    )
    workbook[data_manager.VENDOR_TRANSACTIONS_SHEET].append(
        ["VT2", "V2", "2024-01-02T09:00:00+00:00", "PURCHASE", "purchase_order", "P1", 50, 0, 50.5, "first order"]
    )

    first, second = data_manager.iter_vendor_transactions(workbook)

    assert first == entry
    assert (second.amount, second.paid_amount, second.due_amount) == (
        Decimal("50.00"),
        Decimal("0.00"),
        Decimal("50.50"),
    )
    assert second.notes == "first order"
