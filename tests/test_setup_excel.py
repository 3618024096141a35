"""Tests for the workbook bootstrap script."""

from __future__ import annotations

import openpyxl
import pytest

from pharmacy_ledger import setup_excel
from pharmacy_ledger.constants import SheetName


def test_build_master_workbook_has_every_sheet():
    """All ledger sheets exist with their header rows and no default sheet."""

    workbook = setup_excel.build_master_workbook()

    assert workbook.sheetnames == [sheet.value for sheet in SheetName]
    for sheet_name, columns in setup_excel.SHEET_COLUMNS.items():
        header = [cell.value for cell in workbook[sheet_name][1]]
        assert header == list(columns)
        assert workbook[sheet_name]["A1"].font.bold


def test_create_master_workbook_refuses_overwrite(tmp_path):
    """Existing workbooks are only replaced with overwrite=True."""

    destination = tmp_path / "nested" / "ledger.xlsx"
    created = setup_excel.create_master_workbook(destination)

    assert created.exists()
    with pytest.raises(FileExistsError):
        setup_excel.create_master_workbook(destination)
    setup_excel.create_master_workbook(destination, overwrite=True)
    assert openpyxl.load_workbook(destination).sheetnames[0] == SheetName.MEDICINES.value


def test_main_creates_workbook_from_config(tmp_path, capsys):
    """The script resolves DataFile relative to the config file."""

    config_path = tmp_path / "config.ini"
    config_path.write_text(
        "[System]\nDataFile = data/ledger.xlsx\nPharmacyName = Corner Chemist\nSchemaVersion = 1.0.0\n\n"
        "[Defaults]\nDefaultOperator = OP-1\n"
    )

    assert setup_excel.main(["--config", str(config_path)]) == 0
    assert (tmp_path / "data" / "ledger.xlsx").exists()
    assert "[SUCCESS]" in capsys.readouterr().out

    assert setup_excel.main(["--config", str(config_path)]) == 1
    assert "--force" in capsys.readouterr().out
    assert setup_excel.main(["--config", str(config_path), "--force"]) == 0


def test_main_reports_missing_config(tmp_path, capsys):
    """A missing configuration file is reported, not raised."""

    assert setup_excel.main(["--config", str(tmp_path / "absent.ini")]) == 1
    assert "[ERROR]" in capsys.readouterr().out
