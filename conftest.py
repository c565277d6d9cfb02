"""
Pytest configuration file.

Puts the project root on the Python path so the flat modules import by name,
and provides factories that write small submission files for the tests.
"""
import csv
import os
import sys

import pytest

# Add the current directory to the Python path
sys.path.insert(0, os.path.abspath(os.path.dirname(__file__)))


@pytest.fixture
def make_csv(tmp_path):
    """
    Factory writing rows to a CSV file under tmp_path.

    Returns:
        callable: make_csv(rows, name="submission.csv") -> str path
    """
    def _make(rows, name="submission.csv"):
        path = tmp_path / name
        with open(path, "w", newline="", encoding="utf-8") as handle:
            csv.writer(handle).writerows(rows)
        return str(path)
    return _make


@pytest.fixture
def make_xlsx(tmp_path):
    """
    Factory writing sheets to an .xlsx workbook under tmp_path.

    Returns:
        callable: make_xlsx({"Sheet": rows, ...}, name="submission.xlsx") -> str path
    """
    from openpyxl import Workbook

    def _make(sheets, name="submission.xlsx"):
        workbook = Workbook()
        workbook.remove(workbook.active)
        for title, rows in sheets.items():
            worksheet = workbook.create_sheet(title=title)
            for row in rows:
                worksheet.append(list(row))
        path = tmp_path / name
        workbook.save(path)
        return str(path)
    return _make
