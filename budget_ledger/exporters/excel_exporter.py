"""
Excel export helper wrapping xlsxwriter.

Provides ``ExcelExporter``, a stateful builder that writes a styled ledger
report workbook in memory and returns its bytes for streaming via
FastAPI's ``StreamingResponse``.

Usage example::

    exporter = ExcelExporter(title="organization:org-a 2026", filters={"Fiscal year": "2026"})
    exporter.add_header()
    exporter.add_kpi_row(kpis)
    exporter.add_data_table(headers, rows)
    file_bytes = exporter.finalize()

Design notes
------------
- Uses ``xlsxwriter`` in in-memory mode (``BytesIO``).
- Column widths follow the longest cell in each column, capped at 60.
- Money cells (``Decimal``, ``int`` or ``float``) use ``#,##0.00``.
- Data rows alternate white / light grey.
"""

from __future__ import annotations

import io
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Sequence

import xlsxwriter
from xlsxwriter.workbook import Workbook
from xlsxwriter.worksheet import Worksheet

_COLOR_PRIMARY = "#15803d"   # ledger green
_COLOR_WHITE = "#FFFFFF"
_COLOR_LIGHT_GREY = "#F3F4F6"
_COLOR_SUBHEADER_BG = "#14532D"

_MAX_COL_WIDTH = 60
_MIN_COL_WIDTH = 8

_NUMERIC_TYPES = (int, float, Decimal)


class ExcelExporter:
    """Stateful Excel workbook builder for ledger reports.

    Args:
        title: Report title shown in the merged header row.
        filters: ``{label: value}`` pairs printed under the title.
        sheet_name: Worksheet tab name.
    """

    def __init__(
        self,
        title: str,
        filters: dict[str, str] | None = None,
        sheet_name: str = "Ledger",
    ) -> None:
        self._title = title
        self._filters = filters or {}

        self._buffer = io.BytesIO()
        self._workbook: Workbook = xlsxwriter.Workbook(self._buffer, {"in_memory": True})
        self._worksheet: Worksheet = self._workbook.add_worksheet(sheet_name)

        self._current_row: int = 0
        self._num_cols: int = 1
        self._formats: dict[str, Any] = self._build_formats()

    def _build_formats(self) -> dict[str, Any]:
        wb = self._workbook
        border = {"border": 1, "border_color": "#E5E7EB", "font_size": 9, "valign": "vcenter"}

        return {
            "header_main": wb.add_format({
                "bold": True,
                "font_size": 16,
                "font_color": _COLOR_WHITE,
                "bg_color": _COLOR_PRIMARY,
                "align": "center",
                "valign": "vcenter",
            }),
            "header_sub": wb.add_format({
                "font_size": 10,
                "font_color": _COLOR_WHITE,
                "bg_color": _COLOR_SUBHEADER_BG,
                "align": "center",
                "valign": "vcenter",
            }),
            "filter_key": wb.add_format({
                "bold": True,
                "font_size": 9,
                "bg_color": "#E5E7EB",
                "align": "right",
            }),
            "filter_value": wb.add_format({"font_size": 9, "bg_color": "#F9FAFB"}),
            "kpi_label": wb.add_format({
                "bold": True,
                "font_size": 10,
                "bg_color": "#F0FDF4",
                "align": "center",
                "border": 1,
                "border_color": "#BBF7D0",
            }),
            "kpi_value": wb.add_format({
                "bold": True,
                "font_size": 12,
                "font_color": _COLOR_PRIMARY,
                "bg_color": "#F0FDF4",
                "align": "center",
                "num_format": "#,##0.00",
                "border": 1,
                "border_color": "#BBF7D0",
            }),
            "col_header": wb.add_format({
                "bold": True,
                "font_size": 10,
                "font_color": _COLOR_WHITE,
                "bg_color": _COLOR_SUBHEADER_BG,
                "align": "center",
                "valign": "vcenter",
                "border": 1,
                "text_wrap": True,
            }),
            "data_plain": wb.add_format({**border, "bg_color": _COLOR_WHITE}),
            "data_alt": wb.add_format({**border, "bg_color": _COLOR_LIGHT_GREY}),
            "data_number": wb.add_format(
                {**border, "bg_color": _COLOR_WHITE, "align": "right", "num_format": "#,##0.00"}
            ),
            "data_number_alt": wb.add_format(
                {**border, "bg_color": _COLOR_LIGHT_GREY, "align": "right", "num_format": "#,##0.00"}
            ),
        }

    def add_header(self) -> "ExcelExporter":
        """Write the title, generation timestamp and filter rows."""
        ws = self._worksheet
        num_cols = max(self._num_cols, 6)

        ws.set_row(self._current_row, 32)
        ws.merge_range(
            self._current_row, 0, self._current_row, num_cols - 1,
            f"Budget Ledger: {self._title}",
            self._formats["header_main"],
        )
        self._current_row += 1

        gen_ts = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
        ws.merge_range(
            self._current_row, 0, self._current_row, num_cols - 1,
            f"Generated: {gen_ts}",
            self._formats["header_sub"],
        )
        self._current_row += 1

        for key, value in self._filters.items():
            ws.write(self._current_row, 0, key, self._formats["filter_key"])
            ws.merge_range(
                self._current_row, 1, self._current_row, num_cols - 1,
                value,
                self._formats["filter_value"],
            )
            self._current_row += 1

        self._current_row += 1
        return self

    def add_kpi_row(self, kpis: dict[str, Any]) -> "ExcelExporter":
        """Write one label row and one value row, a column per KPI."""
        ws = self._worksheet
        for col, (label, value) in enumerate(kpis.items()):
            ws.write(self._current_row, col, label, self._formats["kpi_label"])
            ws.write(self._current_row + 1, col, value, self._formats["kpi_value"])
        ws.set_row(self._current_row + 1, 22)

        self._current_row += 3
        return self

    def add_data_table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[Any]],
        numeric_cols: set[int] | None = None,
        title: str | None = None,
    ) -> "ExcelExporter":
        """Write a styled table with alternating row shading.

        Args:
            headers: Column header strings.
            rows: Data rows, each as long as ``headers``.
            numeric_cols: Money columns; detected from the first row if ``None``.
            title: Optional caption written above the table.
        """
        ws = self._worksheet
        self._num_cols = max(self._num_cols, len(headers))

        if numeric_cols is None:
            numeric_cols = {
                ci for ci, val in enumerate(rows[0] if rows else [])
                if isinstance(val, _NUMERIC_TYPES) and not isinstance(val, bool)
            }

        if title:
            ws.write(self._current_row, 0, title, self._formats["filter_key"])
            self._current_row += 1

        col_widths: list[int] = [len(str(h)) for h in headers]

        ws.set_row(self._current_row, 20)
        for ci, hdr in enumerate(headers):
            ws.write(self._current_row, ci, hdr, self._formats["col_header"])
        self._current_row += 1

        for ri, data_row in enumerate(rows):
            is_alt = ri % 2 == 1
            for ci, cell_val in enumerate(data_row):
                if ci in numeric_cols:
                    fmt = self._formats["data_number_alt" if is_alt else "data_number"]
                else:
                    fmt = self._formats["data_alt" if is_alt else "data_plain"]

                if isinstance(cell_val, datetime):
                    cell_val = cell_val.strftime("%Y-%m-%d %H:%M")
                ws.write(self._current_row, ci, cell_val, fmt)

                cell_str = str(cell_val) if cell_val is not None else ""
                col_widths[ci] = min(_MAX_COL_WIDTH, max(col_widths[ci], len(cell_str)))

            self._current_row += 1

        for ci, width in enumerate(col_widths):
            ws.set_column(ci, ci, max(width + 2, _MIN_COL_WIDTH))

        self._current_row += 1
        return self

    def finalize(self) -> bytes:
        """Close the workbook and return the ``.xlsx`` bytes."""
        self._workbook.close()
        self._buffer.seek(0)
        return self._buffer.read()
