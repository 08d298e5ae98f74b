"""
PDF export helper wrapping reportlab.

Provides ``PdfExporter``, a stateful builder that lays out a ledger report
with ``SimpleDocTemplate`` and returns the document bytes.

Usage example::

    exporter = PdfExporter(title="organization:org-a 2026", filters={"Fiscal year": "2026"})
    exporter.add_header()
    exporter.add_kpi_section(kpis)
    exporter.add_table(headers, rows, section_title="Transactions")
    file_bytes = exporter.build()
"""

from __future__ import annotations

import io
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Sequence
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_LEFT, TA_RIGHT
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import ParagraphStyle
from reportlab.lib.units import cm, mm
from reportlab.platypus import (
    HRFlowable,
    Paragraph,
    SimpleDocTemplate,
    Spacer,
    Table,
    TableStyle,
)

_HEX_PRIMARY = "#15803d"
_HEX_DARK = "#14532D"
_HEX_LIGHT_GREY = "#F3F4F6"
_HEX_MID_GREY = "#E5E7EB"
_HEX_TEXT = "#111827"
_HEX_WHITE = "#FFFFFF"

_NUMERIC_TYPES = (int, float, Decimal)


def _format_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (float, Decimal)):
        return f"{value:,.2f}"
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M")
    return escape(str(value))


class PdfExporter:
    """Stateful PDF document builder for ledger reports.

    Args:
        title: Document title.
        filters: ``{label: value}`` pairs printed under the title.
        landscape_mode: Use A4 landscape instead of portrait.
    """

    def __init__(
        self,
        title: str,
        filters: dict[str, str] | None = None,
        landscape_mode: bool = True,
    ) -> None:
        self._title = title
        self._filters = filters or {}

        self._buffer = io.BytesIO()
        self._doc = SimpleDocTemplate(
            self._buffer,
            pagesize=landscape(A4) if landscape_mode else A4,
            rightMargin=1.5 * cm,
            leftMargin=1.5 * cm,
            topMargin=2 * cm,
            bottomMargin=2 * cm,
            title=f"Budget Ledger: {title}",
            author="Budget Ledger",
        )

        self._story: list[Any] = []
        self._gen_ts = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
        self._styles = self._build_styles()

    def _build_styles(self) -> dict[str, ParagraphStyle]:
        def style(name: str, **kwargs: Any) -> ParagraphStyle:
            kwargs.setdefault("fontName", "Helvetica")
            kwargs.setdefault("fontSize", 8)
            kwargs.setdefault("textColor", colors.HexColor(_HEX_TEXT))
            return ParagraphStyle(name, **kwargs)

        white = colors.HexColor(_HEX_WHITE)
        dark = colors.HexColor(_HEX_DARK)
        return {
            "title": style("ledger_title", fontName="Helvetica-Bold", fontSize=18,
                           textColor=white, alignment=TA_CENTER),
            "subtitle": style("ledger_subtitle", fontSize=9, textColor=white, alignment=TA_CENTER),
            "filter_key": style("filter_key", fontName="Helvetica-Bold", textColor=dark,
                                alignment=TA_RIGHT),
            "filter_value": style("filter_value", alignment=TA_LEFT),
            "kpi_label": style("kpi_label", fontName="Helvetica-Bold", textColor=dark,
                               alignment=TA_CENTER),
            "kpi_value": style("kpi_value", fontName="Helvetica-Bold", fontSize=13,
                               textColor=colors.HexColor(_HEX_PRIMARY), alignment=TA_CENTER),
            "section_heading": style("section_heading", fontName="Helvetica-Bold", fontSize=11,
                                     textColor=dark, spaceBefore=8, spaceAfter=4),
            "table_header": style("table_header", fontName="Helvetica-Bold", textColor=white,
                                  alignment=TA_CENTER),
            "table_cell": style("table_cell", alignment=TA_LEFT),
            "table_cell_right": style("table_cell_right", alignment=TA_RIGHT),
        }

    def _on_page(self, canvas: Any, doc: Any) -> None:
        """Footer with generation timestamp and page number."""
        canvas.saveState()
        canvas.setFont("Helvetica", 7)
        canvas.setFillColor(colors.HexColor(_HEX_MID_GREY))
        canvas.drawCentredString(
            self._doc.pagesize[0] / 2,
            1.2 * cm,
            f"Budget Ledger  |  Generated: {self._gen_ts}  |  Page {doc.page}",
        )
        canvas.restoreState()

    def _section(self, title: str) -> None:
        self._story.append(Paragraph(escape(title), self._styles["section_heading"]))
        self._story.append(
            HRFlowable(width="100%", thickness=1, color=colors.HexColor(_HEX_PRIMARY))
        )
        self._story.append(Spacer(1, 3 * mm))

    def add_header(self) -> "PdfExporter":
        """Title band plus the filter summary table."""
        width = self._doc.width
        header = Table(
            [
                [Paragraph(escape(f"Budget Ledger: {self._title}"), self._styles["title"])],
                [Paragraph(f"Generated: {self._gen_ts}", self._styles["subtitle"])],
            ],
            colWidths=[width],
        )
        header.setStyle(TableStyle([
            ("BACKGROUND", (0, 0), (0, 0), colors.HexColor(_HEX_PRIMARY)),
            ("BACKGROUND", (0, 1), (0, 1), colors.HexColor(_HEX_DARK)),
            ("TOPPADDING", (0, 0), (-1, -1), 8),
            ("BOTTOMPADDING", (0, 0), (-1, -1), 8),
            ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ]))
        self._story.append(header)
        self._story.append(Spacer(1, 4 * mm))

        if self._filters:
            filters = Table(
                [
                    [
                        Paragraph(escape(f"{k}:"), self._styles["filter_key"]),
                        Paragraph(escape(str(v)), self._styles["filter_value"]),
                    ]
                    for k, v in self._filters.items()
                ],
                colWidths=[3 * cm, width - 3 * cm],
            )
            filters.setStyle(TableStyle([
                ("BACKGROUND", (0, 0), (-1, -1), colors.HexColor(_HEX_LIGHT_GREY)),
                ("GRID", (0, 0), (-1, -1), 0.25, colors.HexColor(_HEX_MID_GREY)),
            ]))
            self._story.append(filters)
            self._story.append(Spacer(1, 6 * mm))

        return self

    def add_kpi_section(self, kpis: dict[str, Any]) -> "PdfExporter":
        """One row of labelled KPI cards."""
        if not kpis:
            return self

        self._section("Key figures")
        labels = [Paragraph(escape(k), self._styles["kpi_label"]) for k in kpis]
        values = [Paragraph(_format_cell(v), self._styles["kpi_value"]) for v in kpis.values()]

        table = Table([labels, values], colWidths=[self._doc.width / len(kpis)] * len(kpis))
        table.setStyle(TableStyle([
            ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#F0FDF4")),
            ("BACKGROUND", (0, 1), (-1, 1), colors.HexColor("#DCFCE7")),
            ("BOX", (0, 0), (-1, -1), 0.5, colors.HexColor(_HEX_PRIMARY)),
            ("INNERGRID", (0, 0), (-1, -1), 0.25, colors.HexColor(_HEX_MID_GREY)),
            ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ]))
        self._story.append(table)
        self._story.append(Spacer(1, 6 * mm))
        return self

    def add_table(
        self,
        headers: Sequence[str],
        rows: Sequence[Sequence[Any]],
        numeric_cols: set[int] | None = None,
        section_title: str = "Detail",
    ) -> "PdfExporter":
        """Styled data table, header row repeated on every page.

        Args:
            headers: Column header strings.
            rows: Data rows, each as long as ``headers``.
            numeric_cols: Right-aligned columns; detected from the first row
                if ``None``.
            section_title: Heading above the table.
        """
        self._section(section_title)

        if numeric_cols is None:
            numeric_cols = {
                ci for ci, val in enumerate(rows[0] if rows else [])
                if isinstance(val, _NUMERIC_TYPES) and not isinstance(val, bool)
            }

        data: list[list[Any]] = [
            [Paragraph(escape(str(h)), self._styles["table_header"]) for h in headers]
        ]
        for row in rows:
            data.append([
                Paragraph(
                    _format_cell(val),
                    self._styles["table_cell_right" if ci in numeric_cols else "table_cell"],
                )
                for ci, val in enumerate(row)
            ])

        if not rows:
            data.append(
                [Paragraph("No rows.", self._styles["table_cell"])] + [""] * (len(headers) - 1)
            )

        table = Table(data, colWidths=[self._doc.width / len(headers)] * len(headers), repeatRows=1)
        commands: list[tuple[Any, ...]] = [
            ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor(_HEX_DARK)),
            ("GRID", (0, 0), (-1, -1), 0.25, colors.HexColor(_HEX_MID_GREY)),
            ("TOPPADDING", (0, 0), (-1, -1), 3),
            ("BOTTOMPADDING", (0, 0), (-1, -1), 3),
            ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ]
        for ri in range(2, len(data), 2):
            commands.append(("BACKGROUND", (0, ri), (-1, ri), colors.HexColor(_HEX_LIGHT_GREY)))
        table.setStyle(TableStyle(commands))

        self._story.append(table)
        self._story.append(Spacer(1, 4 * mm))
        return self

    def build(self) -> bytes:
        """Render the document and return the ``.pdf`` bytes."""
        self._doc.build(self._story, onFirstPage=self._on_page, onLaterPages=self._on_page)
        self._buffer.seek(0)
        return self._buffer.read()
