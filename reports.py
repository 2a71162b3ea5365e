#!/usr/bin/env python3
"""
Report helpers over the claim list: search and filters, per-category
summaries, currency formatting, and spreadsheet, CSV and PDF export.
"""

import csv
import io
import logging
from collections import defaultdict
from datetime import date
from typing import Any, Dict, Iterable, List, Optional
from xml.sax.saxutils import escape

import openpyxl
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

logger = logging.getLogger(__name__)

# Filter value meaning "no filter" in the list and report views
ALL = 'Semua'

SUMMARY_FIELDS = ('sumber_anggaran', 'jenis_kegiatan', 'metode_pembayaran', 'provinsi_tujuan')

# (column key, header label)
EXPORT_COLUMNS = (
    ('no_spj', 'No SPJ'),
    ('no_spt', 'No SPT'),
    ('no_sppd', 'No SPPD'),
    ('sumber_anggaran', 'Sumber Anggaran'),
    ('jenis_kegiatan', 'Jenis Kegiatan'),
    ('metode_pembayaran', 'Metode Pembayaran'),
    ('tujuan', 'Tujuan'),
    ('provinsi_tujuan', 'Provinsi'),
    ('tanggal_berangkat', 'Tgl Berangkat'),
    ('tanggal_pulang', 'Tgl Pulang'),
    ('lama_perjalanan', 'Lama (Hari)'),
    ('unit_organisasi', 'Unit Organisasi'),
    ('representasi', 'Representasi'),
    ('total_biaya', 'Total Biaya'),
    ('created_at', 'Dibuat'),
)
CURRENCY_COLUMNS = {'representasi', 'total_biaya'}

HEADER_FONT = Font(name='Calibri', bold=True, size=11, color='FFFFFF')
HEADER_FILL = PatternFill(start_color='4F46E5', end_color='4F46E5', fill_type='solid')
TOTAL_FONT = Font(name='Calibri', bold=True, size=11)
THIN_BORDER = Border(
    left=Side(style='thin'), right=Side(style='thin'),
    top=Side(style='thin'), bottom=Side(style='thin')
)
RUPIAH_FORMAT = '"Rp" #,##0'


def format_currency(value: Any) -> str:
    """Format an amount as Indonesian Rupiah, e.g. ``Rp 1.500.000``."""
    try:
        amount = float(value or 0)
    except (TypeError, ValueError):
        amount = 0.0
    sign = '-' if amount < 0 else ''
    whole, cents = f"{abs(amount):,.2f}".split('.')
    text = f"{sign}Rp {whole.replace(',', '.')}"
    if cents != '00':
        text += f",{cents}"
    return text


def _is_all(value: Optional[str]) -> bool:
    return value is None or value == '' or value == ALL


def filter_claims(rows: Iterable[Dict[str, Any]], search: str = None, sumber: str = None,
                  jenis: str = None, metode: str = None, start: str = None,
                  end: str = None) -> List[Dict[str, Any]]:
    """
    Narrow a claim list the way the list and report views do.

    ``search`` matches no_spj, tujuan or no_spt case-insensitively;
    ``start``/``end`` are inclusive bounds on the departure date.
    """
    needle = (search or '').strip().lower()
    result = []
    for row in rows:
        if needle and not any(needle in (row.get(k) or '').lower() for k in ('no_spj', 'tujuan', 'no_spt')):
            continue
        if not _is_all(sumber) and row.get('sumber_anggaran') != sumber:
            continue
        if not _is_all(jenis) and row.get('jenis_kegiatan') != jenis:
            continue
        if not _is_all(metode) and row.get('metode_pembayaran') != metode:
            continue
        departure = row.get('tanggal_berangkat') or ''
        if start and departure < start:
            continue
        if end and departure > end:
            continue
        result.append(row)
    return result


def summarize_by(rows: Iterable[Dict[str, Any]], field: str) -> List[Dict[str, Any]]:
    """Count and total per value of ``field``, largest total first."""
    if field not in SUMMARY_FIELDS:
        raise ValueError(f"Cannot summarize by {field}; expected one of {', '.join(SUMMARY_FIELDS)}")

    groups = defaultdict(lambda: {'count': 0, 'total': 0.0})
    for row in rows:
        key = row.get(field) or '-'
        groups[key]['count'] += 1
        groups[key]['total'] += float(row.get('total_biaya') or 0)

    summary = [
        {field: key, 'count': g['count'], 'total': g['total'], 'total_display': format_currency(g['total'])}
        for key, g in groups.items()
    ]
    summary.sort(key=lambda s: (-s['total'], str(s[field])))
    return summary


def export_filename(extension: str, today: date = None, prefix: str = 'Rekap_SPJ') -> str:
    """``<prefix>_<YYYY-MM-DD>.<extension>``; printed reports use ``Laporan_SPJ``."""
    today = today or date.today()
    return f"{prefix}_{today.isoformat()}.{extension}"


def export_csv(rows: Iterable[Dict[str, Any]]) -> str:
    """Render claims as CSV text with the export column headers."""
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow([label for _, label in EXPORT_COLUMNS])
    for row in rows:
        writer.writerow(['' if row.get(key) is None else row.get(key) for key, _ in EXPORT_COLUMNS])
    return output.getvalue()


def export_xlsx(rows: Iterable[Dict[str, Any]], sheet_title: str = 'Data SPJ') -> bytes:
    """Render claims as an xlsx workbook with a totals row."""
    rows = list(rows)
    wb = openpyxl.Workbook()
    ws = wb.active
    ws.title = sheet_title[:31]

    for col, (_, label) in enumerate(EXPORT_COLUMNS, 1):
        cell = ws.cell(row=1, column=col, value=label)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal='center', vertical='center')
        cell.border = THIN_BORDER

    for r, row in enumerate(rows, 2):
        for col, (key, _) in enumerate(EXPORT_COLUMNS, 1):
            cell = ws.cell(row=r, column=col, value=row.get(key))
            cell.border = THIN_BORDER
            if key in CURRENCY_COLUMNS:
                cell.number_format = RUPIAH_FORMAT

    total_row = len(rows) + 2
    total_col = [key for key, _ in EXPORT_COLUMNS].index('total_biaya') + 1
    ws.cell(row=total_row, column=1, value='TOTAL').font = TOTAL_FONT
    total_cell = ws.cell(row=total_row, column=total_col,
                         value=sum(float(row.get('total_biaya') or 0) for row in rows))
    total_cell.font = TOTAL_FONT
    total_cell.number_format = RUPIAH_FORMAT

    for col in range(1, len(EXPORT_COLUMNS) + 1):
        max_len = 0
        for cells in ws.iter_rows(min_row=1, max_row=min(ws.max_row, 50), min_col=col, max_col=col):
            for cell in cells:
                if cell.value is not None:
                    max_len = max(max_len, min(len(str(cell.value)), 60))
        ws.column_dimensions[get_column_letter(col)].width = max(max_len + 2, 12)

    ws.freeze_panes = 'A2'

    buffer = io.BytesIO()
    wb.save(buffer)
    logger.info(f"Exported {len(rows)} SPJ rows to xlsx")
    return buffer.getvalue()


PDF_TITLE = 'Rekapitulasi Pertanggungjawaban SIAP-SPJ'

# (column key, header label) of the printed report
PDF_COLUMNS = (
    ('no_spj', 'No SPJ'),
    ('sumber_anggaran', 'Sumber'),
    ('jenis_kegiatan', 'Jenis'),
    ('tujuan', 'Tujuan'),
    ('total_biaya', 'Total'),
)


def _pdf_footer(canvas, doc):
    canvas.saveState()
    canvas.setFont('Helvetica', 8)
    canvas.drawRightString(A4[0] - 15 * mm, 10 * mm, f"Halaman {doc.page}")
    canvas.restoreState()


def export_pdf(rows: Iterable[Dict[str, Any]], title: str = PDF_TITLE) -> bytes:
    """
    Render claims as a paginated A4 report: title, one table row per
    claim and a totals row. The header row repeats on every page.
    """
    rows = list(rows)
    styles = getSampleStyleSheet()
    cell_style = ParagraphStyle('SPJCell', parent=styles['BodyText'], fontSize=8, leading=10)

    data = [[label for _, label in PDF_COLUMNS]]
    for row in rows:
        cells = [Paragraph(escape(str(row.get(key) or '-')), cell_style) for key, _ in PDF_COLUMNS[:-1]]
        cells.append(format_currency(row.get('total_biaya')))
        data.append(cells)
    data.append(['TOTAL', '', '', f"{len(rows)} SPJ",
                 format_currency(sum(float(row.get('total_biaya') or 0) for row in rows))])

    table = Table(data, colWidths=[32 * mm, 28 * mm, 38 * mm, 42 * mm, 35 * mm], repeatRows=1)
    table.setStyle(TableStyle([
        ('BACKGROUND', (0, 0), (-1, 0), colors.HexColor('#4F46E5')),
        ('TEXTCOLOR', (0, 0), (-1, 0), colors.white),
        ('FONTNAME', (0, 0), (-1, 0), 'Helvetica-Bold'),
        ('FONTNAME', (0, -1), (-1, -1), 'Helvetica-Bold'),
        ('FONTSIZE', (0, 0), (-1, -1), 8),
        ('ALIGN', (-1, 0), (-1, -1), 'RIGHT'),
        ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
        ('GRID', (0, 0), (-1, -1), 0.5, colors.grey),
        ('ROWBACKGROUNDS', (0, 1), (-1, -2), [colors.white, colors.HexColor('#F1F5F9')]),
    ]))

    buffer = io.BytesIO()
    doc = SimpleDocTemplate(
        buffer, pagesize=A4, title=title,
        leftMargin=15 * mm, rightMargin=15 * mm, topMargin=15 * mm, bottomMargin=18 * mm,
    )
    doc.build([Paragraph(escape(title), styles['Title']), Spacer(1, 4 * mm), table],
              onFirstPage=_pdf_footer, onLaterPages=_pdf_footer)
    logger.info(f"Exported {len(rows)} SPJ rows to pdf")
    return buffer.getvalue()
