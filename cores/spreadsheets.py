# cores/spreadsheets.py
"""Reading and writing of tabular uploads (CSV and Excel)."""
import csv
import io
from zipfile import BadZipFile

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Alignment, Font, PatternFill
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import InvalidFileException


class SpreadsheetError(ValueError):
    pass


def _clean(value):
    if value is None:
        return ''
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def read_rows(uploaded_file):
    """
    Returns (line_number, row_dict) pairs for every non-empty data row.
    Header names are lower-cased and stripped; values are stripped strings.
    """
    name = (getattr(uploaded_file, 'name', '') or '').lower()
    if name.endswith(('.xlsx', '.xlsm')):
        return _read_xlsx(uploaded_file)
    if name.endswith('.csv') or not name:
        return _read_csv(uploaded_file)
    raise SpreadsheetError("Unsupported file type. Upload a .csv or .xlsx file.")


def _read_csv(uploaded_file):
    raw = uploaded_file.read()
    try:
        decoded_file = raw.decode('utf-8-sig') if isinstance(raw, bytes) else raw
    except UnicodeDecodeError as e:
        raise SpreadsheetError("CSV files must be UTF-8 encoded.") from e

    reader = csv.DictReader(io.StringIO(decoded_file))
    if not reader.fieldnames:
        raise SpreadsheetError("The file has no header row.")

    rows = []
    # Line 1 is the header
    for line_number, row in enumerate(reader, start=2):
        data = {(k or '').strip().lower(): _clean(v) for k, v in row.items()}
        if any(data.values()):
            rows.append((line_number, data))
    return rows


def _read_xlsx(uploaded_file):
    try:
        wb = load_workbook(uploaded_file, read_only=True, data_only=True)
    except (InvalidFileException, BadZipFile, KeyError, OSError, ValueError) as e:
        raise SpreadsheetError(f"Could not read Excel file: {e}") from e

    ws = wb.active
    values = ws.iter_rows(values_only=True)
    try:
        header = [_clean(h).lower() for h in next(values)]
    except StopIteration:
        raise SpreadsheetError("The file has no header row.")

    rows = []
    for line_number, raw in enumerate(values, start=2):
        data = {header[i]: _clean(v) for i, v in enumerate(raw) if i < len(header) and header[i]}
        if any(data.values()):
            rows.append((line_number, data))
    wb.close()
    return rows


def write_csv(header, rows):
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(header)
    writer.writerows(rows)
    return buffer.getvalue()


HEADER_FILL = PatternFill(fill_type="solid", start_color="0D9488", end_color="0D9488")


def build_workbook(title, header, rows, sheet_title="Sheet1", fills=None):
    """
    Build a styled single-sheet workbook: a title line, a bold header row,
    then the data. `fills` maps (row_index, column_index) -> RGB hex for
    per-cell highlighting, indices relative to `rows`.
    """
    wb = Workbook()
    ws = wb.active
    ws.title = sheet_title

    ws.append([title])
    ws.cell(row=1, column=1).font = Font(bold=True, size=16, color="0D9488")
    ws.append([])
    ws.append(header)

    header_row = 3
    for col in range(1, len(header) + 1):
        cell = ws.cell(row=header_row, column=col)
        cell.font = Font(bold=True, color="FFFFFF")
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal="center", vertical="center")
        ws.column_dimensions[get_column_letter(col)].width = max(14, len(str(header[col - 1])) + 4)

    for row in rows:
        ws.append(list(row))

    for (r, c), color in (fills or {}).items():
        ws.cell(row=header_row + 1 + r, column=c + 1).fill = PatternFill(
            fill_type="solid", start_color=color, end_color=color
        )

    ws.freeze_panes = ws.cell(row=header_row + 1, column=1)
    return wb
