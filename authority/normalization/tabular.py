"""
Tabular supplier price lists
============================
CSV parsing for uploaded supplier price lists, plus Excel files through
pandas.

CSV rules:
- the first non-blank line is the header
- the delimiter (',' or ';') is detected per line, outside quotes; a tie
  falls back to the header's delimiter
- '"' toggles quote state; quoted content is taken literally
- header names are folded to lowercase keys
- rows with neither a name nor a GTIN are dropped
"""

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Union

import pandas as pd

from authority.normalization.fields import CSV_FIELDS, fold_key

logger = logging.getLogger(__name__)

DELIMITERS = (',', ';')
EXCEL_SUFFIXES = ('.xlsx', '.xls')


def detect_delimiter(line: str, default: str = ',') -> str:
    """The more frequent of ',' and ';' outside quotes; `default` on a tie"""
    counts = {d: 0 for d in DELIMITERS}
    in_quotes = False
    for char in line:
        if char == '"':
            in_quotes = not in_quotes
        elif not in_quotes and char in counts:
            counts[char] += 1
    if counts[';'] == counts[',']:
        return default
    return ';' if counts[';'] > counts[','] else ','


def split_line(line: str, delimiter: str) -> List[str]:
    """Split one line on the delimiter, honouring quotes"""
    values = []
    current = []
    in_quotes = False
    for char in line:
        if char == '"':
            in_quotes = not in_quotes
        elif char == delimiter and not in_quotes:
            values.append(''.join(current).strip())
            current = []
        else:
            current.append(char)
    values.append(''.join(current).strip())
    return values


def _has_identity(row: Dict[str, str]) -> bool:
    return CSV_FIELDS.resolve(row, 'name') is not None or CSV_FIELDS.resolve(row, 'gtin') is not None


def _rows_from_records(header: List[str], records: Iterable[List[str]]) -> List[Dict[str, str]]:
    rows = []
    dropped = 0
    for values in records:
        row = {key: (values[i] if i < len(values) else '') for i, key in enumerate(header) if key}
        if _has_identity(row):
            rows.append(row)
        else:
            dropped += 1
    if dropped:
        logger.debug(f"Dropped {dropped} rows without name or GTIN")
    return rows


def parse_csv(content: Union[str, bytes]) -> List[Dict[str, str]]:
    """
    Parse a supplier CSV into raw rows keyed by folded header names.

    Args:
        content: File content; bytes are decoded as UTF-8 (BOM tolerated)

    Returns:
        List of row dicts, in file order
    """
    if isinstance(content, bytes):
        content = content.decode('utf-8-sig')
    content = content.lstrip('\ufeff')

    lines = [line for line in content.splitlines() if line.strip()]
    if not lines:
        return []

    header_delimiter = detect_delimiter(lines[0])
    header = [fold_key(h) for h in split_line(lines[0], header_delimiter)]
    records = (split_line(line, detect_delimiter(line, header_delimiter)) for line in lines[1:])
    rows = _rows_from_records(header, records)
    logger.info(f"Parsed {len(rows)} rows from CSV ({len(lines) - 1} data lines)")
    return rows


def read_excel_rows(path: Union[str, Path], sheet_name=0) -> List[Dict[str, str]]:
    """Read an Excel price list with pandas into the same raw row shape as parse_csv()"""
    df = pd.read_excel(path, sheet_name=sheet_name, dtype=str)
    df = df.fillna('')
    header = [fold_key(c) for c in df.columns]
    records = ([str(v).strip() for v in values] for values in df.itertuples(index=False, name=None))
    rows = _rows_from_records(header, records)
    logger.info(f"Read {len(rows)} rows from {Path(path).name}")
    return rows


def load_rows_from_file(path: Union[str, Path]) -> List[Dict[str, str]]:
    """Load raw rows from a .csv/.txt or .xlsx/.xls supplier file"""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Supplier file not found: {path}")
    if path.suffix.lower() in EXCEL_SUFFIXES:
        return read_excel_rows(path)
    return parse_csv(path.read_bytes())
