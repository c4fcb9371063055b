"""CSV to record conversion for inventory feed files."""

import csv
import io
import re
from typing import Callable, Dict, List

from .exceptions import ConversionError

_HEADER_SEPARATORS = re.compile(r"[ /]+")
_BOM = "\ufeff"


def normalize_header(header: str) -> str:
    """Lower-cases a column header and collapses runs of spaces and slashes into `_`."""
    return _HEADER_SEPARATORS.sub("_", header.strip().lower())


def convert_csv_to_records(
    text: str, transform_header: Callable[[str], str] = normalize_header
) -> List[Dict[str, str]]:
    """
    Converts CSV text with a header row into a list of records.

    A leading byte order mark is dropped and completely empty lines are
    skipped. A line of bare separators is kept as a record of empty values.
    A row shorter than the header omits the missing trailing columns rather
    than padding them, so absent values stay absent.

    Raises:
        ConversionError: If a row has more fields than the header.
    """
    reader = csv.reader(io.StringIO(text.lstrip(_BOM)), quotechar='"')
    try:
        rows = [row for row in reader if row]
    except csv.Error as e:
        raise ConversionError(f"error encountered converting CSV: {e}") from e

    if not rows:
        return []

    headers = [transform_header(h) for h in rows[0]]
    records = []
    for row_number, row in enumerate(rows[1:], start=2):
        if len(row) > len(headers):
            raise ConversionError(
                f"error encountered converting CSV: row {row_number} has "
                f"{len(row)} fields, expected {len(headers)}"
            )
        records.append(dict(zip(headers, row)))
    return records
