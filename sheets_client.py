"""
Sheets Client — reads order rows from Google Sheets and writes the
"Notified" markers and reminder counters back.
"""

import logging
import re

from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from config import GOOGLE_SERVICE_ACCOUNT_FILE

logger = logging.getLogger(__name__)

SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]


class SheetsError(Exception):
    """Raised when a Google Sheets read or write fails."""
    pass


def column_letter(index: int) -> str:
    """Zero-based column index → A1 column letters (0 → A, 26 → AA)."""
    if index < 0:
        raise ValueError("column index must be non-negative")
    letters = ""
    index += 1
    while index:
        index, remainder = divmod(index - 1, 26)
        letters = chr(ord("A") + remainder) + letters
    return letters


def a1_cell(tab: str, column_index: int, row_number: int) -> str:
    """A1 reference for one cell, e.g. ("Orders", 2, 5) → "'Orders'!C5"."""
    cell = f"{column_letter(column_index)}{row_number}"
    return f"'{tab}'!{cell}" if tab else cell


class GoogleSheetsClient:
    """Thin wrapper over the Sheets v4 values API."""

    def __init__(self, credentials_file: str = GOOGLE_SERVICE_ACCOUNT_FILE, service=None):
        self.credentials_file = credentials_file
        self._service = service

    @property
    def service(self):
        if self._service is None:
            credentials = service_account.Credentials.from_service_account_file(
                self.credentials_file, scopes=SCOPES
            )
            self._service = build("sheets", "v4", credentials=credentials, cache_discovery=False)
            logger.info("Google Sheets service initialized from %s", self.credentials_file)
        return self._service

    def read_rows(self, sheet_id: str, cell_range: str) -> list[list[str]]:
        """All rows in the range; the first row holds the headers."""
        try:
            response = self.service.spreadsheets().values().get(
                spreadsheetId=sheet_id, range=cell_range
            ).execute()
        except HttpError as e:
            raise SheetsError(f"Failed to read {cell_range}: {e}") from e
        return response.get("values", [])

    def write_cell(self, sheet_id: str, a1_range: str, value: str) -> None:
        try:
            self.service.spreadsheets().values().update(
                spreadsheetId=sheet_id,
                range=a1_range,
                valueInputOption="USER_ENTERED",
                body={"values": [[value]]},
            ).execute()
        except HttpError as e:
            raise SheetsError(f"Failed to write {a1_range}: {e}") from e


def parse_a1_cell(a1_range: str) -> tuple[str, int, int]:
    """ "'Orders'!C5" → ("Orders", 2, 5)."""
    match = re.match(r"^(?:'?(.*?)'?!)?([A-Za-z]+)(\d+)$", a1_range.strip())
    if not match:
        raise ValueError(f"Not a single-cell A1 reference: {a1_range!r}")
    tab, letters, row = match.groups()
    index = 0
    for ch in letters.upper():
        index = index * 26 + (ord(ch) - ord("A") + 1)
    return tab or "", index - 1, int(row)


class InMemorySheetsClient:
    """
    Sheets stand-in for dry runs: one table of rows per sheet id, with the
    header on row 1. Writes land in the table so the next read sees them.
    """

    def __init__(self, tables: dict[str, list[list[str]]]):
        self.tables = {sheet_id: [list(row) for row in rows] for sheet_id, rows in tables.items()}
        self.writes: list[tuple[str, str, str]] = []

    def read_rows(self, sheet_id: str, cell_range: str) -> list[list[str]]:
        if sheet_id not in self.tables:
            raise SheetsError(f"Unknown sheet {sheet_id}")
        return [list(row) for row in self.tables[sheet_id]]

    def write_cell(self, sheet_id: str, a1_range: str, value: str) -> None:
        if sheet_id not in self.tables:
            raise SheetsError(f"Unknown sheet {sheet_id}")
        _, column, row_number = parse_a1_cell(a1_range)
        rows = self.tables[sheet_id]
        while len(rows) < row_number:
            rows.append([])
        row = rows[row_number - 1]
        while len(row) <= column:
            row.append("")
        row[column] = value
        self.writes.append((sheet_id, a1_range, value))
