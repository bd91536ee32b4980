"""
Row-Store Gateway

The storage of record is a spreadsheet with one table (sheet) for slots and
one for signups. The core talks to it through three primitives:

    get(range)              -> rows
    batch_get(ranges)       -> rows per range
    batch_update(mutations) -> applied as one unit by the store

There is no multi-call transaction: two clients can both read, decide, and
write in between each other's calls.

Records are addressed by 1-based record numbers (SlotId / SignupId). Only
the adapter knows about the header row and A1 notation.

Usage:
    store = build_row_store(settings)
    rows = await store.get(RowRange(SLOTS_TABLE))
"""

import asyncio
import copy
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence, Union
from urllib.parse import quote

import httpx
from google.auth.exceptions import GoogleAuthError
from google.auth.transport.requests import Request as GoogleAuthRequest
from google.oauth2 import service_account

from .core.config import Settings
from .core.errors import StoreError
from .models import SIGNUP_WIDTH, SLOT_WIDTH

logger = logging.getLogger(__name__)

Row = list[Any]


# ────────────────────────────────────────────────────────────────
# Ranges & Mutations
# ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class TableSpec:
    name: str
    width: int


SLOTS_TABLE = TableSpec("Slots", SLOT_WIDTH)
SIGNUPS_TABLE = TableSpec("Signups", SIGNUP_WIDTH)


@dataclass(frozen=True)
class RowRange:
    """A single record of `table`, or every record when `row_id` is None."""

    table: TableSpec
    row_id: Optional[int] = None


@dataclass(frozen=True)
class AppendRows:
    table: TableSpec
    rows: tuple[tuple[Any, ...], ...]


@dataclass(frozen=True)
class UpdateCell:
    table: TableSpec
    row_id: int
    column: int
    value: Any


@dataclass(frozen=True)
class ClearRows:
    """Blank whole records in place. Rows are never shifted, so ids stay stable."""

    table: TableSpec
    row_ids: tuple[int, ...]


Mutation = Union[AppendRows, UpdateCell, ClearRows]


def append_rows(table: TableSpec, rows: Sequence[Sequence[Any]]) -> AppendRows:
    return AppendRows(table, tuple(tuple(row) for row in rows))


class RowStore(ABC):
    """Gateway contract consumed by the booking engine."""

    name = "abstract"

    @abstractmethod
    async def get(self, row_range: RowRange) -> list[Row]:
        ...

    @abstractmethod
    async def batch_get(self, ranges: Sequence[RowRange]) -> list[list[Row]]:
        ...

    @abstractmethod
    async def batch_update(self, mutations: Sequence[Mutation]) -> None:
        ...

    async def aclose(self) -> None:
        return None


# ────────────────────────────────────────────────────────────────
# In-Memory Store (development / tests)
# ────────────────────────────────────────────────────────────────

class InMemoryRowStore(RowStore):
    """
    Process-local row store with the same unit-of-application semantics as
    the spreadsheet: each batch_update is applied entirely or not at all.

    Every call yields to the event loop once before touching data, so
    overlapping requests interleave the way they do against the network.
    """

    name = "memory"

    def __init__(self, tables: Optional[dict[str, list[Row]]] = None):
        self.tables: dict[str, list[Row]] = {
            SLOTS_TABLE.name: [],
            SIGNUPS_TABLE.name: [],
        }
        for table_name, rows in (tables or {}).items():
            self.tables[table_name] = [list(row) for row in rows]
        self.applied_batches: list[tuple[Mutation, ...]] = []

    def rows(self, table: TableSpec) -> list[Row]:
        return self.tables.setdefault(table.name, [])

    def _read(self, row_range: RowRange) -> list[Row]:
        rows = self.rows(row_range.table)
        if row_range.row_id is None:
            return [list(row) for row in rows]
        index = row_range.row_id - 1
        if index < 0 or index >= len(rows) or not rows[index]:
            return []
        return [list(rows[index])]

    async def get(self, row_range: RowRange) -> list[Row]:
        await asyncio.sleep(0)
        return self._read(row_range)

    async def batch_get(self, ranges: Sequence[RowRange]) -> list[list[Row]]:
        await asyncio.sleep(0)
        return [self._read(r) for r in ranges]

    async def batch_update(self, mutations: Sequence[Mutation]) -> None:
        await asyncio.sleep(0)
        staged = copy.deepcopy(self.tables)
        for mutation in mutations:
            rows = staged.setdefault(mutation.table.name, [])
            if isinstance(mutation, AppendRows):
                rows.extend(list(row) for row in mutation.rows)
            elif isinstance(mutation, UpdateCell):
                if mutation.row_id < 1:
                    raise StoreError(f"Invalid row id {mutation.row_id}")
                while len(rows) < mutation.row_id:
                    rows.append([])
                row = rows[mutation.row_id - 1]
                while len(row) <= mutation.column:
                    row.append("")
                row[mutation.column] = mutation.value
            elif isinstance(mutation, ClearRows):
                for row_id in set(mutation.row_ids):
                    if 1 <= row_id <= len(rows):
                        rows[row_id - 1] = []
            else:
                raise StoreError(f"Unsupported mutation: {mutation!r}")
        self.tables = staged
        self.applied_batches.append(tuple(mutations))


# ────────────────────────────────────────────────────────────────
# Google Sheets Adapter
# ────────────────────────────────────────────────────────────────

SHEETS_API_BASE = "https://sheets.googleapis.com/v4/spreadsheets"
# Sheets answers 400 with this text for a range past the last row or column.
GRID_LIMIT_MARKER = "exceeds grid limits"
SHEETS_SCOPES = ["https://www.googleapis.com/auth/spreadsheets"]
GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"

# Row 1 of every sheet holds column headers.
HEADER_ROWS = 1


def column_letter(index: int) -> str:
    """0 -> "A", 25 -> "Z", 26 -> "AA"."""
    letters = ""
    index += 1
    while index > 0:
        index, remainder = divmod(index - 1, 26)
        letters = chr(ord("A") + remainder) + letters
    return letters


def sheet_row(row_id: int) -> int:
    """Record number -> 1-based sheet row."""
    return row_id + HEADER_ROWS


def to_a1(row_range: RowRange) -> str:
    name = row_range.table.name
    if not name.isalnum():
        name = "'" + name.replace("'", "''") + "'"
    last = column_letter(row_range.table.width - 1)
    if row_range.row_id is None:
        return f"{name}!A{HEADER_ROWS + 1}:{last}"
    row = sheet_row(row_range.row_id)
    return f"{name}!A{row}:{last}{row}"


def _cell_value(value: Any) -> dict:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return {"userEnteredValue": {"numberValue": value}}
    return {"userEnteredValue": {"stringValue": "" if value is None else str(value)}}


class ServiceAccountToken:
    """Bearer token source backed by google-auth service-account credentials."""

    def __init__(self, credentials: service_account.Credentials):
        self.credentials = credentials
        self._lock = asyncio.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "ServiceAccountToken":
        if settings.google_service_account:
            try:
                info = json.loads(settings.google_service_account)
            except json.JSONDecodeError as e:
                raise RuntimeError("GOOGLE_SERVICE_ACCOUNT is not valid JSON") from e
        elif settings.google_service_account_email and settings.google_private_key:
            info = {
                "type": "service_account",
                "client_email": settings.google_service_account_email,
                "private_key": settings.google_private_key,
                "token_uri": GOOGLE_TOKEN_URI,
            }
        else:
            raise RuntimeError(
                "Missing Google service account: set GOOGLE_SERVICE_ACCOUNT or "
                "GOOGLE_SERVICE_ACCOUNT_EMAIL and GOOGLE_PRIVATE_KEY"
            )
        credentials = service_account.Credentials.from_service_account_info(info, scopes=SHEETS_SCOPES)
        return cls(credentials)

    async def __call__(self) -> str:
        async with self._lock:
            if not self.credentials.valid:
                # google-auth refreshes synchronously; keep it off the event loop.
                await asyncio.to_thread(self.credentials.refresh, GoogleAuthRequest())
                logger.info("Refreshed Google Sheets access token")
        return self.credentials.token


class OutOfGridError(StoreError):
    """The requested range lies beyond the sheet's grid."""


class GoogleSheetsStore(RowStore):
    """RowStore over the Google Sheets REST API (v4)."""

    name = "sheets"

    def __init__(
        self,
        spreadsheet_id: str,
        sheet_gids: dict[str, int],
        token_provider: Callable[[], Any],
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 15.0,
    ):
        self.spreadsheet_id = spreadsheet_id
        self.sheet_gids = sheet_gids
        self.token_provider = token_provider
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    @property
    def base_url(self) -> str:
        return f"{SHEETS_API_BASE}/{self.spreadsheet_id}"

    async def _headers(self) -> dict[str, str]:
        token = self.token_provider()
        if asyncio.iscoroutine(token):
            token = await token
        return {"Authorization": f"Bearer {token}"}

    async def _request(self, method: str, url: str, **kwargs) -> dict:
        try:
            headers = await self._headers()
            response = await self.client.request(method, url, headers=headers, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 400 and GRID_LIMIT_MARKER in e.response.text:
                raise OutOfGridError("Range exceeds grid limits") from e
            logger.error(f"Sheets API {method} failed: {e.response.status_code} {e.response.text[:200]}")
            raise StoreError("Row store request failed") from e
        except (httpx.HTTPError, GoogleAuthError) as e:
            logger.error(f"Sheets API {method} error: {e}")
            raise StoreError("Row store unavailable") from e

    def _gid(self, table: TableSpec) -> int:
        try:
            return self.sheet_gids[table.name]
        except KeyError:
            raise StoreError(f"No sheet id configured for table {table.name}") from None

    async def get(self, row_range: RowRange) -> list[Row]:
        a1 = to_a1(row_range)
        try:
            data = await self._request("GET", f"{self.base_url}/values/{quote(a1, safe='')}")
        except OutOfGridError:
            if row_range.row_id is None:
                logger.error(f"Sheets API GET {a1} exceeds grid limits")
                raise
            # A record past the last row does not exist.
            logger.debug(f"Sheets API GET {a1} is past the last row")
            return []
        return data.get("values", [])

    async def batch_get(self, ranges: Sequence[RowRange]) -> list[list[Row]]:
        if not ranges:
            return []
        params = [("ranges", to_a1(r)) for r in ranges]
        try:
            data = await self._request("GET", f"{self.base_url}/values:batchGet", params=params)
        except OutOfGridError:
            # One range past the last row fails the whole batch.
            logger.info(f"Sheets API batchGet hit grid limits; reading {len(ranges)} ranges one by one")
            return list(await asyncio.gather(*(self.get(r) for r in ranges)))
        value_ranges = data.get("valueRanges", [])
        results = [vr.get("values", []) for vr in value_ranges]
        # The API omits nothing, but guard against a short reply.
        results.extend([] for _ in range(len(ranges) - len(results)))
        return results

    def build_requests(self, mutations: Sequence[Mutation]) -> list[dict]:
        requests: list[dict] = []
        for mutation in mutations:
            gid = self._gid(mutation.table)
            if isinstance(mutation, AppendRows):
                requests.append({
                    "appendCells": {
                        "sheetId": gid,
                        "rows": [{"values": [_cell_value(v) for v in row]} for row in mutation.rows],
                        "fields": "userEnteredValue",
                    }
                })
            elif isinstance(mutation, UpdateCell):
                row = sheet_row(mutation.row_id)
                requests.append({
                    "updateCells": {
                        "range": {
                            "sheetId": gid,
                            "startRowIndex": row - 1,
                            "endRowIndex": row,
                            "startColumnIndex": mutation.column,
                            "endColumnIndex": mutation.column + 1,
                        },
                        "rows": [{"values": [_cell_value(mutation.value)]}],
                        "fields": "userEnteredValue",
                    }
                })
            elif isinstance(mutation, ClearRows):
                # updateCells without `rows` clears the named fields across the range.
                for row_id in sorted(set(mutation.row_ids)):
                    row = sheet_row(row_id)
                    requests.append({
                        "updateCells": {
                            "range": {
                                "sheetId": gid,
                                "startRowIndex": row - 1,
                                "endRowIndex": row,
                                "startColumnIndex": 0,
                                "endColumnIndex": mutation.table.width,
                            },
                            "fields": "userEnteredValue",
                        }
                    })
            else:
                raise StoreError(f"Unsupported mutation: {mutation!r}")
        return requests

    async def batch_update(self, mutations: Sequence[Mutation]) -> None:
        requests = self.build_requests(mutations)
        if not requests:
            return
        await self._request("POST", f"{self.base_url}:batchUpdate", json={"requests": requests})

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()


def build_row_store(settings: Settings) -> RowStore:
    """Construct the configured row store backend."""
    if settings.row_store == "memory":
        logger.warning("Using in-memory row store; data is lost on restart")
        return InMemoryRowStore()

    if not settings.sheet_id:
        raise RuntimeError("Missing required environment variable: SHEET_ID")

    return GoogleSheetsStore(
        spreadsheet_id=settings.sheet_id,
        sheet_gids={
            SLOTS_TABLE.name: settings.slots_gid,
            SIGNUPS_TABLE.name: settings.signups_gid,
        },
        token_provider=ServiceAccountToken.from_settings(settings),
        timeout=settings.sheets_timeout_seconds,
    )
