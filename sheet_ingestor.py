import logging
import os
import time
from typing import Any, Dict, Iterable, Iterator, List, NamedTuple, Optional

import pandas as pd
from openpyxl import load_workbook

from cell_address import CellReference
from errors import FatalIOError, UnsupportedFileTypeError
from models import TabularTemplate
from utils.values import is_blank, is_number, is_text, normalize_cell, stringify

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1000

KIND_XLSX = "xlsx"
KIND_XLS = "xls"
KIND_CSV = "csv"

SUPPORTED_EXTENSIONS = {
    ".xlsx": KIND_XLSX,
    ".xls": KIND_XLS,
    ".csv": KIND_CSV,
}

CSV_SHEET_NAME = "CSV Data"

# Table scanner states
SEEKING = "seeking"
VERTICAL = "vertical"
MATRIX = "matrix"


class SheetSource(NamedTuple):
    """One sheet of a submission file, opened lazily when streamed"""
    index: int
    name: str
    path: str
    kind: str


class RowChunk(NamedTuple):
    """A bounded slice of consecutive rows starting at start_row (0-based)"""
    start_row: int
    rows: List[List[Any]]

    @property
    def end_row(self) -> int:
        return self.start_row + len(self.rows) - 1

    def value_at(self, ref: CellReference) -> Any:
        offset = ref.row - self.start_row
        if offset < 0 or offset >= len(self.rows):
            return None
        row = self.rows[offset]
        if ref.col >= len(row):
            return None
        return row[ref.col]


def _row_is_blank(row: List[Any]) -> bool:
    return all(is_blank(value) for value in row)


def _last_filled_col(row: List[Any]) -> int:
    for col in range(len(row) - 1, -1, -1):
        if not is_blank(row[col]):
            return col
    return -1


class TableScanner:
    """
    Incremental table detector for a single sheet.

    Rows are fed in order. The scanner keeps an explicit cursor (the next
    candidate header row), a state (seeking, vertical or matrix), the probe
    row of the open candidate and a window holding only the rows between the
    cursor and the probe. Templates are emitted as soon as a table closes.

    A matrix is tried before a vertical table at each cursor: its header row
    would otherwise also qualify as a vertical header.
    """

    def __init__(self, vertical_lookahead: int = 50, matrix_lookahead: int = 100, min_data_rows: int = 3):
        self.vertical_lookahead = vertical_lookahead
        self.matrix_lookahead = matrix_lookahead
        self.min_data_rows = min_data_rows
        self.cursor = 0
        self.state = SEEKING
        self.probe: Optional[int] = None
        self.candidate: Optional[Dict[str, Any]] = None
        self.tables: List[TabularTemplate] = []
        self._window: Dict[int, List[Any]] = {}
        self._rows_seen = 0
        self._finished = False

    @classmethod
    def scan(cls, rows: Iterable[List[Any]], **kwargs) -> List[TabularTemplate]:
        scanner = cls(**kwargs)
        for row in rows:
            scanner.feed(row)
        return scanner.finish()

    @property
    def window_size(self) -> int:
        return len(self._window)

    def feed(self, row: Iterable[Any]) -> List[TabularTemplate]:
        """Add the next row and return any tables it closed."""
        if self._finished:
            raise RuntimeError("Cannot feed rows after finish()")
        self._window[self._rows_seen] = [normalize_cell(value) for value in row]
        self._rows_seen += 1
        return self._run()

    def finish(self) -> List[TabularTemplate]:
        """Close any open candidate at end of sheet and return all tables."""
        self._finished = True
        self._run()
        return list(self.tables)

    def _run(self) -> List[TabularTemplate]:
        emitted_before = len(self.tables)
        while self._step():
            pass
        return self.tables[emitted_before:]

    def _available(self, index: int) -> bool:
        return index < self._rows_seen or self._finished

    def _row(self, index: int) -> List[Any]:
        return self._window.get(index, [])

    def _step(self) -> bool:
        if self.state == SEEKING:
            return self._seek()
        if self.state == VERTICAL:
            return self._probe_vertical()
        return self._probe_matrix()

    def _seek(self) -> bool:
        if self._finished and self.cursor >= self._rows_seen:
            return False
        # Matrix detection looks one row ahead of the cursor
        if not self._available(self.cursor + 1):
            return False

        header = self._row(self.cursor)
        following = self._row(self.cursor + 1)
        if self._starts_matrix(header, following):
            self.state = MATRIX
            self.candidate = {
                "header_row": self.cursor,
                "end_row": self.cursor + 1,
                "end_col": max(_last_filled_col(header), _last_filled_col(following)),
                "headers": self._matrix_headers(header),
            }
            self.probe = self.cursor + 2
        elif self._is_vertical_header(header):
            header_cols = [col for col, value in enumerate(header) if is_text(value)]
            self.state = VERTICAL
            self.candidate = {
                "header_row": self.cursor,
                "header_cols": header_cols,
                "headers": [stringify(header[col]) for col in header_cols],
                "data_rows": 0,
                "last_row": self.cursor,
            }
            self.probe = self.cursor + 1
        else:
            self.cursor += 1
            self._trim()
        return True

    def _probe_vertical(self) -> bool:
        candidate = self.candidate
        if self.probe > candidate["header_row"] + self.vertical_lookahead:
            return self._close_vertical()
        if not self._available(self.probe):
            return False

        row = self._row(self.probe)
        if _row_is_blank(row):
            return self._close_vertical()
        if any(col < len(row) and not is_blank(row[col]) for col in candidate["header_cols"]):
            candidate["data_rows"] += 1
        candidate["last_row"] = self.probe
        self.probe += 1
        return True

    def _close_vertical(self) -> bool:
        candidate = self.candidate
        if candidate["data_rows"] >= self.min_data_rows:
            self._emit(TabularTemplate(
                start_row=candidate["header_row"],
                end_row=candidate["last_row"],
                start_col=min(candidate["header_cols"]),
                end_col=max(candidate["header_cols"]),
                headers=candidate["headers"],
                kind=VERTICAL,
            ))
            self.cursor = candidate["last_row"] + 1
        else:
            self.cursor = candidate["header_row"] + 1
        self._reset()
        return True

    def _probe_matrix(self) -> bool:
        candidate = self.candidate
        if self.probe > candidate["header_row"] + self.matrix_lookahead:
            return self._close_matrix()
        if not self._available(self.probe):
            return False

        row = self._row(self.probe)
        if row and is_text(row[0]):
            candidate["end_row"] = self.probe
            candidate["end_col"] = max(candidate["end_col"], _last_filled_col(row))
            self.probe += 1
            return True
        return self._close_matrix()

    def _close_matrix(self) -> bool:
        candidate = self.candidate
        self._emit(TabularTemplate(
            start_row=candidate["header_row"],
            end_row=candidate["end_row"],
            start_col=0,
            end_col=candidate["end_col"],
            headers=candidate["headers"],
            kind=MATRIX,
        ))
        self.cursor = candidate["end_row"] + 1
        self._reset()
        return True

    def _emit(self, template: TabularTemplate) -> None:
        logger.debug(
            f"Detected {template.kind} table",
            extra={"start_row": template.start_row, "end_row": template.end_row, "headers": template.headers},
        )
        self.tables.append(template)

    def _reset(self) -> None:
        self.state = SEEKING
        self.candidate = None
        self.probe = None
        self._trim()

    def _trim(self) -> None:
        for index in [i for i in self._window if i < self.cursor]:
            del self._window[index]

    @staticmethod
    def _is_vertical_header(row: List[Any]) -> bool:
        return sum(1 for value in row if is_text(value)) >= 2

    @staticmethod
    def _starts_matrix(header: List[Any], label_row: List[Any]) -> bool:
        if not header or not label_row:
            return False
        if not (is_blank(header[0]) or is_text(header[0])):
            return False
        column_headers = [value for value in header[1:] if not is_blank(value)]
        if not column_headers or not all(is_text(value) for value in column_headers):
            return False
        return is_text(label_row[0]) and any(is_number(value) for value in label_row[1:])

    @staticmethod
    def _matrix_headers(header: List[Any]) -> List[str]:
        corner = "" if is_blank(header[0]) else stringify(header[0])
        return [corner] + [stringify(value) for value in header[1:] if not is_blank(value)]


class SheetIngestor:
    """
    Streams submission files sheet by sheet in bounded row chunks.

    .xlsx files are read with openpyxl in read-only mode so rows arrive one
    at a time; .csv files go through pandas' chunked reader; .xls files are
    read per sheet with pandas (xlrd) and sliced into chunks.
    """

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE, vertical_lookahead: int = 50, matrix_lookahead: int = 100):
        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        self.chunk_size = chunk_size
        self.vertical_lookahead = vertical_lookahead
        self.matrix_lookahead = matrix_lookahead

    @staticmethod
    def file_kind(file_path: str) -> str:
        extension = os.path.splitext(file_path or "")[1].lower()
        kind = SUPPORTED_EXTENSIONS.get(extension)
        if kind is None:
            raise UnsupportedFileTypeError(extension, file_path=file_path)
        return kind

    def open_sheets(self, file_path: str) -> List[SheetSource]:
        """
        List the sheets of a submission file.

        Raises:
            UnsupportedFileTypeError: extension is not .xlsx, .xls or .csv
            FatalIOError: file is missing, unreadable or has no worksheets
        """
        kind = self.file_kind(file_path)
        if not os.path.exists(file_path):
            logger.error("File not found", extra={"file_path": file_path})
            raise FatalIOError(f"File does not exist at path: {file_path}", file_path=file_path, missing=True)
        if not os.access(file_path, os.R_OK):
            raise FatalIOError(f"File is not readable: {file_path}", file_path=file_path)

        start_time = time.time()
        if kind == KIND_CSV:
            sheets = [SheetSource(0, CSV_SHEET_NAME, file_path, kind)]
        elif kind == KIND_XLSX:
            sheets = self._workbook_sheets(file_path)
        else:
            sheets = self._legacy_workbook_sheets(file_path)

        if not sheets:
            raise FatalIOError("No worksheet found in the Excel file", file_path=file_path)

        logger.info(
            f"Opened {kind} file with {len(sheets)} sheet(s)",
            extra={
                "file_path": file_path,
                "sheets": [sheet.name for sheet in sheets],
                "open_time_seconds": f"{time.time() - start_time:.2f}",
            },
        )
        return sheets

    def stream_rows(self, sheet: SheetSource) -> Iterator[RowChunk]:
        """
        Yield the rows of one sheet in chunks of at most chunk_size rows.

        Every call reopens the source, so a sheet can be streamed again from
        the top (once per rule, or once for table detection).
        """
        if sheet.kind == KIND_CSV:
            return self._stream_csv(sheet)
        if sheet.kind == KIND_XLSX:
            return self._chunk_rows(self._iter_workbook_rows(sheet))
        return self._stream_legacy_workbook(sheet)

    def iter_rows(self, sheet: SheetSource) -> Iterator[List[Any]]:
        for chunk in self.stream_rows(sheet):
            for row in chunk.rows:
                yield row

    def detect_tables(self, sheet: SheetSource) -> List[TabularTemplate]:
        scanner = TableScanner(
            vertical_lookahead=self.vertical_lookahead,
            matrix_lookahead=self.matrix_lookahead,
        )
        for row in self.iter_rows(sheet):
            scanner.feed(row)
        tables = scanner.finish()
        logger.info(
            f"Detected {len(tables)} table(s) in sheet {sheet.name}",
            extra={"file_path": sheet.path, "sheet": sheet.name},
        )
        return tables

    def _chunk_rows(self, rows: Iterable[List[Any]]) -> Iterator[RowChunk]:
        chunk: List[List[Any]] = []
        start_row = 0
        for row in rows:
            chunk.append(row)
            if len(chunk) == self.chunk_size:
                yield RowChunk(start_row, chunk)
                start_row += len(chunk)
                chunk = []
        if chunk:
            yield RowChunk(start_row, chunk)

    @staticmethod
    def _workbook_sheets(file_path: str) -> List[SheetSource]:
        try:
            workbook = load_workbook(file_path, read_only=True, data_only=True)
        except Exception as e:
            logger.error(
                "Failed to read Excel file",
                extra={"file_path": file_path, "error": str(e), "error_type": type(e).__name__},
            )
            raise FatalIOError(f"Failed to read Excel file: {str(e)}", file_path=file_path) from e
        try:
            return [
                SheetSource(index, worksheet.title, file_path, KIND_XLSX)
                for index, worksheet in enumerate(workbook.worksheets)
            ]
        finally:
            workbook.close()

    @staticmethod
    def _iter_workbook_rows(sheet: SheetSource) -> Iterator[List[Any]]:
        try:
            workbook = load_workbook(sheet.path, read_only=True, data_only=True)
        except Exception as e:
            raise FatalIOError(f"Failed to read Excel file: {str(e)}", file_path=sheet.path) from e
        try:
            worksheet = workbook.worksheets[sheet.index]
            for values in worksheet.iter_rows(values_only=True):
                yield [normalize_cell(value) for value in values]
        finally:
            workbook.close()

    @staticmethod
    def _legacy_workbook_sheets(file_path: str) -> List[SheetSource]:
        try:
            with pd.ExcelFile(file_path) as excel_file:
                names = list(excel_file.sheet_names)
        except Exception as e:
            logger.error(
                "Failed to read Excel file",
                extra={"file_path": file_path, "error": str(e), "error_type": type(e).__name__},
            )
            raise FatalIOError(f"Failed to read Excel file: {str(e)}", file_path=file_path) from e
        return [SheetSource(index, name, file_path, KIND_XLS) for index, name in enumerate(names)]

    def _stream_legacy_workbook(self, sheet: SheetSource) -> Iterator[RowChunk]:
        # xlrd loads a whole sheet at once; only the chunks handed out are bounded
        try:
            df = pd.read_excel(sheet.path, sheet_name=sheet.name, header=None, dtype=object)
        except Exception as e:
            raise FatalIOError(f"Failed to read Excel file: {str(e)}", file_path=sheet.path) from e
        for start in range(0, len(df), self.chunk_size):
            frame = df.iloc[start:start + self.chunk_size]
            rows = [[normalize_cell(value) for value in values] for values in frame.itertuples(index=False, name=None)]
            yield RowChunk(start, rows)

    def _stream_csv(self, sheet: SheetSource) -> Iterator[RowChunk]:
        try:
            reader = pd.read_csv(
                sheet.path,
                header=None,
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=False,
                encoding="utf-8-sig",
                chunksize=self.chunk_size,
            )
        except pd.errors.EmptyDataError:
            logger.warning("CSV file is empty", extra={"file_path": sheet.path})
            return
        except Exception as e:
            raise FatalIOError(f"Failed to read CSV file: {str(e)}", file_path=sheet.path) from e

        start_row = 0
        with reader:
            try:
                for frame in reader:
                    rows = [[normalize_cell(value) for value in values] for values in frame.itertuples(index=False, name=None)]
                    yield RowChunk(start_row, rows)
                    start_row += len(rows)
            except pd.errors.EmptyDataError:
                return
            except (pd.errors.ParserError, UnicodeDecodeError) as e:
                raise FatalIOError(f"Failed to read CSV file: {str(e)}", file_path=sheet.path) from e
