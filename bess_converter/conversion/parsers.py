"""
CSV Parsers for Battery Exports.

This module decodes the wide CSV files of both export conventions into raw
row data. Per-cell columns ({V|T|SOC|SOH}N for Project1, {vol|soc|temp}N for
Project2) are ordered by their numeric suffix and laid into fixed-length
lists so that index i always denotes cell i+1.

File-level I/O errors propagate unchanged. Row-level problems are routed
through the ErrorHandler and the offending row is skipped.
"""

import re
from abc import ABC
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar, Union

import pandas as pd

from bess_converter.core.config import AppConfig, Project1Config, Project2Config
from bess_converter.core.logging import LoggerMixin
from bess_converter.utils.helpers import (
    clean_string_value, format_bank_id, parse_time_string, safe_parse_float, safe_parse_int
)
from .error_handler import ErrorContext, ErrorHandler
from .exceptions import ParsingError, UnsupportedDataTypeError
from .models import (
    DataType, GroupId, ParseMetadata, Project1Metadata, Project1RawData, Project1Row,
    Project2Metadata, Project2RawData, Project2Row, ProjectType, RowResult, SystemId, TimeRange
)

RowT = TypeVar("RowT")
Record = Dict[str, Any]

# Placeholder cell written in place of a line with more fields than the header
_MALFORMED_MARKER = "\x00malformed:"

PROJECT1_REQUIRED_HEADERS = ("时间", "总电压", "总电流", "SOC", "SOH")
PROJECT1_CELL_PREFIXES = {
    "voltages": "V",
    "temperatures": "T",
    "socs": "SOC",
    "sohs": "SOH",
}

PROJECT2_BASE_HEADERS = ("devInstCode", "groupNo", "datetime")
PROJECT2_VALUE_PREFIXES = {
    DataType.VOLTAGE: "vol",
    DataType.SOC: "soc",
    DataType.TEMPERATURE: "temp",
}
PROJECT2_STATE_HEADERS = ("BankVol", "BankCur", "BankSoc", "BankSoh")

_BANK_ID_PATTERN = re.compile(r"Bank(\d+)")
_SYSTEM_SEGMENT_PATTERN = re.compile(r"^\d+#$")
_PROJECT2_DATE_PATTERN = re.compile(r"_(\d{4})_(\d{2})_(\d{2})_\d+\.csv$")
_FILENAME_TYPE_PREFIXES = {
    "vol": DataType.VOLTAGE,
    "temp": DataType.TEMPERATURE,
    "soc": DataType.SOC,
    "state": DataType.STATE,
}


def matching_cell_headers(headers: List[str], prefix: str) -> List[str]:
    """Headers named <prefix><N>, ordered by N numerically (V2 before V10)."""
    pattern = re.compile(rf"^{re.escape(prefix)}(\d+)$")
    matched = []
    for header in headers:
        match = pattern.match(header)
        if match:
            matched.append((int(match.group(1)), header))
    return [header for _, header in sorted(matched)]


def extract_cells(record: Record, cell_headers: List[str], cell_count: int) -> List[Optional[float]]:
    """Values of the given headers, truncated and None-padded to cell_count."""
    values = [safe_parse_float(record.get(header)) for header in cell_headers[:cell_count]]
    values.extend([None] * (cell_count - len(values)))
    return values


@dataclass
class MalformedLine:
    """A data line that could not be split into the header's columns."""
    fields: List[str]
    expected: int

    def to_error(self) -> ParsingError:
        return ParsingError(
            f"Row has {len(self.fields)} fields, expected {self.expected}",
            {"fields": self.fields}
        )


class BaseCsvParser(ABC, LoggerMixin):
    """
    Shared CSV reading and row-loop behaviour.

    Subclasses supply the header vocabulary and the per-row decoder.
    """

    def __init__(self, encoding: str, error_handler: Optional[ErrorHandler] = None):
        self.encoding = encoding
        self.error_handler = error_handler or ErrorHandler()

    def _clean_header(self, header: str) -> str:
        return str(header).strip()

    def _read_headers(self, file_path: Path) -> List[str]:
        """Read only the header line."""
        frame = self._read_frame(file_path, nrows=0)
        return [self._clean_header(column) for column in frame.columns]

    def _read_records(self, file_path: Path) -> Tuple[List[str], List[Union[Record, MalformedLine]]]:
        """
        Read all data rows.

        Lines with more fields than the header keep their position in the
        result as MalformedLine entries so that row numbering is preserved.
        """
        expected = len(self._read_frame(file_path, nrows=0).columns)
        malformed: List[List[str]] = []
        leading: List[MalformedLine] = []

        def keep_bad_line(fields: List[str]) -> List[str]:
            malformed.append(fields)
            return [f"{_MALFORMED_MARKER}{len(malformed) - 1}"] + [""] * (expected - 1)

        while True:
            malformed.clear()
            skipped = list(range(1, len(leading) + 1))
            frame = self._read_frame(file_path, on_bad_line=keep_bad_line, skiprows=skipped)
            if frame.empty or isinstance(frame.index, pd.RangeIndex):
                break
            # A first data line wider than the header is read as index columns
            leading.append(MalformedLine(
                fields=self._read_line(file_path, len(leading) + 1), expected=expected
            ))

        headers = [self._clean_header(column) for column in frame.columns]
        frame.columns = headers
        records: List[Union[Record, MalformedLine]] = leading + frame.to_dict("records")

        if malformed:
            first = headers[0]
            for position, record in enumerate(records):
                marker = record.get(first) if isinstance(record, dict) else None
                if isinstance(marker, str) and marker.startswith(_MALFORMED_MARKER):
                    fields = malformed[int(marker[len(_MALFORMED_MARKER):])]
                    records[position] = MalformedLine(fields=fields, expected=expected)
        if malformed or leading:
            self.logger.warning(
                f"{file_path.name} has {len(malformed) + len(leading)} line(s) with too many fields"
            )
        return headers, records

    def _read_line(self, file_path: Path, line_number: int) -> List[str]:
        """Fields of one physical line, header line being 0."""
        frame = self._read_frame(file_path, header=None, skiprows=line_number, nrows=1)
        return [str(value) for value in frame.iloc[0]] if len(frame) else []

    def _read_frame(self, file_path: Path, nrows: Optional[int] = None,
                    on_bad_line: Optional[Callable[[List[str]], List[str]]] = None,
                    **options) -> pd.DataFrame:
        try:
            return pd.read_csv(
                file_path,
                encoding=self.encoding,
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=True,
                nrows=nrows,
                engine="python",
                on_bad_lines=on_bad_line or "error",
                **options
            )
        except (pd.errors.EmptyDataError, pd.errors.ParserError, UnicodeDecodeError) as e:
            raise ParsingError(f"CSV decoding failed for {file_path}: {e}") from e

    def _decode_rows(self,
                     file_path: Path,
                     records: List[Union[Record, MalformedLine]],
                     decode: Callable[[Record], Tuple[RowT, datetime]],
                     metadata: ParseMetadata) -> List[RowT]:
        """
        Decode every record, skipping rows that fail.

        Tracks the min/max timestamp of decoded rows. Stops early, marking
        the metadata as aborted, when the error handler says so or when
        max_errors_per_file row errors have been seen.
        """
        rows: List[RowT] = []
        start: Optional[datetime] = None
        end: Optional[datetime] = None
        row_errors = 0
        max_errors = self.error_handler.strategy.max_errors_per_file

        for index, record in enumerate(records):
            result = self._decode_one(index + 1, record, decode)
            if result.ok:
                row, timestamp = result.value
                rows.append(row)
                start = timestamp if start is None or timestamp < start else start
                end = timestamp if end is None or timestamp > end else end
                continue

            row_errors += 1
            metadata.skipped_rows += 1
            decision = self.error_handler.handle_row_error(
                result.error,
                ErrorContext(operation="parse_row", file_path=str(file_path), row_index=result.row_index)
            )
            if not decision.should_continue:
                metadata.aborted = True
                metadata.abort_reason = f"Stopped at row {result.row_index}: {result.error}"
                break
            if max_errors and row_errors >= max_errors:
                metadata.aborted = True
                metadata.abort_reason = f"Too many row errors ({row_errors})"
                break

        now = datetime.now()
        metadata.record_count = len(rows)
        metadata.time_range = TimeRange(start=start or now, end=end or now)

        if metadata.aborted:
            self.logger.warning(f"Parsing of {file_path} stopped early: {metadata.abort_reason}")
        self.logger.info(
            f"Parsed {file_path.name}: {len(rows)} rows, {metadata.skipped_rows} skipped"
        )
        return rows

    @staticmethod
    def _decode_one(row_index: int,
                    record: Union[Record, MalformedLine],
                    decode: Callable[[Record], Tuple[RowT, datetime]]) -> RowResult:
        if isinstance(record, MalformedLine):
            return RowResult(row_index=row_index, error=record.to_error())
        try:
            return RowResult(row_index=row_index, value=decode(record))
        except Exception as e:
            return RowResult(row_index=row_index, error=e)


class Project1Parser(BaseCsvParser):
    """Parser for Project1 BankNN files (one bank per file)."""

    def __init__(self, config: Optional[Project1Config] = None, error_handler: Optional[ErrorHandler] = None):
        self.config = config or Project1Config()
        super().__init__(self.config.encoding, error_handler)

    def parse_project_one_file(self, file_path: Union[str, Path]) -> Project1RawData:
        """
        Parse a Project1 file.

        Args:
            file_path: Path to a BankNN CSV file

        Returns:
            Raw rows with null-padded cell lists of length cell_count

        Raises:
            OSError: If the file cannot be opened
            ParsingError: If the content is not decodable CSV
        """
        file_path = Path(file_path)
        headers, records = self._read_records(file_path)

        cell_headers = {
            name: matching_cell_headers(headers, prefix)
            for name, prefix in PROJECT1_CELL_PREFIXES.items()
        }
        cell_count = self.config.cell_count

        def decode(record: Record) -> Tuple[Project1Row, datetime]:
            timestamp_text = clean_string_value(record.get("时间"))
            timestamp = parse_time_string(timestamp_text, self.config.time_format)
            row = Project1Row(
                timestamp=timestamp_text,
                total_voltage=safe_parse_float(record.get("总电压")),
                total_current=safe_parse_float(record.get("总电流")),
                soc=safe_parse_float(record.get("SOC")),
                soh=safe_parse_float(record.get("SOH")),
                voltages=extract_cells(record, cell_headers["voltages"], cell_count),
                temperatures=extract_cells(record, cell_headers["temperatures"], cell_count),
                socs=extract_cells(record, cell_headers["socs"], cell_count),
                sohs=extract_cells(record, cell_headers["sohs"], cell_count),
            )
            return row, timestamp

        metadata = Project1Metadata(
            file_path=str(file_path),
            system_id=self.extract_system_id(file_path),
            bank_id=self.extract_bank_id(file_path)
        )
        rows = self._decode_rows(file_path, records, decode, metadata)
        return Project1RawData(headers=headers, rows=rows, metadata=metadata)

    def validate_csv_format(self, file_path: Union[str, Path]) -> bool:
        """Check the header line for the mandatory Project1 columns."""
        file_path = Path(file_path)
        try:
            headers = self._read_headers(file_path)
        except Exception as e:
            self.logger.warning(f"Cannot read header of {file_path}: {e}")
            return False

        missing = [header for header in PROJECT1_REQUIRED_HEADERS if header not in headers]
        if missing:
            self.logger.warning(f"{file_path.name} is missing required headers: {', '.join(missing)}")
            return False

        if not matching_cell_headers(headers, "V"):
            self.logger.warning(f"{file_path.name} has no cell voltage columns")
            return False

        self.logger.debug(f"{file_path.name} passed Project1 header validation ({len(headers)} columns)")
        return True

    @staticmethod
    def extract_system_id(file_path: Union[str, Path]) -> str:
        """The '<digits>#' path segment, if it names a known system."""
        known = {system.value for system in SystemId}
        for part in Path(file_path).parts:
            if _SYSTEM_SEGMENT_PATTERN.match(part) and part in known:
                return part
        return "unknown"

    @staticmethod
    def extract_bank_id(file_path: Union[str, Path]) -> str:
        match = _BANK_ID_PATTERN.search(Path(file_path).name)
        return format_bank_id(match.group(1)) if match else "unknown"


class Project2Parser(BaseCsvParser):
    """Parser for Project2 group/data-type files."""

    def __init__(self, config: Optional[Project2Config] = None, error_handler: Optional[ErrorHandler] = None):
        self.config = config or Project2Config()
        super().__init__(self.config.encoding, error_handler)

    def _clean_header(self, header: str) -> str:
        return re.sub(r"\s+", "", str(header))

    def parse_project_two_file(self, file_path: Union[str, Path],
                               data_type: Union[DataType, str]) -> Project2RawData:
        """
        Parse a Project2 file of the given data type.

        Raises:
            OSError: If the file cannot be opened
            ParsingError: If the content is not decodable CSV
            UnsupportedDataTypeError: If data_type is not a known data type
        """
        data_type = self.coerce_data_type(data_type)
        file_path = Path(file_path)
        headers, records = self._read_records(file_path)

        prefix = PROJECT2_VALUE_PREFIXES.get(data_type)
        value_headers = matching_cell_headers(headers, prefix) if prefix else []
        cell_count = self.config.cell_count

        def decode(record: Record) -> Tuple[Project2Row, datetime]:
            datetime_text = clean_string_value(record.get("datetime"))
            timestamp = parse_time_string(datetime_text, self.config.time_format)
            row = Project2Row(
                dev_inst_code=clean_string_value(record.get("devInstCode")),
                group_no=safe_parse_int(record.get("groupNo")),
                datetime=datetime_text
            )
            if data_type in (DataType.VOLTAGE, DataType.STATE):
                row.bank_vol = safe_parse_float(record.get("BankVol"))
                row.bank_cur = safe_parse_float(record.get("BankCur"))
            if data_type == DataType.STATE:
                row.bank_soc = safe_parse_float(record.get("BankSoc"))
                row.bank_soh = safe_parse_float(record.get("BankSoh"))
            else:
                row.values = extract_cells(record, value_headers, cell_count)
            return row, timestamp

        metadata = Project2Metadata(
            file_path=str(file_path),
            group_id=self.extract_group_id(file_path),
            data_type=data_type,
            date=self.extract_date(file_path)
        )
        rows = self._decode_rows(file_path, records, decode, metadata)
        return Project2RawData(headers=headers, rows=rows, metadata=metadata)

    def validate_csv_format(self, file_path: Union[str, Path], data_type: Union[DataType, str]) -> bool:
        """Check the header line for the base and data-type specific columns."""
        file_path = Path(file_path)
        try:
            data_type = self.coerce_data_type(data_type)
            headers = self._read_headers(file_path)
        except Exception as e:
            self.logger.warning(f"Cannot validate {file_path}: {e}")
            return False

        missing = [header for header in PROJECT2_BASE_HEADERS if header not in headers]
        if missing:
            self.logger.warning(f"{file_path.name} is missing required headers: {', '.join(missing)}")
            return False

        if data_type == DataType.VOLTAGE:
            valid = ("BankVol" in headers and "BankCur" in headers
                     and bool(matching_cell_headers(headers, "vol")))
        elif data_type == DataType.STATE:
            valid = any(header in headers for header in PROJECT2_STATE_HEADERS)
        else:
            valid = bool(matching_cell_headers(headers, PROJECT2_VALUE_PREFIXES[data_type]))

        if not valid:
            self.logger.warning(f"{file_path.name} lacks the columns expected for {data_type.value} data")
        return valid

    @staticmethod
    def coerce_data_type(data_type: Union[DataType, str]) -> DataType:
        try:
            return DataType(data_type)
        except ValueError:
            raise UnsupportedDataTypeError(
                f"Unsupported data type: {data_type!r}",
                {"allowed": [d.value for d in DataType]}
            ) from None

    @staticmethod
    def extract_group_id(file_path: Union[str, Path]) -> str:
        known = {group.value for group in GroupId}
        for part in Path(file_path).parts:
            if part in known:
                return part
        return "unknown"

    @staticmethod
    def extract_date(file_path: Union[str, Path]) -> Optional[str]:
        match = _PROJECT2_DATE_PATTERN.search(Path(file_path).name)
        if not match:
            return None
        year, month, day = match.groups()
        return f"{year}-{month}-{day}"


class FileParser(LoggerMixin):
    """
    Dispatches files to the parser of their export convention.

    The convention is inferred from the path: a known system segment
    ('2#', '14#', '15#') means Project1, a known group segment Project2.
    """

    def __init__(self, config: Optional[AppConfig] = None, error_handler: Optional[ErrorHandler] = None):
        config = config or AppConfig()
        self.error_handler = error_handler or ErrorHandler(config.error_handling)
        self.project1 = Project1Parser(config.project1, self.error_handler)
        self.project2 = Project2Parser(config.project2, self.error_handler)

    def parse_project_one_file(self, file_path: Union[str, Path]) -> Project1RawData:
        return self.project1.parse_project_one_file(file_path)

    def parse_project_two_file(self, file_path: Union[str, Path],
                               data_type: Union[DataType, str]) -> Project2RawData:
        return self.project2.parse_project_two_file(file_path, data_type)

    def detect_project_type(self, file_path: Union[str, Path]) -> Optional[ProjectType]:
        if Project1Parser.extract_system_id(file_path) != "unknown":
            return ProjectType.PROJECT1
        if Project2Parser.extract_group_id(file_path) != "unknown":
            return ProjectType.PROJECT2
        return None

    def detect_data_type(self, file_path: Union[str, Path]) -> Optional[DataType]:
        """Data type from a data-type directory segment, else from the filename prefix."""
        path = Path(file_path)
        known = {d.value: d for d in DataType}
        for part in reversed(path.parent.parts):
            if part in known:
                return known[part]
        match = re.match(r"^(soc|state|temp|vol)", path.name)
        return _FILENAME_TYPE_PREFIXES[match.group(1)] if match else None

    def validate_csv_format(self, file_path: Union[str, Path]) -> bool:
        project_type = self.detect_project_type(file_path)
        if project_type == ProjectType.PROJECT1:
            return self.project1.validate_csv_format(file_path)
        if project_type == ProjectType.PROJECT2:
            data_type = self.detect_data_type(file_path)
            if data_type is None:
                self.logger.warning(f"Cannot infer data type of {file_path}")
                return False
            return self.project2.validate_csv_format(file_path, data_type)

        self.logger.warning(f"Cannot infer project type of {file_path}")
        return False
