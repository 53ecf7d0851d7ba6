"""
Conversion Data Model.

This module defines the closed identifier sets, the scanned file structures,
the raw per-project rows, the standardized time-series model and the
immutable error/warning records produced during a conversion.
"""

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Generic, Iterator, List, Optional, Tuple, TypeVar

from bess_converter.utils.helpers import generate_uuid


class ProjectType(str, Enum):
    """Supported export conventions."""
    PROJECT1 = "project1"
    PROJECT2 = "project2"


class SystemId(str, Enum):
    """Project1 system directories."""
    SYSTEM_2 = "2#"
    SYSTEM_14 = "14#"
    SYSTEM_15 = "15#"


class GroupId(str, Enum):
    """Project2 group directories."""
    GROUP1 = "group1"
    GROUP2 = "group2"
    GROUP3 = "group3"
    GROUP4 = "group4"


class DataType(str, Enum):
    """Project2 data-type directories."""
    SOC = "soc"
    STATE = "state"
    TEMPERATURE = "temperature"
    VOLTAGE = "voltage"


class ErrorCategory(str, Enum):
    """Error categories, listed in classification priority order."""
    FILE_ACCESS = "file_access"
    FILE_FORMAT = "file_format"
    DATA_PARSING = "data_parsing"
    DATA_VALIDATION = "data_validation"
    DATA_TRANSFORM = "data_transform"
    MEMORY_ERROR = "memory_error"
    NETWORK_ERROR = "network_error"
    SYSTEM_ERROR = "system_error"


class ErrorSeverity(str, Enum):
    """Error severity levels."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ConversionErrorType(str, Enum):
    FILE_ERROR = "file_error"
    PARSE_ERROR = "parse_error"
    VALIDATION_ERROR = "validation_error"
    TRANSFORMATION_ERROR = "transformation_error"
    STORAGE_ERROR = "storage_error"


class ConversionWarningType(str, Enum):
    FORMAT_ISSUE = "format_issue"
    DATA_QUALITY = "data_quality"
    PERFORMANCE = "performance"
    CONFIGURATION = "configuration"


class FileEventType(str, Enum):
    """Watch event kinds delivered to scanner callbacks."""
    ADD = "add"
    CHANGE = "change"
    UNLINK = "unlink"


# ---------------------------------------------------------------------------
# Scanned file structures
# ---------------------------------------------------------------------------

@dataclass
class FileRecord:
    """Stat metadata for one discovered CSV file."""
    file_path: Path
    last_modified: datetime
    file_size: int

    @classmethod
    def from_path(cls, file_path: Path) -> "FileRecord":
        """Create from a path; raises OSError if the file cannot be stat'ed."""
        stat_result = file_path.stat()
        return cls(
            file_path=file_path,
            last_modified=datetime.fromtimestamp(stat_result.st_mtime),
            file_size=stat_result.st_size
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "file_path": str(self.file_path),
            "last_modified": self.last_modified.isoformat(),
            "file_size": self.file_size
        }


@dataclass
class Project1FileStructure:
    """System id -> bank id -> file record."""
    systems: Dict[SystemId, Dict[str, FileRecord]] = field(default_factory=dict)

    def iter_files(self) -> Iterator[Tuple[SystemId, str, FileRecord]]:
        for system_id, banks in self.systems.items():
            for bank_id, record in sorted(banks.items()):
                yield system_id, bank_id, record

    def file_count(self) -> int:
        return sum(len(banks) for banks in self.systems.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            system_id.value: {bank_id: record.to_dict() for bank_id, record in banks.items()}
            for system_id, banks in self.systems.items()
        }


@dataclass
class Project2FileStructure:
    """Group id -> data type -> 'YYYY-MM-DD' -> file record."""
    groups: Dict[GroupId, Dict[DataType, Dict[str, FileRecord]]] = field(default_factory=dict)

    def iter_files(self) -> Iterator[Tuple[GroupId, DataType, str, FileRecord]]:
        for group_id, data_types in self.groups.items():
            for data_type, dates in data_types.items():
                for date_key, record in sorted(dates.items()):
                    yield group_id, data_type, date_key, record

    def file_count(self) -> int:
        return sum(
            len(dates)
            for data_types in self.groups.values()
            for dates in data_types.values()
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            group_id.value: {
                data_type.value: {date_key: record.to_dict() for date_key, record in dates.items()}
                for data_type, dates in data_types.items()
            }
            for group_id, data_types in self.groups.items()
        }


# ---------------------------------------------------------------------------
# Raw parser output
# ---------------------------------------------------------------------------

T = TypeVar("T")


@dataclass
class RowResult(Generic[T]):
    """Outcome of decoding one source row: either a value or a logged skip."""
    row_index: int
    value: Optional[T] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class TimeRange:
    start: datetime
    end: datetime

    def to_dict(self) -> Dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


@dataclass
class Project1Row:
    """One Project1 row; cell lists are index-aligned and null-padded."""
    timestamp: str
    total_voltage: Optional[float]
    total_current: Optional[float]
    soc: Optional[float]
    soh: Optional[float]
    voltages: List[Optional[float]] = field(default_factory=list)
    temperatures: List[Optional[float]] = field(default_factory=list)
    socs: List[Optional[float]] = field(default_factory=list)
    sohs: List[Optional[float]] = field(default_factory=list)


@dataclass
class Project2Row:
    """One Project2 row; which fields are filled depends on the data type."""
    dev_inst_code: str
    group_no: Optional[int]
    datetime: str
    bank_vol: Optional[float] = None
    bank_cur: Optional[float] = None
    bank_soc: Optional[float] = None
    bank_soh: Optional[float] = None
    values: List[Optional[float]] = field(default_factory=list)


@dataclass
class ParseMetadata:
    """Bookkeeping shared by both raw data shapes."""
    file_path: str
    record_count: int = 0
    skipped_rows: int = 0
    time_range: Optional[TimeRange] = None
    aborted: bool = False
    abort_reason: Optional[str] = None


@dataclass
class Project1Metadata(ParseMetadata):
    system_id: str = "unknown"
    bank_id: str = "unknown"


@dataclass
class Project2Metadata(ParseMetadata):
    group_id: str = "unknown"
    data_type: Optional[DataType] = None
    date: Optional[str] = None


@dataclass
class Project1RawData:
    headers: List[str]
    rows: List[Project1Row]
    metadata: Project1Metadata


@dataclass
class Project2RawData:
    headers: List[str]
    rows: List[Project2Row]
    metadata: Project2Metadata


# ---------------------------------------------------------------------------
# Standardized output
# ---------------------------------------------------------------------------

@dataclass
class BankData:
    voltage: float = 0.0
    current: float = 0.0
    soc: float = 0.0
    soh: float = 0.0
    power: float = 0.0
    temperature: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return {
            "voltage": self.voltage,
            "current": self.current,
            "soc": self.soc,
            "soh": self.soh,
            "power": self.power,
            "temperature": self.temperature
        }


@dataclass
class CellData:
    voltages: List[Optional[float]] = field(default_factory=list)
    temperatures: List[Optional[float]] = field(default_factory=list)
    socs: List[Optional[float]] = field(default_factory=list)
    sohs: List[Optional[float]] = field(default_factory=list)

    def arrays(self) -> Dict[str, List[Optional[float]]]:
        return {
            "voltages": self.voltages,
            "temperatures": self.temperatures,
            "socs": self.socs,
            "sohs": self.sohs
        }

    def to_dict(self) -> Dict[str, List[Optional[float]]]:
        return {name: list(values) for name, values in self.arrays().items()}


@dataclass
class TimeSeriesPoint:
    timestamp: datetime
    bank_data: BankData
    cell_data: CellData

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "bank_data": self.bank_data.to_dict(),
            "cell_data": self.cell_data.to_dict()
        }


@dataclass
class BankStatistics:
    avg_voltage: float = 0.0
    min_voltage: float = 0.0
    max_voltage: float = 0.0
    avg_current: float = 0.0
    min_current: float = 0.0
    max_current: float = 0.0
    avg_soc: float = 0.0
    min_soc: float = 0.0
    max_soc: float = 0.0
    avg_soh: float = 0.0
    min_soh: float = 0.0
    max_soh: float = 0.0
    avg_temperature: float = 0.0
    min_temperature: float = 0.0
    max_temperature: float = 0.0

    def to_dict(self) -> Dict[str, float]:
        return dict(self.__dict__)


@dataclass
class BankTimeSeries:
    bank_id: str
    data_points: List[TimeSeriesPoint] = field(default_factory=list)
    statistics: BankStatistics = field(default_factory=BankStatistics)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bank_id": self.bank_id,
            "data_points": [point.to_dict() for point in self.data_points],
            "statistics": self.statistics.to_dict()
        }


@dataclass
class ProjectSummary:
    total_records: int = 0
    valid_records: int = 0
    error_records: int = 0
    completeness_score: float = 0.0
    accuracy_score: float = 0.0
    consistency_score: float = 0.0
    aborted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


@dataclass
class StandardBatteryData:
    """Normalized output of one conversion job."""
    project_id: str
    project_type: ProjectType
    time_range: TimeRange
    banks: List[BankTimeSeries] = field(default_factory=list)
    summary: ProjectSummary = field(default_factory=ProjectSummary)
    system_id: Optional[str] = None
    group_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "project_id": self.project_id,
            "project_type": self.project_type.value,
            "system_id": self.system_id,
            "group_id": self.group_id,
            "time_range": self.time_range.to_dict(),
            "banks": [bank.to_dict() for bank in self.banks],
            "summary": self.summary.to_dict()
        }


# ---------------------------------------------------------------------------
# Error and warning records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ConversionError:
    """Immutable error record issued by the ErrorHandler."""
    type: ConversionErrorType
    severity: ErrorSeverity
    message: str
    file_path: Optional[str] = None
    row_index: Optional[int] = None
    field: Optional[str] = None
    details: Optional[str] = None
    timestamp: datetime = dataclasses.field(default_factory=datetime.now)
    id: str = dataclasses.field(default_factory=generate_uuid)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "severity": self.severity.value,
            "file_path": self.file_path,
            "row_index": self.row_index,
            "field": self.field,
            "message": self.message,
            "details": self.details,
            "timestamp": self.timestamp.isoformat()
        }


@dataclass(frozen=True)
class ConversionWarning:
    """Immutable warning record issued by the ErrorHandler."""
    type: ConversionWarningType
    message: str
    severity: ErrorSeverity = ErrorSeverity.LOW
    file_path: Optional[str] = None
    row_index: Optional[int] = None
    field: Optional[str] = None
    details: Optional[str] = None
    suggestion: Optional[str] = None
    timestamp: datetime = dataclasses.field(default_factory=datetime.now)
    id: str = dataclasses.field(default_factory=generate_uuid)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "severity": self.severity.value,
            "file_path": self.file_path,
            "row_index": self.row_index,
            "field": self.field,
            "message": self.message,
            "details": self.details,
            "suggestion": self.suggestion,
            "timestamp": self.timestamp.isoformat()
        }
