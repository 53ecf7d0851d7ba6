"""
Test configuration and fixtures.
"""
import csv
import pytest
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Optional

from bess_converter.core.config import (
    AppConfig, ErrorHandlingStrategy, PipelineConfig, Project1Config, Project2Config
)
from bess_converter.conversion.error_handler import ErrorHandler

CELLS = 4


def project1_headers(cells: int = CELLS) -> List[str]:
    headers = ["时间", "总电压", "总电流", "SOC", "SOH"]
    for prefix in ("V", "T", "SOC", "SOH"):
        headers.extend(f"{prefix}{i}" for i in range(1, cells + 1))
    return headers


def project2_headers(data_type: str, cells: int = CELLS) -> List[str]:
    headers = ["devInstCode", "groupNo", "datetime"]
    if data_type == "voltage":
        headers += ["BankVol", "BankCur"] + [f"vol{i}" for i in range(1, cells + 1)]
    elif data_type == "state":
        headers += ["BankVol", "BankCur", "BankSoc", "BankSoh"]
    elif data_type == "soc":
        headers += [f"soc{i}" for i in range(1, cells + 1)]
    elif data_type == "temperature":
        headers += [f"temp{i}" for i in range(1, cells + 1)]
    return headers


def write_csv(path: Path, headers: List[str], rows: List[Dict[str, Any]],
              encoding: str = "utf-8-sig") -> Path:
    """Write rows (dicts keyed by header) to a CSV file; missing keys become empty cells."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding=encoding, newline="") as f:
        writer = csv.writer(f)
        writer.writerow(headers)
        for row in rows:
            writer.writerow(["" if row.get(h) is None else row.get(h) for h in headers])
    return path


def project1_row(timestamp: str, voltage: Any = 700, current: Any = 10,
                 cells: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    row = {"时间": timestamp, "总电压": voltage, "总电流": current, "SOC": 55, "SOH": 98}
    row.update({"V1": 3.3, "V2": 3.4, "T1": 25, "T2": 26.5, "SOC1": 50, "SOC2": 51, "SOH1": 99, "SOH2": 98})
    row.update(cells or {})
    return row


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def app_config() -> AppConfig:
    """Small-cell configuration with fast retries."""
    return AppConfig(
        project1=Project1Config(cell_count=CELLS),
        project2=Project2Config(cell_count=CELLS),
        error_handling=ErrorHandlingStrategy(retry_delay=0.01),
        pipeline=PipelineConfig(max_workers=2)
    )


@pytest.fixture
def error_handler(app_config) -> ErrorHandler:
    return ErrorHandler(app_config.error_handling)


@pytest.fixture
def project1_csv():
    """Factory writing a Project1 bank file."""
    def make(path: Path, rows: List[Dict[str, Any]], cells: int = CELLS) -> Path:
        return write_csv(path, project1_headers(cells), rows)
    return make


@pytest.fixture
def project2_csv():
    """Factory writing a Project2 file of one data type."""
    def make(path: Path, data_type: str, rows: List[Dict[str, Any]], cells: int = CELLS) -> Path:
        return write_csv(path, project2_headers(data_type, cells), rows)
    return make


@pytest.fixture
def project1_tree(temp_dir, project1_csv) -> Path:
    """Project1 export with two banks in 2# and one bank in 14#."""
    base = temp_dir / "project1"
    project1_csv(base / "2#" / "Bank01_20240105.csv", [
        project1_row("01/05/2024 08:01"),
        project1_row("01/05/2024 08:00"),
    ])
    project1_csv(base / "2#" / "Bank02_20240105.csv", [
        project1_row("01/05/2024 08:00", voltage=710),
    ])
    project1_csv(base / "14#" / "Bank1_20240106.csv", [
        project1_row("01/06/2024 09:00"),
    ])
    return base


@pytest.fixture
def project2_tree(temp_dir, project2_csv) -> Path:
    """Project2 export for group1 with all four data types on one day."""
    base = temp_dir / "project2"
    group = base / "group1"
    common = {"devInstCode": "DEV-1", "groupNo": 1}
    project2_csv(group / "voltage" / "vol1_2024_01_05_080000.csv", "voltage", [
        {**common, "datetime": "2024-01-05 08:00:00", "BankVol": 700, "BankCur": -5,
         "vol1": 3.3, "vol2": 3.4},
        {**common, "datetime": "2024-01-05 08:01:00", "BankVol": 701, "BankCur": -5,
         "vol1": 3.3, "vol2": 3.4},
    ])
    project2_csv(group / "soc" / "soc1_2024_01_05_080000.csv", "soc", [
        {**common, "datetime": "2024-01-05 08:00:00", "soc1": 50, "soc2": 60},
    ])
    project2_csv(group / "temperature" / "temp1_2024_01_05_080000.csv", "temperature", [
        {**common, "datetime": "2024-01-05 08:00:00", "temp1": 20, "temp2": 22},
    ])
    project2_csv(group / "state" / "state_2024_01_05_080000.csv", "state", [
        {**common, "datetime": "2024-01-05 08:00:00", "BankVol": 699, "BankCur": -4,
         "BankSoc": 70, "BankSoh": 97},
    ])
    return base


@pytest.fixture
def project1_row_factory():
    """Factory for one Project1 row dict with two populated cells."""
    return project1_row
