"""
Data Transformer for Battery Time Series.

This module turns raw parser output into StandardBatteryData: one
timestamp-ordered series per bank with zero-coerced bank aggregates,
index-aligned cell lists, per-bank statistics and a quality summary.

Quality scores, each in [0, 1] and rounded to 4 decimals:

    completeness  valid records / total records
    accuracy      non-null cell values inside their validation range / non-null cell values
    consistency   non-null cell slots / all cell slots

Each score is 0 when its denominator is 0.
"""

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from bess_converter.core.config import AppConfig, ValidationErrorPolicy
from bess_converter.core.logging import LoggerMixin
from bess_converter.utils.helpers import calculate_statistics, mean_of, parse_time_string
from .error_handler import ErrorContext, ErrorHandler
from .exceptions import DataTransformError, DataValidationError
from .models import (
    BankData, BankStatistics, BankTimeSeries, CellData, DataType, Project1RawData,
    Project1Row, Project2RawData, Project2Row, ProjectSummary, ProjectType,
    StandardBatteryData, TimeRange, TimeSeriesPoint
)

RangeViolation = Tuple[str, int, float, Tuple[float, float]]


def _zero(value: Optional[float]) -> float:
    return 0.0 if value is None else value


def _first_present(*values: Optional[float]) -> Optional[float]:
    for value in values:
        if value is not None:
            return value
    return None


def normalize_cells(values: Optional[Sequence[Optional[float]]], cell_count: int) -> List[Optional[float]]:
    """Copy of values truncated or None-padded to exactly cell_count slots."""
    cells = list(values or [])[:cell_count]
    cells.extend([None] * (cell_count - len(cells)))
    return cells


def _ratio(numerator: int, denominator: int) -> float:
    return round(numerator / denominator, 4) if denominator else 0.0


class DataTransformer(LoggerMixin):
    """Builds standardized time series from Project1/Project2 raw data."""

    def __init__(self, config: Optional[AppConfig] = None, error_handler: Optional[ErrorHandler] = None):
        config = config or AppConfig()
        self.config = config
        self.error_handler = error_handler or ErrorHandler(config.error_handling)

    # ------------------------------------------------------------------
    # Project1
    # ------------------------------------------------------------------

    def transform_project_one_data(self, raw_data: Project1RawData) -> StandardBatteryData:
        """
        Transform one Project1 bank file.

        Args:
            raw_data: Parser output for a single BankNN file

        Returns:
            Standardized data with exactly one bank
        """
        metadata = raw_data.metadata
        cell_count = self.config.project1.cell_count
        points: List[TimeSeriesPoint] = []
        valid = 0
        stopped = False

        for row_index, row in enumerate(raw_data.rows, start=1):
            try:
                point = self._project_one_point(row, cell_count)
            except Exception as e:
                if not self._row_failed(e, metadata.file_path, row_index):
                    stopped = True
                    break
                continue

            keep, proceed = self._check_point(point, metadata.file_path, row_index)
            if keep:
                points.append(point)
                valid += 1
            if not proceed:
                stopped = True
                break

        points.sort(key=lambda p: p.timestamp)
        bank = BankTimeSeries(
            bank_id=metadata.bank_id,
            data_points=points,
            statistics=self.calculate_bank_statistics(points)
        )

        data = StandardBatteryData(
            project_id=f"project1-{metadata.system_id}-{metadata.bank_id}",
            project_type=ProjectType.PROJECT1,
            system_id=metadata.system_id,
            time_range=self._time_range(points, [metadata.time_range]),
            banks=[bank],
            summary=self.build_summary(
                points, total_records=len(raw_data.rows), valid_records=valid, aborted=stopped
            )
        )
        self.logger.info(
            f"Transformed {data.project_id}: {valid}/{len(raw_data.rows)} rows into {len(points)} points"
        )
        return data

    def _project_one_point(self, row: Project1Row, cell_count: int) -> TimeSeriesPoint:
        timestamp = parse_time_string(row.timestamp, self.config.project1.time_format)
        voltage = _zero(row.total_voltage)
        current = _zero(row.total_current)
        temperatures = normalize_cells(row.temperatures, cell_count)
        return TimeSeriesPoint(
            timestamp=timestamp,
            bank_data=BankData(
                voltage=voltage,
                current=current,
                soc=_zero(row.soc),
                soh=_zero(row.soh),
                power=voltage * current,
                temperature=_zero(mean_of(temperatures))
            ),
            cell_data=CellData(
                voltages=normalize_cells(row.voltages, cell_count),
                temperatures=temperatures,
                socs=normalize_cells(row.socs, cell_count),
                sohs=normalize_cells(row.sohs, cell_count)
            )
        )

    # ------------------------------------------------------------------
    # Project2
    # ------------------------------------------------------------------

    def transform_project_two_data(self, raw_data_list: Sequence[Project2RawData]) -> StandardBatteryData:
        """
        Merge the per-data-type datasets of one group into a single series.

        Rows are aligned on their parsed timestamp. A timestamp missing from
        one data type still yields a point, with None cell slots for that type.

        Args:
            raw_data_list: Parser outputs for voltage/temperature/soc/state files

        Returns:
            Standardized data with one '<group>-combined' bank

        Raises:
            DataTransformError: If the list is empty or spans several groups
        """
        if not raw_data_list:
            raise DataTransformError("No Project2 datasets to transform")

        group_ids = {raw.metadata.group_id for raw in raw_data_list}
        if len(group_ids) > 1:
            raise DataTransformError(f"Project2 datasets span several groups: {sorted(group_ids)}")
        group_id = group_ids.pop()

        total = sum(len(raw.rows) for raw in raw_data_list)
        time_format = self.config.project2.time_format
        cell_count = self.config.project2.cell_count

        aligned: Dict[datetime, Dict[DataType, Project2Row]] = {}
        origins: Dict[datetime, Tuple[str, int]] = {}
        stopped = False

        for raw in raw_data_list:
            data_type = raw.metadata.data_type
            for row_index, row in enumerate(raw.rows, start=1):
                try:
                    timestamp = parse_time_string(row.datetime, time_format)
                except ValueError as e:
                    if not self._row_failed(e, raw.metadata.file_path, row_index):
                        stopped = True
                        break
                    continue

                by_type = aligned.setdefault(timestamp, {})
                if data_type in by_type:
                    self.logger.debug(f"Duplicate {data_type.value} row at {timestamp} in {raw.metadata.file_path}")
                    continue
                by_type[data_type] = row
                origins.setdefault(timestamp, (raw.metadata.file_path, row_index))
            if stopped:
                break

        points: List[TimeSeriesPoint] = []
        valid = 0
        if not stopped:
            for timestamp in sorted(aligned):
                by_type = aligned[timestamp]
                file_path, row_index = origins[timestamp]
                point = self._project_two_point(timestamp, by_type, cell_count)
                keep, proceed = self._check_point(point, file_path, row_index)
                if keep:
                    points.append(point)
                    valid += len(by_type)
                if not proceed:
                    stopped = True
                    break

        bank = BankTimeSeries(
            bank_id=f"{group_id}-combined",
            data_points=points,
            statistics=self.calculate_bank_statistics(points)
        )
        data = StandardBatteryData(
            project_id=f"project2-{group_id}",
            project_type=ProjectType.PROJECT2,
            group_id=group_id,
            time_range=self._time_range(points, [raw.metadata.time_range for raw in raw_data_list]),
            banks=[bank],
            summary=self.build_summary(points, total_records=total, valid_records=valid, aborted=stopped)
        )
        self.logger.info(
            f"Transformed {data.project_id}: {len(raw_data_list)} datasets, "
            f"{valid}/{total} rows into {len(points)} points"
        )
        return data

    @staticmethod
    def _project_two_point(timestamp: datetime,
                           by_type: Dict[DataType, Project2Row],
                           cell_count: int) -> TimeSeriesPoint:
        voltage_row = by_type.get(DataType.VOLTAGE)
        state_row = by_type.get(DataType.STATE)
        soc_row = by_type.get(DataType.SOC)
        temperature_row = by_type.get(DataType.TEMPERATURE)

        voltage = _zero(_first_present(
            voltage_row.bank_vol if voltage_row else None,
            state_row.bank_vol if state_row else None
        ))
        current = _zero(_first_present(
            voltage_row.bank_cur if voltage_row else None,
            state_row.bank_cur if state_row else None
        ))
        soc = _first_present(
            mean_of(soc_row.values) if soc_row else None,
            state_row.bank_soc if state_row else None
        )
        temperatures = normalize_cells(temperature_row.values if temperature_row else None, cell_count)

        return TimeSeriesPoint(
            timestamp=timestamp,
            bank_data=BankData(
                voltage=voltage,
                current=current,
                soc=_zero(soc),
                soh=_zero(state_row.bank_soh if state_row else None),
                power=voltage * current,
                temperature=_zero(mean_of(temperatures))
            ),
            cell_data=CellData(
                voltages=normalize_cells(voltage_row.values if voltage_row else None, cell_count),
                temperatures=temperatures,
                socs=normalize_cells(soc_row.values if soc_row else None, cell_count),
                sohs=[None] * cell_count
            )
        )

    # ------------------------------------------------------------------
    # Merge and validation
    # ------------------------------------------------------------------

    def merge_time_series_data(self, datasets: Sequence[StandardBatteryData]) -> StandardBatteryData:
        """
        Merge standardized datasets of one project.

        Banks sharing a bank id are concatenated and re-sorted; statistics
        and the summary are recomputed from the merged points, record counts
        are summed.

        Raises:
            DataTransformError: If the list is empty or mixes projects
        """
        if not datasets:
            raise DataTransformError("No datasets to merge")

        project_types = {data.project_type for data in datasets}
        owners = {(data.system_id, data.group_id) for data in datasets}
        if len(project_types) > 1 or len(owners) > 1:
            raise DataTransformError(
                "Cannot merge datasets from different projects",
                {"project_types": sorted(t.value for t in project_types), "owners": sorted(map(str, owners))}
            )

        project_type = project_types.pop()
        system_id, group_id = owners.pop()

        bank_points: Dict[str, List[TimeSeriesPoint]] = {}
        for data in datasets:
            for bank in data.banks:
                bank_points.setdefault(bank.bank_id, []).extend(bank.data_points)

        banks = []
        all_points: List[TimeSeriesPoint] = []
        for bank_id, points in bank_points.items():
            points = sorted(points, key=lambda p: p.timestamp)
            all_points.extend(points)
            banks.append(BankTimeSeries(
                bank_id=bank_id,
                data_points=points,
                statistics=self.calculate_bank_statistics(points)
            ))

        project_ids = {data.project_id for data in datasets}
        if len(project_ids) == 1:
            project_id = project_ids.pop()
        else:
            project_id = f"{project_type.value}-{system_id or group_id}"

        merged = StandardBatteryData(
            project_id=project_id,
            project_type=project_type,
            system_id=system_id,
            group_id=group_id,
            time_range=self._time_range(all_points, [data.time_range for data in datasets]),
            banks=banks,
            summary=self.build_summary(
                all_points,
                total_records=sum(data.summary.total_records for data in datasets),
                valid_records=sum(data.summary.valid_records for data in datasets)
            )
        )
        self.logger.info(f"Merged {len(datasets)} datasets into {project_id} with {len(banks)} banks")
        return merged

    def validate_transform_result(self,
                                  data: StandardBatteryData,
                                  expected_type: Optional[Union[ProjectType, str]] = None) -> bool:
        """
        Structural acceptance check for standardized data.

        Never raises; any violation is logged and reported as False.
        """
        try:
            if not data.project_id:
                self.logger.warning("Transform result has no project id")
                return False

            if not isinstance(data.project_type, ProjectType):
                self.logger.warning(f"Unknown project type: {data.project_type!r}")
                return False

            if expected_type is not None and data.project_type != ProjectType(expected_type):
                self.logger.warning(
                    f"{data.project_id} has project type {data.project_type.value}, expected {expected_type}"
                )
                return False

            if data.project_type == ProjectType.PROJECT1 and not data.system_id:
                self.logger.warning(f"{data.project_id} has no system id")
                return False
            if data.project_type == ProjectType.PROJECT2 and not data.group_id:
                self.logger.warning(f"{data.project_id} has no group id")
                return False

            if not data.banks:
                self.logger.warning(f"{data.project_id} has no banks")
                return False

            for bank in data.banks:
                timestamps = [point.timestamp for point in bank.data_points]
                if any(later < earlier for earlier, later in zip(timestamps, timestamps[1:])):
                    self.logger.warning(f"{data.project_id}/{bank.bank_id} is not ordered by timestamp")
                    return False

            return True

        except Exception as e:
            self.logger.error(f"Transform result validation failed: {e}")
            return False

    # ------------------------------------------------------------------
    # Statistics and quality
    # ------------------------------------------------------------------

    @staticmethod
    def calculate_bank_statistics(points: Sequence[TimeSeriesPoint]) -> BankStatistics:
        stats = {}
        for name in ("voltage", "current", "soc", "soh", "temperature"):
            series = calculate_statistics(getattr(p.bank_data, name) for p in points)
            stats[f"avg_{name}"] = series["avg"]
            stats[f"min_{name}"] = series["min"]
            stats[f"max_{name}"] = series["max"]
        return BankStatistics(**stats)

    def build_summary(self,
                      points: Sequence[TimeSeriesPoint],
                      total_records: int,
                      valid_records: int,
                      aborted: bool = False) -> ProjectSummary:
        ranges = self._cell_ranges()
        slots = present = in_range = 0
        for point in points:
            for name, values in point.cell_data.arrays().items():
                low, high = ranges[name]
                slots += len(values)
                for value in values:
                    if value is None:
                        continue
                    present += 1
                    if low <= value <= high:
                        in_range += 1

        return ProjectSummary(
            total_records=total_records,
            valid_records=valid_records,
            error_records=total_records - valid_records,
            completeness_score=_ratio(valid_records, total_records),
            accuracy_score=_ratio(in_range, present),
            consistency_score=_ratio(present, slots),
            aborted=aborted
        )

    # ------------------------------------------------------------------
    # Row-level error routing
    # ------------------------------------------------------------------

    def _row_failed(self, error: Exception, file_path: str, row_index: int) -> bool:
        """Report a row that could not be transformed; True to keep going."""
        decision = self.error_handler.handle_row_error(
            error,
            ErrorContext(operation="transform_row", file_path=file_path, row_index=row_index)
        )
        return decision.should_continue

    def _check_point(self, point: TimeSeriesPoint, file_path: str, row_index: int) -> Tuple[bool, bool]:
        """Range-check a point; returns (keep the point, keep going)."""
        violation = self._find_range_violation(point)
        if violation is None:
            return True, True

        name, index, value, (low, high) = violation
        error = DataValidationError(
            f"Value {value} of {name}[{index}] outside range [{low}, {high}]",
            {"field": name, "cell": index + 1, "value": value}
        )
        decision = self.error_handler.handle_validation_error(
            error,
            ErrorContext(
                operation="validate_row",
                file_path=file_path,
                row_index=row_index,
                column_name=f"{name}[{index}]",
                data_value=value
            )
        )
        if not decision.should_continue:
            return False, False
        if self.error_handler.strategy.on_validation_error == ValidationErrorPolicy.SKIP_DATA:
            return False, True
        return True, True

    def _find_range_violation(self, point: TimeSeriesPoint) -> Optional[RangeViolation]:
        ranges = self._cell_ranges()
        for name, values in point.cell_data.arrays().items():
            low, high = ranges[name]
            for index, value in enumerate(values):
                if value is not None and not low <= value <= high:
                    return name, index, value, (low, high)
        return None

    def _cell_ranges(self) -> Dict[str, Tuple[float, float]]:
        validation = self.config.validation
        return {
            "voltages": validation.voltage_range,
            "temperatures": validation.temperature_range,
            "socs": validation.soc_range,
            "sohs": validation.soh_range,
        }

    @staticmethod
    def _time_range(points: Sequence[TimeSeriesPoint], fallbacks: Iterable[Optional[TimeRange]]) -> TimeRange:
        if points:
            timestamps = [point.timestamp for point in points]
            return TimeRange(start=min(timestamps), end=max(timestamps))
        ranges = [r for r in fallbacks if r is not None]
        if ranges:
            return TimeRange(start=min(r.start for r in ranges), end=max(r.end for r in ranges))
        now = datetime.now()
        return TimeRange(start=now, end=now)
