"""
Data Quality Validation.

This module checks standardized battery data once it has been built:
structural and range validation with time-series continuity warnings,
anomaly detection per bank, and a per-dataset quality report.

Anomalies:

    voltage_outlier      cell voltage beyond the voltage range widened by half its span
    temperature_outlier  bank temperature more than two standard deviations from the bank mean
    soc_outlier          bank SOC outside the SOC range
    soh_outlier          bank SOH outside the SOH range
    missing_data         bank voltage, SOC or SOH left at its zero placeholder
    time_gap             more than two hours between consecutive points

Bank current is not checked for missing data; an idle bank reports 0 A.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pandas as pd

from bess_converter.core.config import ValidationConfig
from bess_converter.core.logging import LoggerMixin
from bess_converter.utils.helpers import mean_of
from .models import BankTimeSeries, ErrorSeverity, StandardBatteryData, TimeSeriesPoint

# Seconds between consecutive points
TIME_GAP_SECONDS = 2 * 60 * 60
LONG_TIME_GAP_SECONDS = 24 * 60 * 60
TIMELINESS_GAP_SECONDS = 60 * 60

VOLTAGE_MARGIN_RATIO = 0.5
TEMPERATURE_SIGMA = 2.0
MAX_ERROR_RATE = 0.1

_MISSING_BANK_FIELDS = ("voltage", "soc", "soh")
_COMPLETENESS_BANK_FIELDS = ("voltage", "current", "soc", "soh", "temperature")


class AnomalyType(str, Enum):
    """Kinds of detected anomalies."""
    VOLTAGE_OUTLIER = "voltage_outlier"
    TEMPERATURE_OUTLIER = "temperature_outlier"
    SOC_OUTLIER = "soc_outlier"
    SOH_OUTLIER = "soh_outlier"
    MISSING_DATA = "missing_data"
    TIME_GAP = "time_gap"


class ValidationIssueType(str, Enum):
    """Kinds of validation findings."""
    MISSING_FIELD = "missing_field"
    SUSPICIOUS_VALUE = "suspicious_value"
    TIME_GAP = "time_gap"


@dataclass
class ValidationIssue:
    type: ValidationIssueType
    field_name: str
    message: str
    value: Any = None
    bank_id: Optional[str] = None
    row_index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "field": self.field_name,
            "message": self.message,
            "value": self.value,
            "bank_id": self.bank_id,
            "row_index": self.row_index
        }


@dataclass
class DataValidationResult:
    """Outcome of validate_data()."""
    is_valid: bool
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)
    total_records: int = 0
    valid_records: int = 0
    error_rate: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "errors": [issue.to_dict() for issue in self.errors],
            "warnings": [issue.to_dict() for issue in self.warnings],
            "statistics": {
                "total_records": self.total_records,
                "valid_records": self.valid_records,
                "error_rate": self.error_rate
            }
        }


@dataclass
class Anomaly:
    type: AnomalyType
    severity: ErrorSeverity
    timestamp: datetime
    bank_id: str
    message: str
    value: Optional[float] = None
    expected_range: Optional[Tuple[float, float]] = None
    cell_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "severity": self.severity.value,
            "timestamp": self.timestamp.isoformat(),
            "bank_id": self.bank_id,
            "cell_id": self.cell_id,
            "value": self.value,
            "expected_range": list(self.expected_range) if self.expected_range else None,
            "message": self.message
        }


@dataclass
class AnomalyReport:
    anomalies: List[Anomaly] = field(default_factory=list)

    @property
    def total_anomalies(self) -> int:
        return len(self.anomalies)

    def severity_distribution(self) -> Dict[str, int]:
        distribution = {severity.value: 0 for severity in ErrorSeverity}
        for anomaly in self.anomalies:
            distribution[anomaly.severity.value] += 1
        return distribution

    def to_dict(self) -> Dict[str, Any]:
        return {
            "anomalies": [anomaly.to_dict() for anomaly in self.anomalies],
            "summary": {
                "total_anomalies": self.total_anomalies,
                "severity_distribution": self.severity_distribution()
            }
        }


@dataclass
class QualityReport:
    """Quality scores of one dataset, each in [0, 1]."""
    project_id: str
    overall_score: float
    completeness: float
    accuracy: float
    consistency: float
    timeliness: float
    anomaly_report: AnomalyReport = field(default_factory=AnomalyReport)
    recommendations: List[str] = field(default_factory=list)

    @property
    def anomaly_count(self) -> int:
        return self.anomaly_report.total_anomalies

    def to_dict(self) -> Dict[str, Any]:
        return {
            "project_id": self.project_id,
            "overall_score": self.overall_score,
            "completeness": self.completeness,
            "accuracy": self.accuracy,
            "consistency": self.consistency,
            "timeliness": self.timeliness,
            "anomaly_count": self.anomaly_count,
            "severity_distribution": self.anomaly_report.severity_distribution(),
            "recommendations": list(self.recommendations)
        }


def interval_seconds(points: Sequence[TimeSeriesPoint]) -> pd.Series:
    """Seconds between consecutive points, indexed by the later point's position."""
    if len(points) < 2:
        return pd.Series(dtype=float)
    times = pd.Series(pd.to_datetime([point.timestamp for point in points]))
    return times.diff().dt.total_seconds().iloc[1:]


def _in_range(value: Optional[float], bounds: Tuple[float, float]) -> bool:
    return value is not None and bounds[0] <= value <= bounds[1]


def _severity_by_range(deviation: float, span: float) -> ErrorSeverity:
    ratio = deviation / span
    if ratio > 3:
        return ErrorSeverity.CRITICAL
    if ratio > 2:
        return ErrorSeverity.HIGH
    if ratio > 1:
        return ErrorSeverity.MEDIUM
    return ErrorSeverity.LOW


def _severity_by_deviation(deviation: float, threshold: float) -> ErrorSeverity:
    ratio = deviation / threshold
    if ratio > 3:
        return ErrorSeverity.CRITICAL
    if ratio > 2:
        return ErrorSeverity.HIGH
    if ratio > 1.5:
        return ErrorSeverity.MEDIUM
    return ErrorSeverity.LOW


class DataValidator(LoggerMixin):
    """Validates standardized data and scores its quality."""

    def __init__(self, config: Optional[ValidationConfig] = None):
        self.config = config or ValidationConfig()

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_data(self, data: StandardBatteryData) -> DataValidationResult:
        """
        Validate structure, value ranges and time-series continuity.

        A point is a valid record when none of its range checks fail. The
        data is valid when there are no structural errors and fewer than
        10% of the records are invalid.
        """
        errors = self._check_structure(data)
        warnings: List[ValidationIssue] = []
        total = valid = 0

        for bank in data.banks:
            if not bank.data_points:
                errors.append(ValidationIssue(
                    ValidationIssueType.MISSING_FIELD, "data_points",
                    f"Bank {bank.bank_id} has no data points", bank_id=bank.bank_id
                ))
                continue

            for index, point in enumerate(bank.data_points):
                total += 1
                issues = self._check_ranges(point, bank.bank_id, index)
                warnings.extend(issues)
                if not issues:
                    valid += 1
            warnings.extend(self._check_continuity(bank))

        error_rate = round((total - valid) / total, 4) if total else 0.0
        result = DataValidationResult(
            is_valid=not errors and error_rate < MAX_ERROR_RATE,
            errors=errors,
            warnings=warnings,
            total_records=total,
            valid_records=valid,
            error_rate=error_rate
        )
        self.logger.info(
            f"Validated {data.project_id}: {'valid' if result.is_valid else 'invalid'}, "
            f"{len(errors)} errors, {len(warnings)} warnings"
        )
        return result

    @staticmethod
    def _check_structure(data: StandardBatteryData) -> List[ValidationIssue]:
        errors = []
        if not data.project_id:
            errors.append(ValidationIssue(ValidationIssueType.MISSING_FIELD, "project_id", "Missing project id"))
        if not data.project_type:
            errors.append(ValidationIssue(ValidationIssueType.MISSING_FIELD, "project_type", "Missing project type"))
        if not data.banks:
            errors.append(ValidationIssue(ValidationIssueType.MISSING_FIELD, "banks", "Dataset has no banks"))
        return errors

    def _check_ranges(self, point: TimeSeriesPoint, bank_id: str, index: int) -> List[ValidationIssue]:
        issues = []

        def suspicious(field_name: str, value: Any, bounds: Tuple[float, float], what: str) -> None:
            issues.append(ValidationIssue(
                ValidationIssueType.SUSPICIOUS_VALUE, field_name,
                f"{what} outside expected range [{bounds[0]}, {bounds[1]}]",
                value=value, bank_id=bank_id, row_index=index
            ))

        voltage_range = self.config.voltage_range
        outside = [v for v in point.cell_data.voltages if v is not None and not _in_range(v, voltage_range)]
        if outside:
            suspicious("voltages", outside[0], voltage_range, f"{len(outside)} cell voltage(s)")

        temperature = mean_of(point.cell_data.temperatures)
        if temperature is not None and not _in_range(temperature, self.config.temperature_range):
            suspicious("temperature", temperature, self.config.temperature_range, "Temperature")

        if not _in_range(point.bank_data.soc, self.config.soc_range):
            suspicious("soc", point.bank_data.soc, self.config.soc_range, "SOC")
        if not _in_range(point.bank_data.soh, self.config.soh_range):
            suspicious("soh", point.bank_data.soh, self.config.soh_range, "SOH")
        return issues

    @staticmethod
    def _check_continuity(bank: BankTimeSeries) -> List[ValidationIssue]:
        intervals = interval_seconds(bank.data_points)
        return [
            ValidationIssue(
                ValidationIssueType.TIME_GAP, "timestamp",
                f"Time gap of {seconds / 3600:.1f} h in {bank.bank_id}",
                value=seconds, bank_id=bank.bank_id, row_index=int(index)
            )
            for index, seconds in intervals.items()
            if seconds > TIME_GAP_SECONDS
        ]

    # ------------------------------------------------------------------
    # Anomaly detection
    # ------------------------------------------------------------------

    def detect_anomalies(self, points: Sequence[TimeSeriesPoint], bank_id: str = "bank") -> AnomalyReport:
        """
        Detect anomalies in one bank's time series.

        Args:
            points: Timestamp-ordered points of a single bank
            bank_id: Bank the anomalies are attributed to
        """
        report = AnomalyReport()
        report.anomalies.extend(self._voltage_anomalies(points, bank_id))
        report.anomalies.extend(self._temperature_anomalies(points, bank_id))
        report.anomalies.extend(self._state_anomalies(points, bank_id))
        report.anomalies.extend(self._missing_data(points, bank_id))
        report.anomalies.extend(self._time_gaps(points, bank_id))

        if report.anomalies:
            self.logger.debug(f"{bank_id}: {report.total_anomalies} anomalies {report.severity_distribution()}")
        return report

    def _voltage_anomalies(self, points: Sequence[TimeSeriesPoint], bank_id: str) -> List[Anomaly]:
        low, high = self.config.voltage_range
        span = (high - low) or 1.0
        margin = span * VOLTAGE_MARGIN_RATIO
        anomalies = []

        for point in points:
            # One anomaly per point, for the cell furthest from the range
            worst: Optional[Tuple[float, int, float]] = None
            outliers = 0
            for cell_index, voltage in enumerate(point.cell_data.voltages):
                if voltage is None or low - margin <= voltage <= high + margin:
                    continue
                outliers += 1
                deviation = min(abs(voltage - low), abs(voltage - high))
                if worst is None or deviation > worst[0]:
                    worst = (deviation, cell_index, voltage)

            if worst is None:
                continue
            deviation, cell_index, voltage = worst
            anomalies.append(Anomaly(
                type=AnomalyType.VOLTAGE_OUTLIER,
                severity=_severity_by_range(deviation, span),
                timestamp=point.timestamp,
                bank_id=bank_id,
                cell_id=cell_index + 1,
                value=voltage,
                expected_range=(low, high),
                message=f"Cell {cell_index + 1} voltage {voltage} V outside [{low}, {high}] V "
                        f"({outliers} outlier cell(s))"
            ))
        return anomalies

    def _temperature_anomalies(self, points: Sequence[TimeSeriesPoint], bank_id: str) -> List[Anomaly]:
        readings = []
        for point in points:
            temperature = mean_of(point.cell_data.temperatures)
            if temperature is not None:
                readings.append((point, temperature))
        if len(readings) < 2:
            return []

        series = pd.Series([temperature for _, temperature in readings], dtype=float)
        mean = float(series.mean())
        threshold = TEMPERATURE_SIGMA * float(series.std(ddof=0))
        if threshold == 0:
            return []

        anomalies = []
        for point, temperature in readings:
            deviation = abs(temperature - mean)
            if deviation > threshold:
                anomalies.append(Anomaly(
                    type=AnomalyType.TEMPERATURE_OUTLIER,
                    severity=_severity_by_deviation(deviation, threshold),
                    timestamp=point.timestamp,
                    bank_id=bank_id,
                    value=temperature,
                    expected_range=(mean - threshold, mean + threshold),
                    message=f"Temperature {temperature:.2f} °C deviates {deviation:.2f} °C from the mean"
                ))
        return anomalies

    def _state_anomalies(self, points: Sequence[TimeSeriesPoint], bank_id: str) -> List[Anomaly]:
        checks = (
            (AnomalyType.SOC_OUTLIER, "soc", "SOC", self.config.soc_range),
            (AnomalyType.SOH_OUTLIER, "soh", "SOH", self.config.soh_range),
        )
        anomalies = []
        for point in points:
            for anomaly_type, name, label, bounds in checks:
                value = getattr(point.bank_data, name)
                if _in_range(value, bounds):
                    continue
                anomalies.append(Anomaly(
                    type=anomaly_type,
                    severity=ErrorSeverity.HIGH,
                    timestamp=point.timestamp,
                    bank_id=bank_id,
                    value=value,
                    expected_range=bounds,
                    message=f"{label} {value}% outside [{bounds[0]}, {bounds[1]}]"
                ))
        return anomalies

    @staticmethod
    def _missing_data(points: Sequence[TimeSeriesPoint], bank_id: str) -> List[Anomaly]:
        anomalies = []
        for point in points:
            missing = [name for name in _MISSING_BANK_FIELDS if getattr(point.bank_data, name) == 0.0]
            if not missing:
                continue
            anomalies.append(Anomaly(
                type=AnomalyType.MISSING_DATA,
                severity=ErrorSeverity.HIGH if len(missing) == len(_MISSING_BANK_FIELDS) else ErrorSeverity.MEDIUM,
                timestamp=point.timestamp,
                bank_id=bank_id,
                message=f"Missing bank fields: {', '.join(missing)}"
            ))
        return anomalies

    @staticmethod
    def _time_gaps(points: Sequence[TimeSeriesPoint], bank_id: str) -> List[Anomaly]:
        anomalies = []
        for index, seconds in interval_seconds(points).items():
            if seconds <= TIME_GAP_SECONDS:
                continue
            anomalies.append(Anomaly(
                type=AnomalyType.TIME_GAP,
                severity=ErrorSeverity.HIGH if seconds > LONG_TIME_GAP_SECONDS else ErrorSeverity.MEDIUM,
                timestamp=points[int(index)].timestamp,
                bank_id=bank_id,
                value=float(seconds),
                message=f"Time gap of {seconds / 3600:.1f} h"
            ))
        return anomalies

    # ------------------------------------------------------------------
    # Quality report
    # ------------------------------------------------------------------

    def generate_quality_report(self, data: StandardBatteryData) -> QualityReport:
        """Score completeness, accuracy, consistency and timeliness of a dataset."""
        anomaly_report = AnomalyReport()
        for bank in data.banks:
            anomaly_report.anomalies.extend(self.detect_anomalies(bank.data_points, bank.bank_id).anomalies)

        point_count = sum(len(bank.data_points) for bank in data.banks)
        completeness = self.check_data_completeness(data)
        consistency = self.check_data_consistency(data)
        accuracy = max(0.0, 1 - anomaly_report.total_anomalies / point_count) if point_count else 1.0
        timeliness = self._timeliness(data)

        report = QualityReport(
            project_id=data.project_id,
            overall_score=round((completeness + accuracy + consistency + timeliness) / 4, 4),
            completeness=round(completeness, 4),
            accuracy=round(accuracy, 4),
            consistency=round(consistency, 4),
            timeliness=round(timeliness, 4),
            anomaly_report=anomaly_report
        )
        report.recommendations = self._recommendations(report)

        self.logger.info(
            f"Quality of {data.project_id}: overall {report.overall_score:.2f}, "
            f"{report.anomaly_count} anomalies"
        )
        return report

    @staticmethod
    def check_data_completeness(data: StandardBatteryData) -> float:
        """Share of non-zero bank fields and non-null cell values."""
        total = present = 0
        for bank in data.banks:
            for point in bank.data_points:
                bank_values = [getattr(point.bank_data, name) for name in _COMPLETENESS_BANK_FIELDS]
                total += len(bank_values)
                present += sum(1 for value in bank_values if value)
                for values in point.cell_data.arrays().values():
                    total += len(values)
                    present += sum(1 for value in values if value is not None)
        return present / total if total else 0.0

    def check_data_consistency(self, data: StandardBatteryData) -> float:
        """Share of passed ordering and range checks; 0 without banks."""
        if not data.banks:
            return 0.0

        total = passed = 0
        for bank in data.banks:
            intervals = interval_seconds(bank.data_points)
            total += len(intervals)
            passed += int((intervals >= 0).sum())

            for point in bank.data_points:
                bank_data = point.bank_data
                results = (
                    all(_in_range(v, self.config.voltage_range)
                        for v in point.cell_data.voltages if v is not None),
                    _in_range(bank_data.temperature, self.config.temperature_range),
                    _in_range(bank_data.soc, self.config.soc_range),
                    _in_range(bank_data.soh, self.config.soh_range),
                )
                total += len(results)
                passed += sum(results)
        return passed / total if total else 1.0

    @staticmethod
    def _timeliness(data: StandardBatteryData) -> float:
        intervals = gaps = 0
        for bank in data.banks:
            seconds = interval_seconds(bank.data_points)
            intervals += len(seconds)
            gaps += int((seconds > TIMELINESS_GAP_SECONDS).sum())
        return max(0.0, 1 - gaps / intervals) if intervals else 1.0

    @staticmethod
    def _recommendations(report: QualityReport) -> List[str]:
        recommendations = []
        distribution = report.anomaly_report.severity_distribution()

        if report.completeness < 0.8:
            recommendations.append("Completeness is low; check that the data acquisition system is working")
        if report.accuracy < 0.9:
            recommendations.append("Many anomalies detected; check sensor calibration and data transfer")
        if report.consistency < 0.8:
            recommendations.append("Consistency is low; check data formats and configured ranges")
        if report.timeliness < 0.9:
            recommendations.append("Time gaps found; check the sampling interval and network stability")
        if distribution[ErrorSeverity.CRITICAL.value] > 0:
            recommendations.append("Critical anomalies found; inspect the affected equipment now")
        if distribution[ErrorSeverity.HIGH.value] > 5:
            recommendations.append("Many high-severity anomalies; schedule equipment maintenance")

        if not recommendations:
            recommendations.append("Data quality is good; keep the current acquisition and processing flow")
        return recommendations
