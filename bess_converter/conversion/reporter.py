"""
Conversion Reporting.

This module collects per-file outcomes, issued errors/warnings and resource
usage for a conversion run and condenses them into a ConversionReport with
quality scores, performance figures and recommendations.
"""

import json
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import psutil

from bess_converter.core.logging import LoggerMixin
from bess_converter.utils.helpers import format_duration, generate_uuid
from .exceptions import ReportError
from .models import (
    ConversionError, ConversionWarning, ConversionWarningType, ErrorSeverity, ProjectType
)
from .validator import AnomalyReport

# Records per second regarded as fully timely
EXPECTED_RECORDS_PER_SECOND = 1000
HIGH_MEMORY_MB = 1000


@dataclass
class ProcessedFile:
    file_path: str
    record_count: int
    valid_records: int
    invalid_records: int
    processing_time: float
    file_size: int = 0
    processed_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_path": self.file_path,
            "record_count": self.record_count,
            "valid_records": self.valid_records,
            "invalid_records": self.invalid_records,
            "processing_time": self.processing_time,
            "file_size": self.file_size,
            "processed_at": self.processed_at.isoformat()
        }


@dataclass
class SkippedFile:
    file_path: str
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"file_path": self.file_path, "reason": self.reason}


@dataclass
class FailedFile:
    file_path: str
    error_message: str
    retry_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_path": self.file_path,
            "error_message": self.error_message,
            "retry_count": self.retry_count
        }


@dataclass
class ReportSummary:
    processing_start_time: datetime
    processing_end_time: Optional[datetime] = None
    total_processing_time: float = 0.0
    total_files_scanned: int = 0
    total_files_processed: int = 0
    total_files_skipped: int = 0
    total_files_failed: int = 0
    total_records_processed: int = 0
    total_records_valid: int = 0
    total_records_invalid: int = 0

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.__dict__)
        data["processing_start_time"] = self.processing_start_time.isoformat()
        data["processing_end_time"] = (
            self.processing_end_time.isoformat() if self.processing_end_time else None
        )
        return data


@dataclass
class DataQualityMetrics:
    overall_quality_score: float = 0.0
    completeness_score: float = 0.0
    accuracy_score: float = 0.0
    consistency_score: float = 0.0
    timeliness_score: float = 0.0
    anomaly_count: int = 0
    critical_anomalies: int = 0
    high_severity_anomalies: int = 0
    detected_anomalies: int = 0
    anomaly_severity: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.__dict__)
        data["anomaly_severity"] = dict(self.anomaly_severity)
        return data


@dataclass
class PerformanceMetrics:
    average_file_processing_time: float = 0.0
    files_per_second: float = 0.0
    records_per_second: float = 0.0
    peak_memory_usage: float = 0.0
    total_memory_used: float = 0.0
    cpu_usage_percent: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


@dataclass
class ConversionReport:
    """Outcome of one conversion run."""
    report_id: str
    project_type: ProjectType
    summary: ReportSummary
    processed_files: List[ProcessedFile] = field(default_factory=list)
    skipped_files: List[SkippedFile] = field(default_factory=list)
    failed_files: List[FailedFile] = field(default_factory=list)
    data_quality: DataQualityMetrics = field(default_factory=DataQualityMetrics)
    performance: PerformanceMetrics = field(default_factory=PerformanceMetrics)
    errors: List[ConversionError] = field(default_factory=list)
    warnings: List[ConversionWarning] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "report_id": self.report_id,
            "project_type": self.project_type.value,
            "summary": self.summary.to_dict(),
            "file_processing": {
                "processed_files": [f.to_dict() for f in self.processed_files],
                "skipped_files": [f.to_dict() for f in self.skipped_files],
                "failed_files": [f.to_dict() for f in self.failed_files]
            },
            "data_quality": self.data_quality.to_dict(),
            "performance": self.performance.to_dict(),
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "recommendations": list(self.recommendations)
        }


@dataclass
class _PerformanceTracking:
    memory_samples: List[float] = field(default_factory=list)
    cpu_samples: List[float] = field(default_factory=list)


class ConversionReporter(LoggerMixin):
    """
    Thread-safe collector for conversion reports.

    Several reports can be open at once; each is addressed by the id
    returned from start_conversion().
    """

    def __init__(self):
        self._reports: Dict[str, ConversionReport] = {}
        self._tracking: Dict[str, _PerformanceTracking] = {}
        self._lock = threading.RLock()

    def start_conversion(self, project_type: Union[ProjectType, str]) -> str:
        """Open a new report and return its id."""
        report_id = generate_uuid()
        report = ConversionReport(
            report_id=report_id,
            project_type=ProjectType(project_type),
            summary=ReportSummary(processing_start_time=datetime.now())
        )
        with self._lock:
            self._reports[report_id] = report
            self._tracking[report_id] = _PerformanceTracking()
        self.logger.info(f"Conversion session started: {report_id} ({report.project_type.value})")
        return report_id

    def record_file_processed(self,
                              report_id: str,
                              file_path: Union[str, Path],
                              record_count: int,
                              valid_records: int,
                              processing_time: float,
                              file_size: int = 0) -> None:
        with self._lock:
            report = self._require(report_id)
            invalid = max(record_count - valid_records, 0)
            report.processed_files.append(ProcessedFile(
                file_path=str(file_path),
                record_count=record_count,
                valid_records=valid_records,
                invalid_records=invalid,
                processing_time=processing_time,
                file_size=file_size
            ))
            report.summary.total_files_processed += 1
            report.summary.total_records_processed += record_count
            report.summary.total_records_valid += valid_records
            report.summary.total_records_invalid += invalid

    def record_file_skipped(self, report_id: str, file_path: Union[str, Path], reason: str) -> None:
        with self._lock:
            report = self._require(report_id)
            report.skipped_files.append(SkippedFile(file_path=str(file_path), reason=reason))
            report.summary.total_files_skipped += 1
        self.logger.debug(f"Skipped {file_path}: {reason}")

    def record_file_failed(self,
                           report_id: str,
                           file_path: Union[str, Path],
                           error_message: str,
                           retry_count: int = 0) -> None:
        with self._lock:
            report = self._require(report_id)
            report.failed_files.append(FailedFile(
                file_path=str(file_path),
                error_message=error_message,
                retry_count=retry_count
            ))
            report.summary.total_files_failed += 1
        self.logger.warning(f"Failed {file_path} after {retry_count} retries: {error_message}")

    def record_error(self, report_id: str, error: ConversionError) -> None:
        with self._lock:
            self._require(report_id).errors.append(error)

    def record_warning(self, report_id: str, warning: ConversionWarning) -> None:
        with self._lock:
            self._require(report_id).warnings.append(warning)

    def record_anomalies(self, report_id: str, anomaly_report: AnomalyReport) -> None:
        """Add anomalies detected in an output dataset to the report."""
        with self._lock:
            quality = self._require(report_id).data_quality
            quality.detected_anomalies += anomaly_report.total_anomalies
            for severity, count in anomaly_report.severity_distribution().items():
                quality.anomaly_severity[severity] = quality.anomaly_severity.get(severity, 0) + count

    def record_performance_metrics(self,
                                   report_id: str,
                                   memory_mb: Optional[float] = None,
                                   cpu_percent: Optional[float] = None) -> None:
        """Record a resource sample; unset values are read from the current process."""
        if memory_mb is None or cpu_percent is None:
            process = psutil.Process()
            if memory_mb is None:
                memory_mb = process.memory_info().rss / (1024 * 1024)
            if cpu_percent is None:
                cpu_percent = process.cpu_percent(interval=None)

        with self._lock:
            report = self._require(report_id)
            tracking = self._tracking.setdefault(report_id, _PerformanceTracking())
            tracking.memory_samples.append(memory_mb)
            tracking.cpu_samples.append(cpu_percent)
            report.performance.total_memory_used = memory_mb
            report.performance.peak_memory_usage = max(report.performance.peak_memory_usage, memory_mb)
            report.performance.cpu_usage_percent = cpu_percent

    def finish_conversion(self, report_id: str) -> ConversionReport:
        """Close a report and compute its derived metrics."""
        with self._lock:
            report = self._require(report_id)
            summary = report.summary
            summary.processing_end_time = datetime.now()
            summary.total_processing_time = (
                summary.processing_end_time - summary.processing_start_time
            ).total_seconds()
            summary.total_files_scanned = (
                summary.total_files_processed + summary.total_files_skipped + summary.total_files_failed
            )

            self._calculate_performance_metrics(report, self._tracking.pop(report_id, None))
            self._calculate_data_quality_metrics(report)
            report.recommendations = self._generate_recommendations(report)

        self.logger.info(
            f"Conversion session finished: {report_id} in {format_duration(summary.total_processing_time)}"
        )
        return report

    def get_report(self, report_id: str) -> Optional[ConversionReport]:
        with self._lock:
            return self._reports.get(report_id)

    def discard_report(self, report_id: str) -> Optional[ConversionReport]:
        """Forget a report; the caller keeps whatever it still references."""
        with self._lock:
            self._tracking.pop(report_id, None)
            return self._reports.pop(report_id, None)

    def save_report_to_file(self, report: ConversionReport, file_path: Union[str, Path]) -> Path:
        """Write the report as JSON."""
        file_path = Path(file_path)
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(file_path, "w", encoding="utf-8") as f:
                json.dump(report.to_dict(), f, ensure_ascii=False, indent=2)
        except OSError as e:
            self.logger.error(f"Failed to save conversion report: {e}")
            raise ReportError(f"Failed to save report to {file_path}: {e}") from e

        self.logger.info(f"Conversion report saved to {file_path}")
        return file_path

    def generate_report_summary(self, report: ConversionReport) -> str:
        """Human-readable multi-line summary."""
        summary = report.summary
        quality = report.data_quality
        performance = report.performance

        success_rate = (
            summary.total_files_processed / summary.total_files_scanned * 100
            if summary.total_files_scanned else 0.0
        )
        validity_rate = (
            summary.total_records_valid / summary.total_records_processed * 100
            if summary.total_records_processed else 0.0
        )
        end_time = summary.processing_end_time.isoformat(sep=" ", timespec="seconds") \
            if summary.processing_end_time else "-"

        lines = [
            "=== CSV Conversion Report ===",
            f"Report ID: {report.report_id}",
            f"Project type: {report.project_type.value}",
            f"Period: {summary.processing_start_time.isoformat(sep=' ', timespec='seconds')} - {end_time}",
            f"Duration: {format_duration(summary.total_processing_time)}",
            "",
            "Files:",
            f"- Scanned: {summary.total_files_scanned}",
            f"- Processed: {summary.total_files_processed} ({success_rate:.1f}%)",
            f"- Skipped: {summary.total_files_skipped}",
            f"- Failed: {summary.total_files_failed}",
            "",
            "Records:",
            f"- Processed: {summary.total_records_processed}",
            f"- Valid: {summary.total_records_valid} ({validity_rate:.1f}%)",
            f"- Invalid: {summary.total_records_invalid}",
            "",
            "Data quality:",
            f"- Overall: {quality.overall_quality_score:.2f}",
            f"- Completeness: {quality.completeness_score:.2f}",
            f"- Accuracy: {quality.accuracy_score:.2f}",
            f"- Consistency: {quality.consistency_score:.2f}",
            f"- Timeliness: {quality.timeliness_score:.2f}",
            f"- Anomalies: {quality.anomaly_count} "
            f"(critical {quality.critical_anomalies}, high {quality.high_severity_anomalies})",
            "",
            "Performance:",
            f"- Average file time: {performance.average_file_processing_time:.3f}s",
            f"- Files/s: {performance.files_per_second:.2f}",
            f"- Records/s: {performance.records_per_second:.0f}",
            f"- Peak memory: {performance.peak_memory_usage:.2f} MB",
            "",
            f"Errors: {len(report.errors)}, warnings: {len(report.warnings)}",
            "",
            "Recommendations:",
        ]
        lines.extend(f"- {recommendation}" for recommendation in report.recommendations)
        return "\n".join(lines)

    def _require(self, report_id: str) -> ConversionReport:
        report = self._reports.get(report_id)
        if report is None:
            raise ReportError(f"Unknown report: {report_id}")
        return report

    @staticmethod
    def _calculate_performance_metrics(report: ConversionReport,
                                       tracking: Optional[_PerformanceTracking]) -> None:
        performance = report.performance
        summary = report.summary

        if report.processed_files:
            performance.average_file_processing_time = (
                sum(f.processing_time for f in report.processed_files) / len(report.processed_files)
            )

        if summary.total_processing_time > 0:
            performance.files_per_second = summary.total_files_processed / summary.total_processing_time
            performance.records_per_second = summary.total_records_processed / summary.total_processing_time

        if tracking and tracking.cpu_samples:
            performance.cpu_usage_percent = round(sum(tracking.cpu_samples) / len(tracking.cpu_samples), 2)

    @staticmethod
    def _calculate_data_quality_metrics(report: ConversionReport) -> None:
        summary = report.summary
        quality = report.data_quality

        if summary.total_files_scanned > 0:
            quality.completeness_score = summary.total_files_processed / summary.total_files_scanned
        if summary.total_records_processed > 0:
            quality.accuracy_score = summary.total_records_valid / summary.total_records_processed

        error_weight = min(len(report.errors) / max(summary.total_records_processed, 1), 1.0)
        quality.consistency_score = max(0.0, 1.0 - error_weight)
        quality.timeliness_score = min(
            report.performance.records_per_second / EXPECTED_RECORDS_PER_SECOND, 1.0
        )

        detected = quality.anomaly_severity
        quality.anomaly_count = quality.detected_anomalies + sum(
            1 for w in report.warnings if w.type == ConversionWarningType.DATA_QUALITY
        )
        quality.critical_anomalies = detected.get(ErrorSeverity.CRITICAL.value, 0) + sum(
            1 for e in report.errors if e.severity == ErrorSeverity.CRITICAL
        )
        quality.high_severity_anomalies = detected.get(ErrorSeverity.HIGH.value, 0) + sum(
            1 for e in report.errors if e.severity == ErrorSeverity.HIGH
        )

        quality.overall_quality_score = (
            quality.completeness_score
            + quality.accuracy_score
            + quality.consistency_score
            + quality.timeliness_score
        ) / 4

    @staticmethod
    def _generate_recommendations(report: ConversionReport) -> List[str]:
        recommendations: List[str] = []
        summary = report.summary
        quality = report.data_quality

        success_rate = (
            summary.total_files_processed / summary.total_files_scanned
            if summary.total_files_scanned else 0.0
        )
        if success_rate < 0.8:
            recommendations.append("File success rate is low; check file layout and access permissions")
        if summary.total_files_failed > 0:
            recommendations.append(
                f"{summary.total_files_failed} file(s) failed; review the error details and fix the sources"
            )
        if quality.completeness_score < 0.9:
            recommendations.append("Completeness is low; check the data source and collection process")
        if quality.accuracy_score < 0.95:
            recommendations.append("Accuracy could be improved; review validation rules and data cleaning")
        if quality.consistency_score < 0.9:
            recommendations.append("Consistency is low; unify data formats across exports")
        if report.performance.peak_memory_usage > HIGH_MEMORY_MB:
            recommendations.append("Memory usage is high; process files in smaller batches")

        critical = quality.critical_anomalies
        if critical > 0:
            recommendations.append(f"{critical} critical error(s) found; resolve them before using the data")
        if len(report.warnings) > 10:
            recommendations.append("Many warnings were raised; check data quality and the processing flow")

        if not recommendations:
            recommendations.append("Conversion ran cleanly; keep the current process and quality standards")
        return recommendations
