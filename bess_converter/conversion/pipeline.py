"""
Conversion Pipeline.

This module wires scanner, parsers, transformer, error handler and reporter
into a batch conversion of one export tree. Files are processed in parallel,
one task per file. File-level failures go through the ErrorHandler; a retry
decision re-submits the file after the retry delay from a timer thread, so
no worker sleeps while other files wait. A stop decision (or stop()) lets
in-flight files finish and skips everything not yet started.
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from bess_converter.core.config import AppConfig, ParseErrorPolicy, ValidationErrorPolicy, get_config
from bess_converter.core.logging import LoggerMixin
from .error_handler import ErrorContext, ErrorHandler
from .exceptions import ConverterError
from .models import DataType, Project2RawData, ProjectType, StandardBatteryData
from .parsers import FileParser
from .reporter import ConversionReport, ConversionReporter
from .scanner import FileScanner
from .transformer import DataTransformer
from .validator import DataValidator, QualityReport


class _FileRejected(Exception):
    """A file whose rows were already reported but which yields no data."""
    pass


@dataclass
class FileTask:
    """One file scheduled for conversion."""
    path: Path
    key: Tuple[Any, ...]
    data_type: Optional[DataType] = None
    file_size: int = 0
    attempt: int = 0


@dataclass
class _FileOutcome:
    value: Any
    record_count: int
    valid_records: int


@dataclass
class ConversionResult:
    """Datasets and report of one conversion run."""
    report: ConversionReport
    datasets: List[StandardBatteryData] = field(default_factory=list)
    error_statistics: Dict[str, Any] = field(default_factory=dict)
    quality_reports: List[QualityReport] = field(default_factory=list)
    stopped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "report": self.report.to_dict(),
            "datasets": [data.to_dict() for data in self.datasets],
            "error_statistics": self.error_statistics,
            "quality_reports": [quality.to_dict() for quality in self.quality_reports],
            "stopped": self.stopped
        }


class ConversionPipeline(LoggerMixin):
    """
    Batch converter for Project1/Project2 export trees.

    All collaborators can be injected; by default they are built from the
    application config and share one ErrorHandler.
    """

    def __init__(self,
                 config: Optional[AppConfig] = None,
                 scanner: Optional[FileScanner] = None,
                 error_handler: Optional[ErrorHandler] = None,
                 parser: Optional[FileParser] = None,
                 transformer: Optional[DataTransformer] = None,
                 reporter: Optional[ConversionReporter] = None,
                 validator: Optional[DataValidator] = None):
        self.config = config or get_config()
        self.error_handler = error_handler or ErrorHandler(self.config.error_handling)
        self.scanner = scanner or FileScanner()
        self.parser = parser or FileParser(self.config, self.error_handler)
        self.transformer = transformer or DataTransformer(self.config, self.error_handler)
        self.reporter = reporter or ConversionReporter()
        self.validator = validator or DataValidator(self.config.validation)

        self._run_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._pending_cond = threading.Condition()
        self._pending = 0

        self.logger.info(f"Conversion pipeline initialized with {self.config.pipeline.max_workers} workers")

    def stop(self) -> None:
        """Stop submitting files; running ones finish normally."""
        self._request_stop("stop requested")

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    # ------------------------------------------------------------------
    # Project1
    # ------------------------------------------------------------------

    def convert_project_one(self, base_path: Union[str, Path]) -> ConversionResult:
        """
        Convert every BankNN file below base_path.

        Returns:
            One merged dataset per system, plus the run report
        """
        with self._run_lock:
            self._stop_event.clear()
            report_id, marks = self._begin(ProjectType.PROJECT1)

            structure = self.scanner.scan_project_one_structure(base_path)
            tasks = [
                FileTask(path=record.file_path, key=(system_id, bank_id), file_size=record.file_size)
                for system_id, bank_id, record in structure.iter_files()
            ]

            outputs = self._run_tasks(report_id, tasks, self._convert_project_one_file)

            by_system: Dict[Any, List[StandardBatteryData]] = {}
            for (system_id, _), data in sorted(outputs.items(), key=lambda item: (item[0][0].value, item[0][1])):
                by_system.setdefault(system_id, []).append(data)

            datasets = []
            for system_id, items in by_system.items():
                merged = self._finalize_dataset(
                    lambda: self.transformer.merge_time_series_data(items),
                    ProjectType.PROJECT1,
                    f"system {system_id.value}"
                )
                if merged is not None:
                    datasets.append(merged)

            return self._finish(report_id, marks, datasets)

    def _convert_project_one_file(self, task: FileTask) -> _FileOutcome:
        raw = self.parser.parse_project_one_file(task.path)
        if raw.metadata.aborted:
            if self.error_handler.strategy.on_parse_error == ParseErrorPolicy.ABORT:
                self._request_stop(f"parse aborted in {task.path}")
            raise _FileRejected(raw.metadata.abort_reason or "Parsing stopped")

        data = self.transformer.transform_project_one_data(raw)
        if data.summary.aborted:
            self._stop_on_abort_policy(task.path)
            raise _FileRejected("Transformation stopped by error strategy")
        if not self.transformer.validate_transform_result(data, ProjectType.PROJECT1):
            raise _FileRejected("Transformed data failed structural validation")

        return _FileOutcome(
            value=data,
            record_count=len(raw.rows) + raw.metadata.skipped_rows,
            valid_records=data.summary.valid_records
        )

    # ------------------------------------------------------------------
    # Project2
    # ------------------------------------------------------------------

    def convert_project_two(self, base_path: Union[str, Path]) -> ConversionResult:
        """
        Convert every group below base_path.

        Files are parsed in parallel; each group's datasets are then merged
        into a single time series.

        Returns:
            One dataset per group, plus the run report
        """
        with self._run_lock:
            self._stop_event.clear()
            report_id, marks = self._begin(ProjectType.PROJECT2)

            structure = self.scanner.scan_project_two_structure(base_path)
            tasks = [
                FileTask(
                    path=record.file_path,
                    key=(group_id, data_type, date_key),
                    data_type=data_type,
                    file_size=record.file_size
                )
                for group_id, data_type, date_key, record in structure.iter_files()
            ]

            outputs = self._run_tasks(report_id, tasks, self._parse_project_two_file)

            by_group: Dict[Any, List[Project2RawData]] = {}
            for key in sorted(outputs, key=lambda k: (k[0].value, k[1].value, k[2])):
                by_group.setdefault(key[0], []).append(outputs[key])

            datasets = []
            for group_id, raws in by_group.items():
                if self.stopped:
                    break
                data = self._finalize_dataset(
                    lambda: self.transformer.transform_project_two_data(raws),
                    ProjectType.PROJECT2,
                    group_id.value
                )
                if data is not None:
                    datasets.append(data)

            return self._finish(report_id, marks, datasets)

    def _parse_project_two_file(self, task: FileTask) -> _FileOutcome:
        raw = self.parser.parse_project_two_file(task.path, task.data_type)
        if raw.metadata.aborted:
            if self.error_handler.strategy.on_parse_error == ParseErrorPolicy.ABORT:
                self._request_stop(f"parse aborted in {task.path}")
            raise _FileRejected(raw.metadata.abort_reason or "Parsing stopped")

        return _FileOutcome(
            value=raw,
            record_count=len(raw.rows) + raw.metadata.skipped_rows,
            valid_records=len(raw.rows)
        )

    # ------------------------------------------------------------------
    # Task execution
    # ------------------------------------------------------------------

    def _run_tasks(self,
                   report_id: str,
                   tasks: List[FileTask],
                   work: Callable[[FileTask], _FileOutcome]) -> Dict[Tuple[Any, ...], Any]:
        """Run one task per file and wait until every task, retries included, has settled."""
        results: Dict[Tuple[Any, ...], Any] = {}
        results_lock = threading.Lock()

        with self._pending_cond:
            self._pending = len(tasks)

        if not tasks:
            self.logger.warning("No files found to convert")
            return results

        with ThreadPoolExecutor(max_workers=self.config.pipeline.max_workers,
                                thread_name_prefix="conversion") as executor:

            def submit(task: FileTask) -> None:
                if self.stopped:
                    self.reporter.record_file_skipped(report_id, task.path, "Conversion stopped")
                    self._task_done()
                    return
                executor.submit(execute, task)

            def execute(task: FileTask) -> None:
                retry_scheduled = False
                try:
                    if self.stopped:
                        self.reporter.record_file_skipped(report_id, task.path, "Conversion stopped")
                        return
                    started = time.perf_counter()
                    outcome = work(task)
                    self.reporter.record_file_processed(
                        report_id,
                        task.path,
                        record_count=outcome.record_count,
                        valid_records=outcome.valid_records,
                        processing_time=time.perf_counter() - started,
                        file_size=task.file_size
                    )
                    with results_lock:
                        results[task.key] = outcome.value
                except _FileRejected as e:
                    self.reporter.record_file_failed(report_id, task.path, str(e), task.attempt)
                except Exception as e:
                    retry_scheduled = self._handle_task_error(report_id, task, e, submit)
                finally:
                    try:
                        self.reporter.record_performance_metrics(report_id)
                    except Exception as e:
                        self.logger.warning(f"Could not sample resource usage: {e}")
                    finally:
                        if not retry_scheduled:
                            self._task_done()

            for task in tasks:
                submit(task)

            self._wait_for_completion()

        return results

    def _handle_task_error(self,
                           report_id: str,
                           task: FileTask,
                           error: Exception,
                           submit: Callable[[FileTask], None]) -> bool:
        """Route a file failure through the error handler; True if a retry was scheduled."""
        decision = self.error_handler.handle_file_error(
            error,
            ErrorContext(operation="convert_file", file_path=str(task.path), retry_count=task.attempt)
        )

        if decision.should_retry and not self.stopped:
            task.attempt += 1
            timer = threading.Timer(decision.retry_delay or 0.0, submit, args=(task,))
            timer.daemon = True
            timer.start()
            self.logger.info(f"Retrying {task.path} in {decision.retry_delay}s (attempt {task.attempt + 1})")
            return True

        if decision.processed_warning is not None:
            self.reporter.record_file_skipped(report_id, task.path, decision.processed_warning.message)
        else:
            self.reporter.record_file_failed(report_id, task.path, str(error), task.attempt)

        if not decision.should_continue:
            self._request_stop(f"error strategy stopped the run at {task.path}")
        return False

    def _task_done(self) -> None:
        with self._pending_cond:
            self._pending -= 1
            self._pending_cond.notify_all()

    def _wait_for_completion(self) -> None:
        with self._pending_cond:
            while self._pending > 0:
                self._pending_cond.wait()

    def _request_stop(self, reason: str) -> None:
        if not self._stop_event.is_set():
            self._stop_event.set()
            self.logger.warning(f"Conversion stopping: {reason}")

    def _stop_on_abort_policy(self, file_path: Path) -> None:
        strategy = self.error_handler.strategy
        if (strategy.on_parse_error == ParseErrorPolicy.ABORT
                or strategy.on_validation_error == ValidationErrorPolicy.ABORT):
            self._request_stop(f"transformation aborted in {file_path}")

    # ------------------------------------------------------------------
    # Run bookkeeping
    # ------------------------------------------------------------------

    def _finalize_dataset(self,
                          build: Callable[[], StandardBatteryData],
                          project_type: ProjectType,
                          label: str) -> Optional[StandardBatteryData]:
        try:
            data = build()
        except ConverterError as e:
            decision = self.error_handler.handle_file_error(e, ErrorContext(operation="transform", file_path=label))
            if not decision.should_continue:
                self._request_stop(f"transformation of {label} failed")
            return None

        if data.summary.aborted:
            self._stop_on_abort_policy(Path(label))
            return None
        if not self.transformer.validate_transform_result(data, project_type):
            self.logger.error(f"Dataset for {label} failed structural validation")
            return None
        return data

    def _begin(self, project_type: ProjectType) -> Tuple[str, Tuple[int, int]]:
        report_id = self.reporter.start_conversion(project_type)
        marks = (len(self.error_handler.get_conversion_errors()),
                 len(self.error_handler.get_conversion_warnings()))
        return report_id, marks

    def _finish(self,
                report_id: str,
                marks: Tuple[int, int],
                datasets: List[StandardBatteryData]) -> ConversionResult:
        errors_before, warnings_before = marks
        for error in self.error_handler.get_conversion_errors()[errors_before:]:
            self.reporter.record_error(report_id, error)
        for warning in self.error_handler.get_conversion_warnings()[warnings_before:]:
            self.reporter.record_warning(report_id, warning)

        quality_reports = []
        for data in datasets:
            quality = self.validator.generate_quality_report(data)
            self.reporter.record_anomalies(report_id, quality.anomaly_report)
            quality_reports.append(quality)

        report = self.reporter.finish_conversion(report_id)
        self.reporter.discard_report(report_id)
        if self.config.pipeline.report_dir:
            self.reporter.save_report_to_file(
                report, Path(self.config.pipeline.report_dir) / f"conversion_report_{report_id}.json"
            )

        self.error_handler.log_error_summary()
        return ConversionResult(
            report=report,
            datasets=datasets,
            error_statistics=self.error_handler.get_error_statistics(),
            quality_reports=quality_reports,
            stopped=self.stopped
        )
