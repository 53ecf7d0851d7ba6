"""
Error Handling for CSV Conversion.

This module classifies failures raised while scanning, parsing and
transforming battery CSV exports, decides whether processing continues or
retries according to the installed ErrorHandlingStrategy, and keeps the
cumulative error statistics and the issued error/warning records.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Union

from bess_converter.core.config import (
    ErrorHandlingStrategy, FileNotFoundPolicy, ParseErrorPolicy, ValidationErrorPolicy
)
from bess_converter.core.logging import LoggerMixin
from .exceptions import ConverterError, DataTransformError, DataValidationError, ParsingError
from .models import (
    ConversionError, ConversionErrorType, ConversionWarning, ConversionWarningType,
    ErrorCategory, ErrorSeverity
)


@dataclass
class ErrorContext:
    """Where an error happened."""
    operation: str
    file_path: Optional[str] = None
    row_index: Optional[int] = None
    column_name: Optional[str] = None
    data_value: Optional[Any] = None
    retry_count: int = 0
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass
class ErrorHandlingResult:
    """Decision returned by every handle_* call."""
    should_continue: bool
    should_retry: bool = False
    retry_delay: Optional[float] = None
    processed_error: Optional[ConversionError] = None
    processed_warning: Optional[ConversionWarning] = None


ClassificationRule = Dict[str, Any]

_NOT_FOUND_MARKERS = ("no such file", "not found", "does not exist", "enoent", "errno 2]")
_PERMISSION_MARKERS = ("permission", "access is denied", "eacces", "eperm", "errno 13]")

_CATEGORY_TO_ERROR_TYPE = {
    ErrorCategory.FILE_ACCESS: ConversionErrorType.FILE_ERROR,
    ErrorCategory.FILE_FORMAT: ConversionErrorType.FILE_ERROR,
    ErrorCategory.DATA_PARSING: ConversionErrorType.PARSE_ERROR,
    ErrorCategory.DATA_VALIDATION: ConversionErrorType.VALIDATION_ERROR,
    ErrorCategory.DATA_TRANSFORM: ConversionErrorType.TRANSFORMATION_ERROR,
    ErrorCategory.SYSTEM_ERROR: ConversionErrorType.STORAGE_ERROR,
    ErrorCategory.MEMORY_ERROR: ConversionErrorType.STORAGE_ERROR,
    ErrorCategory.NETWORK_ERROR: ConversionErrorType.STORAGE_ERROR,
}

_RETRYABLE_CATEGORIES = frozenset({
    ErrorCategory.NETWORK_ERROR,
    ErrorCategory.SYSTEM_ERROR,
    ErrorCategory.FILE_ACCESS,
})


def _contains_any(text: str, markers) -> bool:
    return any(marker in text for marker in markers)


def is_not_found_error(error: BaseException) -> bool:
    """True for missing-file failures, by type or by message."""
    return isinstance(error, FileNotFoundError) or _contains_any(str(error).lower(), _NOT_FOUND_MARKERS)


def is_permission_error(error: BaseException) -> bool:
    """True for permission failures, by type or by message."""
    return isinstance(error, PermissionError) or _contains_any(str(error).lower(), _PERMISSION_MARKERS)


class ErrorHandler(LoggerMixin):
    """
    Classification and policy engine for conversion errors.

    One instance owns the active strategy, the cumulative statistics and the
    issued ConversionError/ConversionWarning records. All three are guarded
    by a single lock so the handler can be shared by parallel file tasks.
    """

    def __init__(self, strategy: Optional[ErrorHandlingStrategy] = None):
        """
        Initialize the error handler.

        Args:
            strategy: Initial strategy; defaults to ErrorHandlingStrategy()
        """
        self._strategy = strategy.model_copy() if strategy else ErrorHandlingStrategy()
        self._lock = threading.Lock()

        self._total_errors = 0
        self._errors_by_category: Dict[str, int] = {}
        self._errors_by_severity: Dict[str, int] = {}
        self._errors: List[ConversionError] = []
        self._warnings: List[ConversionWarning] = []

        self.error_classification_rules = self._initialize_classification_rules()

    # ------------------------------------------------------------------
    # Strategy
    # ------------------------------------------------------------------

    @property
    def strategy(self) -> ErrorHandlingStrategy:
        """Snapshot of the active strategy."""
        with self._lock:
            return self._strategy

    def set_strategy(self, strategy: Union[ErrorHandlingStrategy, Mapping[str, Any]]) -> ErrorHandlingStrategy:
        """
        Merge a partial strategy onto the active one.

        Only fields explicitly set on an ErrorHandlingStrategy (or present in
        a mapping) replace the current values. The merged strategy is
        validated before it is installed, so readers never observe a
        half-applied update.

        Args:
            strategy: ErrorHandlingStrategy or mapping of field overrides

        Returns:
            The newly installed strategy
        """
        if isinstance(strategy, ErrorHandlingStrategy):
            overrides = strategy.model_dump(exclude_unset=True)
        else:
            overrides = dict(strategy)

        with self._lock:
            merged = ErrorHandlingStrategy.model_validate({**self._strategy.model_dump(), **overrides})
            self._strategy = merged

        self.logger.debug(f"Error handling strategy updated: {overrides}")
        return merged

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def categorize_error(self, error: BaseException, context: Optional[ErrorContext] = None) -> ErrorCategory:
        """Classify an error; the first matching rule wins."""
        error_type = type(error).__name__.lower()
        error_message = str(error).lower()

        for rule in self.error_classification_rules:
            if rule["condition"](error, error_type, error_message):
                return rule["category"]

        return ErrorCategory.SYSTEM_ERROR

    def determine_severity(self, error: BaseException, context: Optional[ErrorContext] = None) -> ErrorSeverity:
        """Derive severity from the error category."""
        category = self.categorize_error(error, context)

        if category in (ErrorCategory.MEMORY_ERROR, ErrorCategory.SYSTEM_ERROR):
            return ErrorSeverity.CRITICAL

        if category == ErrorCategory.FILE_ACCESS:
            if is_permission_error(error):
                return ErrorSeverity.HIGH
            if is_not_found_error(error):
                return ErrorSeverity.LOW
            return ErrorSeverity.MEDIUM

        if category in (ErrorCategory.DATA_TRANSFORM, ErrorCategory.NETWORK_ERROR):
            return ErrorSeverity.HIGH

        if category in (ErrorCategory.FILE_FORMAT, ErrorCategory.DATA_PARSING):
            return ErrorSeverity.MEDIUM

        return ErrorSeverity.LOW

    def should_retry(self, error: BaseException, context: ErrorContext) -> bool:
        """Retry only transient categories, and only below max_retries."""
        if context.retry_count >= self.strategy.max_retries:
            return False
        return self.categorize_error(error, context) in _RETRYABLE_CATEGORIES

    # ------------------------------------------------------------------
    # Handling
    # ------------------------------------------------------------------

    def handle_file_error(self, error: BaseException, context: ErrorContext) -> ErrorHandlingResult:
        """
        Decide what to do after a file-level failure.

        Args:
            error: The exception raised while opening or reading the file
            context: Operation, file path and retry count

        Returns:
            Continue/retry decision with the issued record
        """
        category = self.categorize_error(error, context)
        severity = self.determine_severity(error, context)
        self._update_statistics(category, severity)
        self._log_error(error, context, category, severity)

        strategy = self.strategy

        if category == ErrorCategory.FILE_ACCESS and is_not_found_error(error):
            return self._handle_file_not_found(error, context, category, strategy)

        if category == ErrorCategory.FILE_FORMAT:
            return self._record(ErrorHandlingResult(
                should_continue=strategy.continue_on_error,
                processed_error=self.create_conversion_error(error, context, category, severity)
            ))

        retry = self.should_retry(error, context)
        return self._record(ErrorHandlingResult(
            should_continue=strategy.continue_on_error and severity != ErrorSeverity.CRITICAL,
            should_retry=retry,
            retry_delay=strategy.retry_delay if retry else None,
            processed_error=self.create_conversion_error(error, context, category, severity)
        ))

    def handle_row_error(self, error: BaseException, context: ErrorContext) -> ErrorHandlingResult:
        """Decide what to do after a row could not be decoded."""
        category = self.categorize_error(error, context)
        severity = self.determine_severity(error, context)
        self._update_statistics(category, severity)

        self.logger.warning(
            f"Row error in {context.file_path} at row {context.row_index} "
            f"({context.operation}, {category.value}/{severity.value}): {error}"
        )

        policy = self.strategy.on_parse_error
        if policy == ParseErrorPolicy.SKIP_ROW:
            result = ErrorHandlingResult(
                should_continue=True,
                processed_warning=self.create_conversion_warning(
                    f"Skipped row {context.row_index}: {error}", context
                )
            )
        elif policy == ParseErrorPolicy.SKIP_FILE:
            result = ErrorHandlingResult(
                should_continue=False,
                processed_error=self.create_conversion_error(error, context, category, severity)
            )
        else:
            result = ErrorHandlingResult(
                should_continue=False,
                processed_error=self.create_conversion_error(
                    error, context, category, ErrorSeverity.CRITICAL
                )
            )
        return self._record(result)

    def handle_validation_error(self, error: BaseException, context: ErrorContext) -> ErrorHandlingResult:
        """Decide what to do after a value failed range validation."""
        category = self.categorize_error(error, context)
        severity = self.determine_severity(error, context)
        self._update_statistics(category, severity)

        self.logger.warning(
            f"Validation error in {context.file_path} at row {context.row_index}, "
            f"field {context.column_name}={context.data_value!r}: {error}"
        )

        policy = self.strategy.on_validation_error
        if policy == ValidationErrorPolicy.MARK_INVALID:
            result = ErrorHandlingResult(
                should_continue=True,
                processed_warning=self.create_conversion_warning(
                    f"Validation failed: {error}", context
                )
            )
        elif policy == ValidationErrorPolicy.SKIP_DATA:
            result = ErrorHandlingResult(
                should_continue=True,
                processed_warning=self.create_conversion_warning(
                    f"Skipped invalid data: {error}", context
                )
            )
        else:
            result = ErrorHandlingResult(
                should_continue=False,
                processed_error=self.create_conversion_error(
                    error, context, category, ErrorSeverity.HIGH
                )
            )
        return self._record(result)

    def _handle_file_not_found(self,
                               error: BaseException,
                               context: ErrorContext,
                               category: ErrorCategory,
                               strategy: ErrorHandlingStrategy) -> ErrorHandlingResult:
        policy = strategy.on_file_not_found
        if policy == FileNotFoundPolicy.SKIP:
            result = ErrorHandlingResult(
                should_continue=True,
                processed_warning=self.create_conversion_warning(
                    f"File not found, skipped: {context.file_path}", context
                )
            )
        elif policy == FileNotFoundPolicy.WARN:
            result = ErrorHandlingResult(
                should_continue=True,
                processed_warning=self.create_conversion_warning(
                    f"File not found: {context.file_path}", context
                )
            )
        else:
            result = ErrorHandlingResult(
                should_continue=False,
                processed_error=self.create_conversion_error(
                    error, context, category, ErrorSeverity.HIGH
                )
            )
        return self._record(result)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def create_conversion_error(self,
                                error: BaseException,
                                context: ErrorContext,
                                category: ErrorCategory,
                                severity: ErrorSeverity) -> ConversionError:
        """Build an immutable error record with a fresh id."""
        details = f"operation: {context.operation}, category: {category.value}"
        if context.data_value is not None:
            details += f", value: {context.data_value}"
        return ConversionError(
            type=_CATEGORY_TO_ERROR_TYPE.get(category, ConversionErrorType.PARSE_ERROR),
            severity=severity,
            message=str(error) or type(error).__name__,
            file_path=context.file_path,
            row_index=context.row_index,
            field=context.column_name,
            details=details,
            timestamp=datetime.now()
        )

    def create_conversion_warning(self, message: str, context: ErrorContext) -> ConversionWarning:
        """Build an immutable warning record with a fresh id and a suggestion."""
        return ConversionWarning(
            type=self._map_operation_to_warning_type(context.operation),
            message=message,
            file_path=context.file_path,
            row_index=context.row_index,
            field=context.column_name,
            details=f"operation: {context.operation}",
            suggestion=self._generate_suggestion(message),
            timestamp=datetime.now()
        )

    def get_conversion_errors(self) -> List[ConversionError]:
        with self._lock:
            return list(self._errors)

    def get_conversion_warnings(self) -> List[ConversionWarning]:
        with self._lock:
            return list(self._warnings)

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def get_error_statistics(self) -> Dict[str, Any]:
        """Get a snapshot of the cumulative error statistics."""
        with self._lock:
            return {
                "total_errors": self._total_errors,
                "errors_by_category": dict(self._errors_by_category),
                "errors_by_severity": dict(self._errors_by_severity)
            }

    def reset_statistics(self) -> None:
        """Zero the counters and drop issued records."""
        with self._lock:
            self._total_errors = 0
            self._errors_by_category.clear()
            self._errors_by_severity.clear()
            self._errors.clear()
            self._warnings.clear()

    def log_error_summary(self) -> None:
        stats = self.get_error_statistics()
        if stats["total_errors"] == 0:
            self.logger.info("No errors recorded")
            return
        self.logger.info(
            f"Error summary: {stats['total_errors']} total, "
            f"by category {stats['errors_by_category']}, "
            f"by severity {stats['errors_by_severity']}"
        )

    def _update_statistics(self, category: ErrorCategory, severity: ErrorSeverity) -> None:
        with self._lock:
            self._total_errors += 1
            self._errors_by_category[category.value] = self._errors_by_category.get(category.value, 0) + 1
            self._errors_by_severity[severity.value] = self._errors_by_severity.get(severity.value, 0) + 1

    def _record(self, result: ErrorHandlingResult) -> ErrorHandlingResult:
        with self._lock:
            if result.processed_error is not None:
                self._errors.append(result.processed_error)
            if result.processed_warning is not None:
                self._warnings.append(result.processed_warning)
        return result

    def _log_error(self,
                   error: BaseException,
                   context: ErrorContext,
                   category: ErrorCategory,
                   severity: ErrorSeverity) -> None:
        """Log a file-level error at the level matching its severity."""
        level_map = {
            ErrorSeverity.LOW: "info",
            ErrorSeverity.MEDIUM: "warning",
            ErrorSeverity.HIGH: "error",
            ErrorSeverity.CRITICAL: "critical"
        }
        log_method = getattr(self.logger, level_map[severity])
        log_method(
            f"File error [{category.value}/{severity.value}] during {context.operation} "
            f"of {context.file_path} (attempt {context.retry_count + 1}): {error}"
        )

    @staticmethod
    def _map_operation_to_warning_type(operation: str) -> ConversionWarningType:
        operation = operation.lower()
        if "parse" in operation or "format" in operation:
            return ConversionWarningType.FORMAT_ISSUE
        if "validat" in operation or "quality" in operation:
            return ConversionWarningType.DATA_QUALITY
        if "performance" in operation or "memory" in operation:
            return ConversionWarningType.PERFORMANCE
        return ConversionWarningType.CONFIGURATION

    @staticmethod
    def _generate_suggestion(message: str) -> str:
        lower_message = message.lower()
        if "not found" in lower_message or "does not exist" in lower_message:
            return "Check that the file path is correct and the file is accessible"
        if "parse" in lower_message or "format" in lower_message or "row" in lower_message:
            return "Check the CSV layout: delimiter, header names and text encoding"
        if "validation" in lower_message or "range" in lower_message:
            return "Check that values are within plausible ranges or adjust the validation ranges"
        if "memory" in lower_message:
            return "Process large files in smaller batches or increase available memory"
        return "Inspect the error details for more information"

    def _initialize_classification_rules(self) -> List[ClassificationRule]:
        """
        Initialize error classification rules, in priority order.

        Converter exceptions are classified by type; message keywords only
        apply to foreign exceptions, so a message mentioning "format" cannot
        pull a typed parsing error into file_format.
        """
        def foreign(e: BaseException) -> bool:
            return not isinstance(e, ConverterError)

        return [
            {
                "condition": lambda e, t, m: (
                    isinstance(e, (FileNotFoundError, PermissionError, IsADirectoryError))
                    or (foreign(e) and (
                        "filenotfound" in t
                        or _contains_any(m, _NOT_FOUND_MARKERS)
                        or _contains_any(m, _PERMISSION_MARKERS)
                    ))
                ),
                "category": ErrorCategory.FILE_ACCESS
            },
            {
                "condition": lambda e, t, m: (
                    isinstance(e, UnicodeError)
                    or (foreign(e) and _contains_any(
                        m, ("csv", "format", "header", "codec", "encoding", "tokeniz", "delimiter")
                    ))
                ),
                "category": ErrorCategory.FILE_FORMAT
            },
            {
                "condition": lambda e, t, m: (
                    isinstance(e, ParsingError)
                    or (foreign(e) and _contains_any(
                        m, ("parse", "could not convert", "invalid literal", "timestamp")
                    ))
                ),
                "category": ErrorCategory.DATA_PARSING
            },
            {
                "condition": lambda e, t, m: (
                    isinstance(e, DataValidationError)
                    or (foreign(e) and _contains_any(m, ("validation", "range", "type")))
                ),
                "category": ErrorCategory.DATA_VALIDATION
            },
            {
                "condition": lambda e, t, m: (
                    isinstance(e, DataTransformError)
                    or (foreign(e) and _contains_any(m, ("transform", "convert", "mapping")))
                ),
                "category": ErrorCategory.DATA_TRANSFORM
            },
            {
                "condition": lambda e, t, m: isinstance(e, MemoryError) or "memory" in m or "memory" in t,
                "category": ErrorCategory.MEMORY_ERROR
            },
            {
                "condition": lambda e, t, m: (
                    isinstance(e, (ConnectionError, TimeoutError))
                    or _contains_any(m, ("network", "timeout", "timed out", "connection"))
                ),
                "category": ErrorCategory.NETWORK_ERROR
            },
        ]
