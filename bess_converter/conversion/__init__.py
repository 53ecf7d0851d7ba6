"""
CSV Conversion Module.

This module provides the conversion of battery energy-storage CSV exports
into standardized time series, including directory scanning and watching,
CSV parsing, transformation with quality scoring, anomaly detection,
strategy-driven error handling, conversion reports and a parallel batch
pipeline.
"""

from .scanner import FileScanner, PROJECT1_FILE_PATTERN, PROJECT2_FILE_PATTERN, WATCH_DEPTH
from .parsers import BaseCsvParser, Project1Parser, Project2Parser, FileParser
from .transformer import DataTransformer
from .validator import (
    DataValidator, DataValidationResult, AnomalyType, Anomaly, AnomalyReport, QualityReport
)
from .error_handler import ErrorHandler, ErrorContext, ErrorHandlingResult
from .reporter import ConversionReporter, ConversionReport
from .pipeline import ConversionPipeline, ConversionResult
from .models import (
    ProjectType,
    SystemId,
    GroupId,
    DataType,
    ErrorCategory,
    ErrorSeverity,
    ConversionErrorType,
    ConversionWarningType,
    FileEventType,
    FileRecord,
    Project1FileStructure,
    Project2FileStructure,
    Project1RawData,
    Project2RawData,
    StandardBatteryData,
    ConversionError,
    ConversionWarning
)
from .exceptions import (
    ConverterError,
    ParsingError,
    UnsupportedDataTypeError,
    DataTransformError,
    DataValidationError,
    ReportError,
    PipelineAbortedError
)

__all__ = [
    "FileScanner",
    "PROJECT1_FILE_PATTERN",
    "PROJECT2_FILE_PATTERN",
    "WATCH_DEPTH",
    "BaseCsvParser",
    "Project1Parser",
    "Project2Parser",
    "FileParser",
    "DataTransformer",
    "DataValidator",
    "DataValidationResult",
    "AnomalyType",
    "Anomaly",
    "AnomalyReport",
    "QualityReport",
    "ErrorHandler",
    "ErrorContext",
    "ErrorHandlingResult",
    "ConversionReporter",
    "ConversionReport",
    "ConversionPipeline",
    "ConversionResult",
    "ProjectType",
    "SystemId",
    "GroupId",
    "DataType",
    "ErrorCategory",
    "ErrorSeverity",
    "ConversionErrorType",
    "ConversionWarningType",
    "FileEventType",
    "FileRecord",
    "Project1FileStructure",
    "Project2FileStructure",
    "Project1RawData",
    "Project2RawData",
    "StandardBatteryData",
    "ConversionError",
    "ConversionWarning",
    "ConverterError",
    "ParsingError",
    "UnsupportedDataTypeError",
    "DataTransformError",
    "DataValidationError",
    "ReportError",
    "PipelineAbortedError"
]
