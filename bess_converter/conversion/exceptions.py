"""
Conversion Exceptions.

This module defines custom exceptions for CSV conversion operations.
File-level I/O errors (missing file, permission denied) are not wrapped;
they reach the caller as the builtin OSError subclasses.
"""

from bess_converter.core.exceptions import BaseCustomException


class ConverterError(BaseCustomException):
    """Base exception for conversion operations."""
    pass


class ParsingError(ConverterError):
    """Exception raised when a CSV file cannot be decoded."""
    pass


class UnsupportedDataTypeError(ParsingError):
    """Exception raised for a Project2 data type outside the known set."""
    pass


class DataTransformError(ConverterError):
    """Exception raised when raw data cannot be standardized."""
    pass


class DataValidationError(ConverterError):
    """Exception raised when a value falls outside its validation range."""
    pass


class ReportError(ConverterError):
    """Exception raised for unknown report sessions or report I/O failures."""
    pass


class PipelineAbortedError(ConverterError):
    """Exception raised when a conversion run was stopped by strategy."""
    pass
