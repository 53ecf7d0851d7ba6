"""
Custom exceptions for the BESS converter.
"""

from typing import Optional, Any


class BaseCustomException(Exception):
    """Base custom exception class"""
    
    def __init__(self, message: str, details: Optional[Any] = None):
        self.message = message
        self.details = details
        super().__init__(self.message)


class ConfigurationError(BaseCustomException):
    """Configuration related errors"""
    pass
