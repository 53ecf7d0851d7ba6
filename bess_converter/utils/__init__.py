"""
Utility functions shared across the converter.
"""
