"""
BESS CSV Converter
Converts wide CSV exports from battery energy-storage installations into a
normalized time-series model with quality statistics and error reports.
"""

__version__ = "0.1.0"
__author__ = "BESS Converter Team"
__email__ = "team@bess-converter.dev"
