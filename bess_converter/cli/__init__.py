"""
Command line interface for the BESS converter.
"""
