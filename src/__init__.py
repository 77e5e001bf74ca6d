"""
Code Violation Leads - Core Package

This package contains the core functionality for the code-violation lead system,
including spreadsheet ingestion, credit accounting, and contact enrichment.
"""

__version__ = "0.1.0"
