"""
Service layer for the financial dashboard data store.

This package contains framework-agnostic business logic (workbook
extraction, filename validation, storage and reconciliation) that can be
used by the CLI or any other interface.
"""

__version__ = "1.0.0"
