"""Loan and reservation lifecycle engine for a lending library."""

__version__ = "0.1.0"
