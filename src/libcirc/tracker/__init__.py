"""Circulation tracker: items, loans, borrowing policy and reports."""

__version__ = "0.1.0"
