"""Loyalty point accrual from daily purchase CSV files, served over HTTP with MongoDB storage."""

__version__ = "0.1.0"