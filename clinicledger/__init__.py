"""Clinic visit ledger and slot scheduler."""

__version__ = "0.1.0"
