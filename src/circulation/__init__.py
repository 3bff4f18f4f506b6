"""Borrowing transaction engine for a library catalog/member/loan service."""

__version__ = "0.1.0"
