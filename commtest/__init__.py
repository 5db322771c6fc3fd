"""Buyer/seller communication test harness for the peer messaging application."""

__version__ = "1.0.0"
