"""Sector Ops: roster generation and flight duty time limitations for a virtual airline."""

__version__ = "1.0.0"
