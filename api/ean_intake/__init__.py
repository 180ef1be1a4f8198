# ean_intake/__init__.py
"""Supplier file intake and EAN catalog activation service."""

__version__ = "1.0.0"
