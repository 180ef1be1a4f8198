# ean_intake/services/__init__.py
"""
Business logic services for EAN Intake.
"""
from ean_intake.services.catalog import CatalogService
from ean_intake.services.conflicts import ConflictService

__all__ = [
    "CatalogService",
    "ConflictService",
]
