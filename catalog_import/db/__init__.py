"""
Database ORM Models
SQLAlchemy ORM models for database tables.
"""

from .models import Base, CatalogImageRow, CatalogProduct, CatalogVariantRow, ImportJobRow

__all__ = [
    "Base",
    "CatalogProduct",
    "CatalogVariantRow",
    "CatalogImageRow",
    "ImportJobRow",
]
