"""
Catalog Import
Batch CSV import pipeline for catalog products, variants and images.
"""

__version__ = "0.1.0"
