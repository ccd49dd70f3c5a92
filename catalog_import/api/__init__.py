"""
Catalog Import API
FastAPI service for submitting and monitoring catalog import jobs.
"""
