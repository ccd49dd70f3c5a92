"""
Celery Tasks
Background workers for catalog import jobs.
"""
