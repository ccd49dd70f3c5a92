"""
Domain models for catalog rows, entities, options and import jobs.
"""
