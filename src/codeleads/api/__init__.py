"""
REST API for uploads, ingestion progress, enrichment runs and credits.
"""
