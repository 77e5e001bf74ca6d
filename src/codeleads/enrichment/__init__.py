"""
Credit-metered owner contact enrichment (skip tracing).
"""
from src.codeleads.enrichment.manager import EnrichmentJobManager
from src.codeleads.enrichment.vendor_client import ContactRecord, LookupResult, SkipTraceClient

__all__ = ["ContactRecord", "EnrichmentJobManager", "LookupResult", "SkipTraceClient"]
