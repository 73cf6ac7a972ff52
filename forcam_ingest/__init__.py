"""
forcam-ingest: cycle-time ingestion from drop files and the FORCAM REST API.
"""

__version__ = "1.0.0"
