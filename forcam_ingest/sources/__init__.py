"""
Record sources: drop-file scanner and readers, REST client, watch trigger.
"""

from .api_client import ApiPage, RestApiClient
from .file_scanner import FileScanner
from .readers import DropFileReader
from .watch import WatchTrigger

__all__ = [
    "ApiPage",
    "DropFileReader",
    "FileScanner",
    "RestApiClient",
    "WatchTrigger",
]
