"""
Report storage and retention for CRKD.
"""

from .interfaces import DirectoryStore, ReportStore, StoreError
from .memory_store import InMemoryDocumentStore
from .models import Report, ReportStatus, Station, SweepResult, SweeperStatus
from .retention_sweeper import RetentionSweeper
from .sqlite_store import SQLiteDocumentStore

__all__ = [
    'DirectoryStore',
    'ReportStore',
    'StoreError',
    'InMemoryDocumentStore',
    'Report',
    'ReportStatus',
    'Station',
    'SweepResult',
    'SweeperStatus',
    'RetentionSweeper',
    'SQLiteDocumentStore',
]
