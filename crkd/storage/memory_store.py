"""
In-memory document store.

Implements both storage ports over plain dictionaries. Used by the test suite
and for running the daemon locally without a database file.
"""

import copy
import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from .interfaces import DirectoryStore, ReportStore
from .models import Report, ReportStatus, Station, parse_timestamp

logger = logging.getLogger(__name__)


class InMemoryDocumentStore(ReportStore, DirectoryStore):
    """Dictionary-backed report store and directory."""

    def __init__(self):
        self._reports: Dict[str, Report] = {}
        self._stations: Dict[str, Station] = {}
        self._subscribers: Dict[str, bool] = {}

    async def find_reports(self, status: ReportStatus, updated_before: datetime) -> List[Report]:
        cutoff = parse_timestamp(updated_before)
        return [
            copy.deepcopy(report)
            for report in self._reports.values()
            if report.status == status and report.last_updated_at <= cutoff
        ]

    async def delete_reports(self, report_ids: Sequence[str]) -> int:
        # No await between check and delete, so the batch applies atomically
        removed = 0
        for report_id in set(report_ids):
            if self._reports.pop(report_id, None) is not None:
                removed += 1
        return removed

    async def get_report(self, report_id: str) -> Optional[Report]:
        report = self._reports.get(report_id)
        return copy.deepcopy(report) if report else None

    async def put_report(self, report: Report) -> None:
        self._reports[report.id] = copy.deepcopy(report)

    async def get_station(self, station_id: str) -> Optional[Station]:
        return self._stations.get(station_id)

    async def list_active_subscribers(self) -> List[str]:
        return [email for email, active in self._subscribers.items() if active]

    def add_station(self, station: Station) -> None:
        self._stations[station.id] = station

    def add_subscriber(self, email: str, active: bool = True) -> None:
        self._subscribers[email] = active

    def report_count(self) -> int:
        return len(self._reports)
