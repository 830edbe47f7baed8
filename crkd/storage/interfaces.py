"""
Storage interfaces for the report store and the notification directory.

The retention sweeper and the notification dispatcher only ever talk to these
ports; any document, key-value or relational store that implements them can
back the daemon.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Sequence

from .models import Report, ReportStatus, Station


class StoreError(Exception):
    """Raised when the backing store cannot complete an operation."""


class ReportStore(ABC):
    """Abstract interface for report persistence."""

    @abstractmethod
    async def find_reports(
        self,
        status: ReportStatus,
        updated_before: datetime
    ) -> List[Report]:
        """Get reports in ``status`` whose lastUpdated is at or before ``updated_before``."""
        pass

    @abstractmethod
    async def delete_reports(self, report_ids: Sequence[str]) -> int:
        """
        Delete the given reports as one atomic operation.

        Either every listed report is removed or none is. Returns the number
        of reports actually removed.
        """
        pass

    @abstractmethod
    async def get_report(self, report_id: str) -> Optional[Report]:
        """Get a single report, or None when it does not exist."""
        pass

    @abstractmethod
    async def put_report(self, report: Report) -> None:
        """Create or replace a report."""
        pass


class DirectoryStore(ABC):
    """Abstract interface for the station and subscriber directory."""

    @abstractmethod
    async def get_station(self, station_id: str) -> Optional[Station]:
        """Get a station by id, or None when it does not exist."""
        pass

    @abstractmethod
    async def list_active_subscribers(self) -> List[str]:
        """Get e-mail addresses of all currently active subscribers."""
        pass
