"""
Data models for the report store and the retention sweeper.

This module contains the data classes and enums shared by the store
adapters, the retention sweeper and the CLI.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any


class ReportStatus(Enum):
    """Lifecycle states of a crime report."""
    PENDING = "pending"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"
    CLOSED = "closed"


def parse_timestamp(value: Any) -> datetime:
    """
    Parse an ISO-8601 timestamp into an aware UTC datetime.

    Accepts ``Z``-suffixed strings and datetimes; naive values are taken as UTC.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Format a datetime the way the web client writes ``lastUpdated``."""
    value = parse_timestamp(value)
    return value.strftime('%Y-%m-%dT%H:%M:%S.') + f"{value.microsecond // 1000:03d}Z"


@dataclass
class Report:
    """A crime report document; only status and lastUpdated are interpreted."""
    id: str
    status: ReportStatus
    last_updated: str
    fields: Dict[str, Any] = field(default_factory=dict)

    @property
    def last_updated_at(self) -> datetime:
        return parse_timestamp(self.last_updated)

    @classmethod
    def from_document(cls, report_id: str, document: Dict[str, Any]) -> 'Report':
        """Build a report from a stored document (camelCase keys)."""
        data = dict(document)
        status = ReportStatus(data.pop('status'))
        last_updated = data.pop('lastUpdated')
        data.pop('id', None)
        return cls(id=report_id, status=status, last_updated=last_updated, fields=data)

    def to_document(self) -> Dict[str, Any]:
        document = dict(self.fields)
        document['status'] = self.status.value
        document['lastUpdated'] = self.last_updated
        return document


@dataclass
class Station:
    """Police station directory entry."""
    id: str
    name: Optional[str] = None
    ocs_email: Optional[str] = None


@dataclass
class SweepResult:
    """Outcome of a single retention sweep."""
    sweep_id: str
    started_at: datetime
    cutoff: datetime
    matched: int
    deleted_count: int
    status: str  # 'success', 'failed', 'dry_run'
    duration_seconds: float
    error_message: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status != 'failed'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'sweep_id': self.sweep_id,
            'started_at': self.started_at.isoformat(),
            'cutoff': self.cutoff.isoformat(),
            'matched': self.matched,
            'deleted_count': self.deleted_count,
            'status': self.status,
            'duration_seconds': round(self.duration_seconds, 4),
            'error_message': self.error_message,
        }


@dataclass
class SweeperStatus:
    """Status information for the retention sweeper."""
    running: bool
    interval_seconds: float
    retention_hours: float
    last_sweep: Optional[datetime]
    next_sweep: Optional[datetime]
    total_sweeps: int
    successful_sweeps: int
    failed_sweeps: int
    total_deleted: int
    last_error: Optional[str]
    uptime_seconds: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'running': self.running,
            'interval_seconds': self.interval_seconds,
            'retention_hours': self.retention_hours,
            'last_sweep': self.last_sweep.isoformat() if self.last_sweep else None,
            'next_sweep': self.next_sweep.isoformat() if self.next_sweep else None,
            'total_sweeps': self.total_sweeps,
            'successful_sweeps': self.successful_sweeps,
            'failed_sweeps': self.failed_sweeps,
            'total_deleted': self.total_deleted,
            'last_error': self.last_error,
            'uptime_seconds': round(self.uptime_seconds, 2),
        }
