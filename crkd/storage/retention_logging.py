"""
Audit trail for retention sweeps.

Each sweep is appended as one JSON line to a per-day file so deletions can be
reviewed after the fact.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

from .models import SweepResult

logger = logging.getLogger(__name__)


class SweepAuditLog:
    """Writes sweep outcomes to ``<logs_dir>/sweeps_YYYY-MM-DD.jsonl``."""

    def __init__(self, logs_dir: str = "logs/retention"):
        self.logs_dir = Path(logs_dir)
        self.logs_dir.mkdir(parents=True, exist_ok=True)

    def record(self, result: SweepResult, collection: str, retention_hours: float) -> None:
        """Append one sweep outcome; write failures are logged, not raised."""
        entry = result.to_dict()
        entry.update({
            'collection': collection,
            'retention_hours': retention_hours,
            'duration_formatted': self._format_duration(result.duration_seconds),
        })

        log_file = self.logs_dir / f"sweeps_{result.started_at.strftime('%Y-%m-%d')}.jsonl"
        try:
            with open(log_file, 'a') as f:
                f.write(json.dumps(entry) + '\n')
        except OSError as e:
            logger.error(f"Failed to write sweep audit entry to {log_file}: {e}")

    def read_day(self, day: datetime) -> List[Dict[str, Any]]:
        """Read back the entries recorded on ``day``."""
        log_file = self.logs_dir / f"sweeps_{day.astimezone(timezone.utc).strftime('%Y-%m-%d')}.jsonl"
        if not log_file.exists():
            return []
        with open(log_file, 'r') as f:
            return [json.loads(line) for line in f if line.strip()]

    def _format_duration(self, duration_seconds: float) -> str:
        """Format duration in a human-readable format."""
        if duration_seconds < 60:
            return f"{duration_seconds:.2f}s"
        elif duration_seconds < 3600:
            return f"{duration_seconds / 60:.1f}m"
        return f"{duration_seconds / 3600:.1f}h"
