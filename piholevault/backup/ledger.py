"""
Job ledger - bounded history of backup attempts.

Stored as a single JSON array (newest-last) in <data_dir>/jobs.json. Every
mutation rewrites the whole document through a temporary file and an
atomic rename, so a crash leaves either the old or the new ledger.
"""

import os
import json
import logging
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, List, Dict, Any

from piholevault.models import JobStatus, JobRecord


logger = logging.getLogger(__name__)

JOBS_FILENAME = 'jobs.json'
MAX_ENTRIES = 100


def _utc_timestamp() -> str:
    now = datetime.now(timezone.utc)
    return now.strftime('%Y-%m-%dT%H:%M:%S') + f".{now.microsecond // 1000:03d}Z"


class JobLedger:
    """
    Append/update log of backup attempts, capped at max_entries.
    """

    def __init__(self, data_dir: str, max_entries: int = MAX_ENTRIES):
        """
        Initialize job ledger.

        Args:
            data_dir: Directory holding jobs.json
            max_entries: Number of records retained (oldest evicted first)
        """
        self.path = Path(data_dir) / JOBS_FILENAME
        self.max_entries = max_entries
        self._lock = threading.Lock()

    def upsert(self, job_id: str, status: JobStatus, message: str, **extra) -> JobRecord:
        """
        Create or replace the record for job_id.

        An existing record is replaced in place so ledger order follows the
        first write for that id. The ledger is trimmed after every mutation.

        Args:
            job_id: Attempt identifier
            status: New status
            message: Human readable message
            **extra: Optional filename, size, method, duration

        Returns:
            The stored JobRecord
        """
        record = JobRecord(
            id=job_id,
            status=JobStatus.normalize(status),
            message=message,
            timestamp=_utc_timestamp(),
            extra={k: v for k, v in extra.items() if v is not None}
        )

        with self._lock:
            records = self._read()

            for index, existing in enumerate(records):
                if existing.get('id') == job_id:
                    records[index] = record.to_dict()
                    logger.debug(f"Updated existing job {job_id} status to {record.status.value}")
                    break
            else:
                records.append(record.to_dict())
                logger.debug(f"Created new job {job_id} with status {record.status.value}")

            if len(records) > self.max_entries:
                records = records[-self.max_entries:]

            self._write(records)

        return record

    def list(self) -> List[JobRecord]:
        """Return records in storage order (oldest first)."""
        with self._lock:
            records = self._read()
        return [JobRecord.from_dict(r) for r in records]

    def list_recent(self) -> List[JobRecord]:
        """Return records sorted by timestamp, newest first."""
        return sorted(self.list(), key=lambda r: r.timestamp, reverse=True)

    def get(self, job_id: str) -> Optional[JobRecord]:
        for record in self.list():
            if record.id == job_id:
                return record
        return None

    def clear(self):
        """Remove every record."""
        with self._lock:
            self._write([])
        logger.info("Job history cleared")

    def statistics(self) -> Dict[str, Any]:
        """
        Summarize the ledger.

        Returns:
            Dict with total, successful, failed, running, successRate and lastRun
        """
        records = self.list()
        successful = sum(1 for r in records if r.status is JobStatus.SUCCESS)
        failed = sum(1 for r in records if r.status is JobStatus.ERROR)
        running = sum(1 for r in records if r.status is JobStatus.RUNNING)
        total = len(records)

        return {
            'total': total,
            'successful': successful,
            'failed': failed,
            'running': running,
            'successRate': round(successful / total * 100, 2) if total else 0,
            'lastRun': records[-1].to_dict() if records else None
        }

    def _read(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Failed to read job ledger {self.path}: {e}")
            return []

        if not isinstance(data, list):
            logger.error(f"Job ledger {self.path} is not a JSON array, ignoring it")
            return []

        records = []
        for item in data:
            if not isinstance(item, dict) or 'id' not in item:
                continue
            status = item.get('status')
            try:
                item['status'] = JobStatus.normalize(status).value
            except ValueError:
                logger.warning(f"Unknown job status {status!r} for job {item['id']}, treating it as error")
                item['status'] = JobStatus.ERROR.value
            records.append(item)
        return records

    def _write(self, records: List[Dict[str, Any]]):
        self.path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(prefix='.jobs-', suffix='.json', dir=str(self.path.parent))
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(records, f, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise
