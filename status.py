"""Per-job status records, the only channel through which progress is observable.

Every write is a field-level upsert against the status store, so the job
runner and the queue observer can both write without coordination.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import List, Optional

from db import DatabaseService
from schema import STATUS_PROGRESS, TERMINAL_STATUSES, JobStatus, RungUrl, StatusRecord

logger = logging.getLogger(__name__)


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class StatusTracker:
    def __init__(self, db_service: DatabaseService):
        self.db_service = db_service

    async def _set(self, job_id: str, fields: dict) -> None:
        await asyncio.to_thread(self.db_service.update, {"job_id": job_id}, fields)

    async def create(self, job_id: str, created_at: Optional[str] = None) -> StatusRecord:
        record = StatusRecord(
            job_id=job_id,
            status=JobStatus.QUEUED,
            progress=STATUS_PROGRESS[JobStatus.QUEUED],
            error="",
            created_at=created_at or utcnow_iso(),
        )
        await asyncio.to_thread(self.db_service.insert, record.model_dump(exclude_none=True))
        return record

    async def advance(self, job_id: str, status: JobStatus) -> None:
        if status in TERMINAL_STATUSES:
            raise ValueError(f"{status.value} is not an intermediate status")
        await self._set(job_id, {"status": status.value, "progress": STATUS_PROGRESS[status]})
        logger.info("[%s] Status updated: %s (%d%%)", job_id, status.value, STATUS_PROGRESS[status])

    async def complete(self, job_id: str, master_url: str, urls: List[RungUrl]) -> None:
        await self._set(job_id, {
            "status": JobStatus.COMPLETED.value,
            "progress": STATUS_PROGRESS[JobStatus.COMPLETED],
            "master_url": master_url,
            "urls": [u.model_dump() for u in urls],
            "completed_at": utcnow_iso(),
        })
        logger.info("[%s] Status updated: completed (100%%)", job_id)

    async def mark_completed(self, job_id: str) -> None:
        await self._set(job_id, {
            "status": JobStatus.COMPLETED.value,
            "progress": STATUS_PROGRESS[JobStatus.COMPLETED],
        })

    async def fail(self, job_id: str, message: str) -> None:
        await self._set(job_id, {
            "status": JobStatus.ERROR.value,
            "error": message,
            "completed_at": utcnow_iso(),
        })
        logger.info("[%s] Status updated: error (%s)", job_id, message)

    async def get(self, job_id: str) -> Optional[StatusRecord]:
        docs = await asyncio.to_thread(self.db_service.find, {"job_id": job_id}, limit=1)
        if not docs:
            return None
        return StatusRecord.model_validate(docs[0])
