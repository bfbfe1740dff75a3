#!/usr/bin/env python3
"""
Worker daemon that pulls HLS transcoding jobs from the queue and runs them.
Multiple workers can run in parallel; each one runs a bounded number of jobs
at a time.
"""

import asyncio
import logging
import signal
from typing import Any, Dict, Optional, Set

from pydantic import ValidationError

from config import Settings, load_settings
from db import get_db_client
from pipeline import JobRunner, PipelineContext
from queue_service import QueueService, get_queue
from schema import JobOutcome, JobPayload, JobStatus
from status import StatusTracker
from storage import ObjectStorage

logger = logging.getLogger(__name__)


class JobEventObserver:
    """
    Queue-level completion/failure handler.

    It only ever writes the terminal state the runner itself reached, so its
    writes and the runner's are interchangeable whichever lands last.
    """

    def __init__(self, tracker: StatusTracker):
        self.tracker = tracker

    async def on_completed(self, job_id: str) -> None:
        try:
            await self.tracker.mark_completed(job_id)
        except Exception as e:
            logger.error("[%s] Could not record completion: %s", job_id, e)

    async def on_failed(self, job_id: str, reason: str) -> None:
        try:
            await self.tracker.fail(job_id, reason)
        except Exception as e:
            logger.error("[%s] Could not record failure (%s): %s", job_id, reason, e)


class WorkerPool:
    def __init__(self, queue: QueueService, runner: JobRunner, observer: JobEventObserver,
                 concurrency: int = 4, wait_seconds: int = 5, retry_delay: float = 5.0):
        self.queue = queue
        self.runner = runner
        self.observer = observer
        self.concurrency = concurrency
        self.wait_seconds = wait_seconds
        self.retry_delay = retry_delay
        self._slots = asyncio.Semaphore(concurrency)
        self._stopping = asyncio.Event()
        self._tasks: Set[asyncio.Task] = set()

    def stop(self) -> None:
        logger.info("Stopping worker pool, waiting for %d running jobs", len(self._tasks))
        self._stopping.set()

    async def _pause(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def run(self) -> None:
        try:
            while not self._stopping.is_set():
                await self._slots.acquire()
                if self._stopping.is_set():
                    self._slots.release()
                    break

                try:
                    messages = await asyncio.to_thread(self.queue.receive, 1, self.wait_seconds)
                except Exception as e:
                    self._slots.release()
                    logger.error("Queue receive failed: %s", e)
                    await self._pause(self.retry_delay)
                    continue

                if not messages:
                    self._slots.release()
                    continue

                task = asyncio.create_task(self._handle(messages[0]))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
        finally:
            if self._tasks:
                await asyncio.gather(*self._tasks, return_exceptions=True)

    async def _handle(self, message: Dict[str, Any]) -> None:
        try:
            await self.process_message(message)
        finally:
            self._slots.release()

    async def process_message(self, message: Dict[str, Any]) -> Optional[JobOutcome]:
        receipt_handle = message["receipt_handle"]
        try:
            job = JobPayload.model_validate(message["body"])
        except ValidationError as e:
            logger.error("Discarding malformed job message: %s", e)
            await self._ack(receipt_handle)
            return None

        logger.info("Received job: %s", job.job_id)
        try:
            outcome = await self.runner.run(job)
        except Exception as e:
            logger.exception("[%s] Job crashed outside the pipeline", job.job_id)
            outcome = JobOutcome(job_id=job.job_id, status=JobStatus.ERROR, error=str(e) or e.__class__.__name__)

        if outcome.succeeded:
            await self.observer.on_completed(job.job_id)
        else:
            await self.observer.on_failed(job.job_id, outcome.error or "Unknown error")

        # One attempt per job: acknowledged whatever the outcome.
        await self._ack(receipt_handle)
        logger.info("Finished job: %s (%s)", job.job_id, outcome.status.value)
        return outcome

    async def _ack(self, receipt_handle: str) -> None:
        try:
            await asyncio.to_thread(self.queue.delete, receipt_handle)
        except Exception as e:
            logger.error("Failed to acknowledge message %s: %s", receipt_handle, e)


def build_context(settings: Settings) -> PipelineContext:
    return PipelineContext(
        settings=settings,
        tracker=StatusTracker(get_db_client(settings)),
        storage=ObjectStorage.from_settings(settings),
    )


async def main():
    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    context = build_context(settings)
    queue = get_queue(settings)
    pool = WorkerPool(
        queue,
        JobRunner(context),
        JobEventObserver(context.tracker),
        concurrency=settings.worker_concurrency,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, pool.stop)

    logger.info("Starting video processing worker (%s queue, concurrency %d)",
                settings.queue_backend, settings.worker_concurrency)
    try:
        await pool.run()
    finally:
        queue.close()
        logger.info("Worker stopped")


if __name__ == "__main__":
    asyncio.run(main())
