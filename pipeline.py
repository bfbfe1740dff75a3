"""
Per-job control flow: probe, ladder, transcode, upload, master playlist.

Every failure is turned into an error status record here; working
directories are removed on every exit path.
"""

import asyncio
import logging
import os
import shutil
from dataclasses import dataclass
from typing import List

from config import Settings
from errors import DirectoryError
from ladder import build_ladder
from playlist import PLAYLIST_NAME, generate_master_playlist
from probe import probe_resolution
from schema import TERMINAL_STATUSES, JobOutcome, JobPayload, JobStatus, Rung
from status import StatusTracker
from storage import ObjectStorage, upload_rungs
from transcode import transcode

logger = logging.getLogger(__name__)


@dataclass
class PipelineContext:
    settings: Settings
    tracker: StatusTracker
    storage: ObjectStorage


async def create_rung_directories(rungs: List[Rung]) -> None:
    try:
        await asyncio.gather(
            *(asyncio.to_thread(os.makedirs, rung.dir, exist_ok=True) for rung in rungs)
        )
    except OSError as e:
        raise DirectoryError(f"Failed to prepare output directories: {e}") from e


def _write_text(path: str, content: str) -> None:
    with open(path, "w") as f:
        f.write(content)


def _remove_tree(path: str, job_id: str) -> None:
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.error("[%s] Failed to remove %s: %s", job_id, path, e)


class JobRunner:
    def __init__(self, context: PipelineContext):
        self.context = context

    @property
    def settings(self) -> Settings:
        return self.context.settings

    async def run(self, job: JobPayload) -> JobOutcome:
        job_id = job.job_id
        tracker = self.context.tracker

        # Redelivered job: the first run already wrote a terminal record and
        # cleaned up after itself.
        record = await tracker.get(job_id)
        if record is not None and JobStatus(record.status) in TERMINAL_STATUSES:
            logger.warning("[%s] Job already %s, skipping", job_id, record.status)
            return JobOutcome(job_id=job_id, status=JobStatus(record.status), error=record.error or None)

        logger.info("[%s] Starting job for %s", job_id, job.original_name)

        try:
            await tracker.advance(job_id, JobStatus.CHECKING_RESOLUTION)
            width, height = await probe_resolution(job.input_path, self.settings.ffprobe_bin)
            logger.info("[%s] Source resolution: %dx%d", job_id, width, height)

            rungs = build_ladder(width, height, job.output_dir)
            await create_rung_directories(rungs)

            await tracker.advance(job_id, JobStatus.PROCESSING_AND_UPLOADING)
            # Uploads start only once the encoder has finished writing every rung.
            await transcode(
                job_id,
                job.input_path,
                rungs,
                segment_seconds=self.settings.hls_segment_seconds,
                ffmpeg_bin=self.settings.ffmpeg_bin,
            )
            urls = await upload_rungs(
                rungs,
                job_id,
                self.context.storage,
                concurrency=self.settings.upload_concurrency,
            )

            await tracker.advance(job_id, JobStatus.GENERATING_MASTER)
            master_path = os.path.join(job.output_dir, PLAYLIST_NAME)
            await asyncio.to_thread(_write_text, master_path, generate_master_playlist(rungs))

            await tracker.advance(job_id, JobStatus.UPLOADING_MASTER)
            storage = self.context.storage
            master_url = await asyncio.to_thread(
                storage.upload_file, master_path, storage.key_for(job_id, PLAYLIST_NAME)
            )

            await tracker.complete(job_id, master_url, urls)
            logger.info("[%s] Job completed: %s", job_id, master_url)
            return JobOutcome(job_id=job_id, status=JobStatus.COMPLETED)
        except Exception as e:
            message = str(e) or e.__class__.__name__
            logger.error("[%s] Job failed: %s", job_id, message)
            await tracker.fail(job_id, message)
            return JobOutcome(job_id=job_id, status=JobStatus.ERROR, error=message)
        finally:
            await self.cleanup(job)

    async def cleanup(self, job: JobPayload) -> None:
        paths = [
            job.output_dir,
            job.input_dir,
            os.path.join(self.settings.work_root, job.job_id),
        ]
        for path in paths:
            await asyncio.to_thread(_remove_tree, path, job.job_id)
        logger.info("[%s] Cleaned up working directories", job.job_id)
