import asyncio
import logging
import os
import shutil
import uuid
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional

from fastapi import Depends, FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from config import Settings, load_settings
from db import get_db_client
from queue_service import QueueService, get_queue
from schema import JobPayload, ProcessResponse, StatusRecord
from status import StatusTracker

logger = logging.getLogger(__name__)

app = FastAPI()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

ALLOWED_VIDEO_TYPES = {"video/mp4", "video/mkv", "video/x-matroska", "video/webm", "video/avi", "video/x-msvideo"}
ALLOWED_EXTENSIONS = {".mp4", ".mkv", ".webm", ".avi"}

# -------------------- Dependencies --------------------


@lru_cache
def get_settings() -> Settings:
    return load_settings()


@lru_cache
def get_tracker() -> StatusTracker:
    return StatusTracker(get_db_client(get_settings()))


@lru_cache
def get_job_queue() -> QueueService:
    return get_queue(get_settings())

# -------------------- Helpers --------------------


def new_job_id() -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    return f"{uuid.uuid4()}_{stamp}"


def is_allowed_video(filename: str, content_type: Optional[str]) -> bool:
    ext = os.path.splitext(filename)[1].lower()
    return ext in ALLOWED_EXTENSIONS or content_type in ALLOWED_VIDEO_TYPES


def stage_upload(upload: UploadFile, input_dir: str) -> str:
    stem, ext = os.path.splitext(os.path.basename(upload.filename))
    dest = os.path.join(input_dir, f"{stem}-{uuid.uuid4()}{ext.lower()}")
    with open(dest, "wb") as out:
        shutil.copyfileobj(upload.file, out)
    return dest

# -------------------- API Endpoints --------------------


@app.post("/process", response_model=ProcessResponse)
async def process_video(
    file: Optional[UploadFile] = File(None),
    settings: Settings = Depends(get_settings),
    tracker: StatusTracker = Depends(get_tracker),
    queue: QueueService = Depends(get_job_queue),
):
    if file is None or not file.filename:
        raise HTTPException(status_code=400, detail="No file uploaded with field name 'file'.")
    if not is_allowed_video(file.filename, file.content_type):
        raise HTTPException(status_code=400, detail="Invalid file type. Allowed: mp4, mkv, webm, avi.")

    job_id = new_job_id()
    job_root = os.path.join(settings.work_root, job_id)
    input_dir = os.path.join(job_root, "in")
    output_dir = os.path.join(job_root, "out")

    try:
        await asyncio.to_thread(os.makedirs, input_dir, exist_ok=True)
        await asyncio.to_thread(os.makedirs, output_dir, exist_ok=True)
        input_path = await asyncio.to_thread(stage_upload, file, input_dir)
    except OSError as e:
        logger.error("[%s] Failed to stage upload: %s", job_id, e)
        await asyncio.to_thread(shutil.rmtree, job_root, ignore_errors=True)
        raise HTTPException(status_code=500, detail="Failed to prepare upload directories")

    job = JobPayload(
        job_id=job_id,
        input_path=input_path,
        output_dir=output_dir,
        input_dir=input_dir,
        original_name=file.filename,
        created_at=datetime.now(timezone.utc).isoformat(),
    )

    try:
        await tracker.create(job_id, created_at=job.created_at)
    except Exception as e:
        logger.error("[%s] Failed to create status record: %s", job_id, e)
        await asyncio.to_thread(shutil.rmtree, job_root, ignore_errors=True)
        raise HTTPException(status_code=500, detail="Failed to set video status")

    try:
        await asyncio.to_thread(queue.send, job.model_dump(), job_id)
    except Exception as e:
        logger.error("[%s] Failed to queue job: %s", job_id, e)
        await asyncio.to_thread(shutil.rmtree, job_root, ignore_errors=True)
        await tracker.fail(job_id, f"Failed to queue job: {e}")
        raise HTTPException(status_code=500, detail="Failed to enqueue job")

    logger.info("[%s] Queued %s", job_id, file.filename)
    return ProcessResponse(success=True, job_id=job_id, message="Video queued for processing.")


@app.get("/status/{job_id}", response_model=StatusRecord)
async def get_job_status(job_id: str, tracker: StatusTracker = Depends(get_tracker)):
    record = await tracker.get(job_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Video ID not found or processing not started.")
    return record


@app.get("/health", response_class=PlainTextResponse)
def health():
    return "OK"
