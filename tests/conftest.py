import os
import time
from typing import Any, Dict, List, Optional

import pytest
from botocore.exceptions import ClientError

from config import Settings
from db import DatabaseService
from pipeline import JobRunner, PipelineContext
from queue_service import QueueService
from schema import JobPayload
from status import StatusTracker
from storage import ObjectStorage


class MemoryDBService(DatabaseService):
    """Status store keeping documents in a dict and every status it was given."""

    def __init__(self):
        self.docs: Dict[str, Dict[str, Any]] = {}
        self.history: Dict[str, List[str]] = {}
        self.fail_writes = False

    def _record(self, job_id: str, data: Dict[str, Any]) -> None:
        if "status" in data:
            self.history.setdefault(job_id, []).append(data["status"])

    def insert(self, data, **kwargs):
        if self.fail_writes:
            raise RuntimeError("MemoryDB insert failed: store unavailable")
        if data["job_id"] in self.docs:
            raise RuntimeError("MemoryDB insert failed: item with this job_id already exists")
        self.docs[data["job_id"]] = dict(data)
        self._record(data["job_id"], data)
        return {"success": True}

    def find(self, query, **kwargs):
        doc = self.docs.get(query["job_id"])
        return [dict(doc)] if doc else []

    def update(self, query, update_data, **kwargs):
        if self.fail_writes:
            raise RuntimeError("MemoryDB update failed: store unavailable")
        job_id = query["job_id"]
        self.docs.setdefault(job_id, {"job_id": job_id}).update(update_data)
        self._record(job_id, update_data)
        return {"success": True}


class FakeS3Client:
    def __init__(self, fail_on: Optional[str] = None):
        self.fail_on = fail_on
        self.uploads: List[Dict[str, Any]] = []

    def upload_file(self, Filename, Bucket, Key, ExtraArgs=None):
        if self.fail_on and self.fail_on in Key:
            raise ClientError({"Error": {"Code": "500", "Message": "Internal error"}}, "PutObject")
        self.uploads.append({"filename": Filename, "bucket": Bucket, "key": Key, "extra": ExtraArgs})


class FakeQueue(QueueService):
    def __init__(self, bodies=None, fail_send: bool = False):
        self.pending = [
            {"body": body, "receipt_handle": f"receipt-{i}"}
            for i, body in enumerate(bodies or [])
        ]
        self.sent: List[Dict[str, Any]] = []
        self.deleted: List[str] = []
        self.fail_send = fail_send

    def send(self, message, key=None):
        if self.fail_send:
            raise RuntimeError("SQS send failed: queue unavailable")
        self.sent.append({"message": message, "key": key})
        return {"message_id": str(len(self.sent))}

    def receive(self, max_messages=1, wait_seconds=5):
        if not self.pending:
            time.sleep(0.01)
            return []
        batch, self.pending = self.pending[:max_messages], self.pending[max_messages:]
        return batch

    def delete(self, receipt_handle):
        self.deleted.append(receipt_handle)
        return True


@pytest.fixture
def settings(tmp_path):
    return Settings(db_name="test-jobs", work_root=str(tmp_path), output_bucket="test-bucket",
                    output_prefix="hls/", aws_region="us-east-1")


@pytest.fixture
def db_service():
    return MemoryDBService()


@pytest.fixture
def tracker(db_service):
    return StatusTracker(db_service)


@pytest.fixture
def s3_client():
    return FakeS3Client()


@pytest.fixture
def storage(s3_client):
    return ObjectStorage(s3_client, bucket="test-bucket", prefix="hls/", region="us-east-1")


@pytest.fixture
def context(settings, tracker, storage):
    return PipelineContext(settings=settings, tracker=tracker, storage=storage)


@pytest.fixture
def runner(context):
    return JobRunner(context)


@pytest.fixture
def make_job(settings):
    def _make_job(job_id: str = "job-1") -> JobPayload:
        job_root = os.path.join(settings.work_root, job_id)
        input_dir = os.path.join(job_root, "in")
        output_dir = os.path.join(job_root, "out")
        os.makedirs(input_dir)
        os.makedirs(output_dir)
        input_path = os.path.join(input_dir, "clip-1234.mp4")
        with open(input_path, "wb") as f:
            f.write(b"\x00\x00\x00\x18ftypmp42")
        return JobPayload(
            job_id=job_id,
            input_path=input_path,
            output_dir=output_dir,
            input_dir=input_dir,
            original_name="clip.mp4",
            created_at="2026-01-01T00:00:00+00:00",
        )
    return _make_job


@pytest.fixture
def make_storage():
    def _make_storage(fail_on: Optional[str] = None, **kwargs):
        client = FakeS3Client(fail_on=fail_on)
        return ObjectStorage(client, bucket=kwargs.pop("bucket", "media"), **kwargs), client
    return _make_storage


@pytest.fixture
def make_queue():
    return FakeQueue
