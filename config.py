import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv


@dataclass(frozen=True)
class Settings:
    db_name: str
    db_backend: str = "mongodb"
    mongo_url: str = "mongodb://localhost:27017"
    mongo_jobs_collection: str = "jobs"

    aws_access_key: Optional[str] = None
    aws_secret_access_key: Optional[str] = None
    aws_session_token: Optional[str] = None
    aws_region: str = "ap-south-2"

    queue_backend: str = "kafka"
    kafka_bootstrap_servers: str = "localhost:9092"
    kafka_topic: str = "video-processing"
    kafka_consumer_group: str = "video-processors"
    sqs_queue_url: Optional[str] = None

    output_bucket: str = "mediaflow-hls"
    output_prefix: str = "hls/"
    s3_endpoint_url: Optional[str] = None
    s3_public_base_url: Optional[str] = None

    work_root: str = "/tmp"
    worker_concurrency: int = 4
    job_lock_seconds: int = 600
    upload_concurrency: int = 8
    hls_segment_seconds: int = 10
    ffmpeg_bin: str = "ffmpeg"
    ffprobe_bin: str = "ffprobe"
    log_level: str = "INFO"


def load_settings() -> Settings:
    load_dotenv()

    db_name = os.getenv("DB_NAME")
    if not db_name:
        raise ValueError("DB_NAME not defined")

    return Settings(
        db_name=db_name,
        db_backend=os.getenv("DB_BACKEND", "mongodb").lower(),
        mongo_url=os.getenv("MONGO_URL", "mongodb://localhost:27017"),
        mongo_jobs_collection=os.getenv("MONGO_JOBS_COLLECTION", "jobs"),
        aws_access_key=os.getenv("AWS_ACCESS_KEY"),
        aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
        aws_session_token=os.getenv("AWS_SESSION_TOKEN"),
        aws_region=os.getenv("AWS_REGION", "ap-south-2"),
        queue_backend=os.getenv("QUEUE_BACKEND", "kafka").lower(),
        kafka_bootstrap_servers=os.getenv("KAFKA_BOOTSTRAP_SERVERS", "localhost:9092"),
        kafka_topic=os.getenv("KAFKA_TOPIC", "video-processing"),
        kafka_consumer_group=os.getenv("KAFKA_CONSUMER_GROUP", "video-processors"),
        sqs_queue_url=os.getenv("SQS_QUEUE_URL"),
        output_bucket=os.getenv("OUTPUT_BUCKET", "mediaflow-hls"),
        output_prefix=os.getenv("OUTPUT_PREFIX", "hls/"),
        s3_endpoint_url=os.getenv("S3_ENDPOINT_URL"),
        s3_public_base_url=os.getenv("S3_PUBLIC_BASE_URL"),
        work_root=os.getenv("WORK_ROOT", "/tmp"),
        worker_concurrency=int(os.getenv("WORKER_CONCURRENCY", "4")),
        job_lock_seconds=int(os.getenv("JOB_LOCK_SECONDS", "600")),
        upload_concurrency=int(os.getenv("UPLOAD_CONCURRENCY", "8")),
        hls_segment_seconds=int(os.getenv("HLS_SEGMENT_SECONDS", "10")),
        ffmpeg_bin=os.getenv("FFMPEG_BIN", "ffmpeg"),
        ffprobe_bin=os.getenv("FFPROBE_BIN", "ffprobe"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
