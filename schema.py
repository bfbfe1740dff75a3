from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class JobStatus(str, Enum):
    QUEUED = "queued"
    CHECKING_RESOLUTION = "checking_resolution"
    PROCESSING_AND_UPLOADING = "processing_and_uploading"
    GENERATING_MASTER = "generating_master"
    UPLOADING_MASTER = "uploading_master"
    COMPLETED = "completed"
    ERROR = "error"


# Coarse milestone markers, not proportional to elapsed work.
STATUS_PROGRESS = {
    JobStatus.QUEUED: 0,
    JobStatus.CHECKING_RESOLUTION: 5,
    JobStatus.PROCESSING_AND_UPLOADING: 20,
    JobStatus.GENERATING_MASTER: 20,
    JobStatus.UPLOADING_MASTER: 20,
    JobStatus.COMPLETED: 100,
}

TERMINAL_STATUSES = {JobStatus.COMPLETED, JobStatus.ERROR}


class JobPayload(BaseModel):
    job_id: str
    input_path: str
    output_dir: str
    input_dir: str
    original_name: str
    created_at: str


class Rung(BaseModel):
    model_config = ConfigDict(frozen=True)

    dir: str
    height: int
    width: int

    @property
    def name(self) -> str:
        return f"{self.height}p"


class RungUrl(BaseModel):
    rung: int
    url: str


class StatusRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True, use_enum_values=True)

    job_id: str = Field(alias="jobId")
    status: JobStatus
    progress: int
    error: str = ""
    master_url: Optional[str] = Field(default=None, alias="masterUrl")
    urls: Optional[List[RungUrl]] = None
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    completed_at: Optional[str] = Field(default=None, alias="completedAt")


class JobOutcome(BaseModel):
    job_id: str
    status: JobStatus
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == JobStatus.COMPLETED


class ProcessResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    job_id: str = Field(alias="jobId")
    message: str
