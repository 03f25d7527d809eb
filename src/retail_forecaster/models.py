"""Domain types for the forecasting job lifecycle.

Job and endpoint statuses belong to SageMaker. They are modelled as closed
enums and only ever read back from the service, never advanced locally.
"""

from __future__ import annotations

import datetime as dt
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

import pandas as pd
from pydantic import BaseModel, ConfigDict, Field, field_validator


class JobStatus(str, Enum):
    """Autopilot job status."""

    SUBMITTED = "Submitted"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    FAILED = "Failed"
    STOPPING = "Stopping"
    STOPPED = "Stopped"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_JOB_STATUSES


_TERMINAL_JOB_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.STOPPED})


class EndpointStatus(str, Enum):
    """Endpoint status as reported by SageMaker.

    ``DELETED`` is reported when the endpoint can no longer be found and
    ``DELETE_FAILED`` when a cleanup could not delete it.
    """

    OUT_OF_SERVICE = "OutOfService"
    CREATING = "Creating"
    UPDATING = "Updating"
    SYSTEM_UPDATING = "SystemUpdating"
    ROLLING_BACK = "RollingBack"
    IN_SERVICE = "InService"
    DELETING = "Deleting"
    FAILED = "Failed"
    UPDATE_ROLLBACK_FAILED = "UpdateRollbackFailed"
    DELETED = "Deleted"
    DELETE_FAILED = "DeleteFailed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_ENDPOINT_STATUSES


_TERMINAL_ENDPOINT_STATUSES = frozenset(
    {
        EndpointStatus.IN_SERVICE,
        EndpointStatus.FAILED,
        EndpointStatus.DELETED,
        EndpointStatus.DELETE_FAILED,
    }
)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class ResourceNames:
    """Names of the hosting resources derived from an Autopilot job."""

    model_name: str
    endpoint_config_name: str
    endpoint_name: str

    @classmethod
    def from_job_name(cls, job_name: str) -> "ResourceNames":
        return cls(
            model_name=f"{job_name}-model",
            endpoint_config_name=f"{job_name}-config",
            endpoint_name=f"{job_name}-endpoint",
        )

    def to_dict(self) -> dict[str, str]:
        return {
            "modelName": self.model_name,
            "endpointConfigName": self.endpoint_config_name,
            "endpointName": self.endpoint_name,
        }


@dataclass(frozen=True)
class SubmittedJob:
    job_name: str
    job_arn: str
    status: JobStatus = JobStatus.SUBMITTED

    def to_dict(self) -> dict[str, Any]:
        return {"jobName": self.job_name, "jobArn": self.job_arn, "status": self.status.value}


@dataclass(frozen=True)
class ForecastingJob:
    """Snapshot of an Autopilot job."""

    job_name: str
    status: JobStatus
    secondary_status: str | None = None
    best_candidate: str | None = None
    end_time: datetime | None = None
    failure_reason: str | None = None

    def __post_init__(self):
        if self.best_candidate is not None and self.status is not JobStatus.COMPLETED:
            raise ValueError("best_candidate is only set for completed jobs")

    def to_dict(self) -> dict[str, Any]:
        return {
            "jobName": self.job_name,
            "status": self.status.value,
            "secondaryStatus": self.secondary_status,
            "bestCandidate": self.best_candidate,
            "endTime": _iso(self.end_time),
            "failureReason": self.failure_reason,
        }


@dataclass(frozen=True)
class EndpointSnapshot:
    """Snapshot of a hosting endpoint."""

    endpoint_name: str
    status: EndpointStatus
    creation_time: datetime | None = None
    last_modified_time: datetime | None = None
    failure_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "endpointName": self.endpoint_name,
            "status": self.status.value,
            "failureReason": self.failure_reason,
            "creationTime": _iso(self.creation_time),
            "lastModifiedTime": _iso(self.last_modified_time),
        }


@dataclass
class CleanupResult:
    deleted: list[str] = field(default_factory=list)
    message: str = "Resources cleaned up successfully"

    def to_dict(self) -> dict[str, Any]:
        return {"success": True, "message": self.message, "deleted": list(self.deleted)}


class DataPoint(BaseModel):
    """One observation or forecast value.

    History points carry ``actual``; forecast points carry ``forecast`` and a
    null ``actual``.
    """

    model_config = ConfigDict(populate_by_name=True)

    date: dt.date
    actual: float | None = None
    forecast: float | None = None

    @field_validator("date", mode="before")
    @classmethod
    def parse_date(cls, v: Any) -> Any:
        # Front end sends full ISO timestamps; keep the calendar date only.
        if isinstance(v, str):
            return pd.Timestamp(v).date()
        if isinstance(v, datetime):
            return v.date()
        return v

    def to_dict(self) -> dict[str, Any]:
        return {"date": self.date.isoformat(), "actual": self.actual, "forecast": self.forecast}


class ChatMessage(BaseModel):
    role: str = Field(..., pattern="^(user|assistant)$")
    content: str = Field(..., min_length=1)
