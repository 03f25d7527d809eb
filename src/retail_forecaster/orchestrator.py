"""Forecasting job lifecycle on SageMaker.

Drives one Autopilot forecasting run through submission, polling, hosting,
invocation and teardown. Every operation is a short sequence of blocking
boto3 calls. Nothing is retried and nothing is rolled back: a failing step
raises a typed error describing what was left behind.
"""

from __future__ import annotations

import json
import logging
import time
from datetime import date
from typing import Any, Callable, Sequence

import boto3
import pandas as pd
from botocore.exceptions import BotoCoreError, ClientError

from .config import ConfigProvider, Settings
from .credentials import build_session
from .exceptions import (
    CleanupPartiallyFailed,
    DeploymentFailed,
    EndpointStatusUnavailable,
    InvalidRequest,
    InvocationFailed,
    JobStatusUnavailable,
    MalformedForecastResponse,
    NoCandidateAvailable,
    SubmissionFailed,
)
from .models import (
    CleanupResult,
    DataPoint,
    EndpointSnapshot,
    EndpointStatus,
    ForecastingJob,
    JobStatus,
    ResourceNames,
    SubmittedJob,
)
from .staging import DatasetStager

logger = logging.getLogger(__name__)

AWS_ERRORS = (ClientError, BotoCoreError)

VARIANT_NAME = "AllTraffic"
NUM_SAMPLES = 50
OUTPUT_TYPES = ["mean", "quantiles", "samples"]
QUANTILES = ["0.1", "0.5", "0.9"]


def build_invocation_payload(history: Sequence[DataPoint], horizon: int) -> dict[str, Any]:
    """Build the DeepAR-style request body for ``history``.

    ``history`` must already be in date order; missing actuals become 0.
    """
    return {
        "instances": [
            {
                "start": history[0].date.isoformat(),
                "target": [point.actual if point.actual is not None else 0.0 for point in history],
            }
        ],
        "configuration": {
            "num_samples": NUM_SAMPLES,
            "output_types": list(OUTPUT_TYPES),
            "quantiles": list(QUANTILES),
            "prediction_length": horizon,
        },
    }


def forecast_dates(last_date: date, horizon: int) -> list[date]:
    """Dates one calendar month apart, starting the month after ``last_date``.

    Each date is offset from ``last_date`` directly so month-end clamping
    (Jan 31 -> Feb 29) does not drift into later periods.
    """
    anchor = pd.Timestamp(last_date)
    return [(anchor + pd.DateOffset(months=step)).date() for step in range(1, horizon + 1)]


def parse_forecast_response(raw: bytes | str, endpoint_name: str, horizon: int) -> list[float]:
    """Extract ``predictions[0].mean`` from an invocation body."""
    try:
        body = json.loads(raw)
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedForecastResponse(
            f"Endpoint returned a non-JSON body: {e}", endpoint_name=endpoint_name
        ) from e

    predictions = body.get("predictions") if isinstance(body, dict) else None
    if not isinstance(predictions, list) or not predictions:
        raise MalformedForecastResponse(
            "Response has no predictions", endpoint_name=endpoint_name
        )

    first = predictions[0]
    mean = first.get("mean") if isinstance(first, dict) else None
    if not isinstance(mean, list):
        raise MalformedForecastResponse(
            "Response has no mean forecast", endpoint_name=endpoint_name
        )
    if len(mean) != horizon:
        raise MalformedForecastResponse(
            f"Expected {horizon} forecast values, got {len(mean)}",
            endpoint_name=endpoint_name,
            details={"expected": horizon, "received": len(mean)},
        )
    if not all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in mean):
        raise MalformedForecastResponse(
            "Forecast values must be numeric", endpoint_name=endpoint_name
        )
    return [float(v) for v in mean]


def _ordered(history: Sequence[DataPoint]) -> list[DataPoint]:
    return sorted(history, key=lambda point: point.date)


def _is_missing_endpoint(error: ClientError) -> bool:
    err = error.response.get("Error", {})
    return err.get("Code") == "ValidationException" and "Could not find" in err.get("Message", "")


class JobLifecycleOrchestrator:
    """Runs the Autopilot forecasting workflow.

    Job status moves Submitted -> InProgress -> Completed | Failed | Stopped
    on the SageMaker side; this class only observes it. Hosting resources are
    created model -> endpoint config -> endpoint and deleted in reverse.
    """

    def __init__(
        self,
        settings: Settings,
        config_provider: ConfigProvider | None = None,
        stager: DatasetStager | None = None,
        sagemaker_client: Any | None = None,
        runtime_client: Any | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self.config_provider = config_provider or ConfigProvider(settings)
        self._stager = stager
        self._sagemaker_client = sagemaker_client
        self._runtime_client = runtime_client
        self._session: boto3.Session | None = None
        self._clock = clock

    @property
    def session(self) -> boto3.Session:
        if self._session is None:
            self._session = build_session(self.settings)
        return self._session

    @property
    def sagemaker_client(self):
        """Lazy-loaded SageMaker client."""
        if self._sagemaker_client is None:
            self._sagemaker_client = self.session.client(
                "sagemaker", region_name=self.settings.aws_region
            )
        return self._sagemaker_client

    @property
    def runtime_client(self):
        """Lazy-loaded SageMaker runtime client."""
        if self._runtime_client is None:
            self._runtime_client = self.session.client(
                "sagemaker-runtime", region_name=self.settings.aws_region
            )
        return self._runtime_client

    @property
    def stager(self) -> DatasetStager:
        if self._stager is None:
            self._stager = DatasetStager(
                self.settings, s3_client=self.session.client("s3", region_name=self.settings.aws_region)
            )
        return self._stager

    def new_job_name(self) -> str:
        # Millisecond timestamps can collide under concurrent submission.
        return f"{self.settings.job_prefix}{int(self._clock() * 1000)}"

    # Submission and polling

    def submit_job(self, history: Sequence[DataPoint], target_field: str | None = None) -> SubmittedJob:
        """Stage ``history`` and start an Autopilot forecasting job.

        Raises:
            InvalidRequest: history is empty
            ConfigurationUnavailable: configuration could not be resolved
            SubmissionFailed: staging or job creation failed
        """
        if not history:
            raise InvalidRequest("History must contain at least one data point")

        target_field = target_field or self.settings.default_target_field
        config = self.config_provider.get_config()
        job_name = self.new_job_name()

        try:
            dataset_uri = self.stager.upload(
                _ordered(history), config.data_bucket, f"input/{job_name}.csv", target_field
            )
        except AWS_ERRORS as e:
            logger.error("Error staging dataset for %s: %s", job_name, e)
            raise SubmissionFailed(
                f"Failed to stage dataset: {e}", job_name=job_name, cause=e
            ) from e

        logger.info("Creating AutoML job %s from %s", job_name, dataset_uri)
        try:
            response = self.sagemaker_client.create_auto_ml_job(
                AutoMLJobName=job_name,
                ProblemType="Forecasting",
                AutoMLJobConfig={
                    "CompletionCriteria": {
                        "MaxCandidates": self.settings.max_candidates,
                        "MaxRuntimePerTrainingJobInSeconds": self.settings.max_runtime_per_training_job_seconds,
                    }
                },
                InputDataConfig=[
                    {
                        "DataSource": {
                            "S3DataSource": {"S3DataType": "S3Prefix", "S3Uri": dataset_uri}
                        },
                        "TargetAttributeName": target_field,
                    }
                ],
                OutputDataConfig={"S3OutputPath": f"s3://{config.data_bucket}/output/"},
                RoleArn=config.sagemaker_role_arn,
            )
        except AWS_ERRORS as e:
            logger.error("Error creating forecasting job %s: %s", job_name, e)
            raise SubmissionFailed(
                f"Failed to create forecasting job: {e}", job_name=job_name, cause=e
            ) from e

        return SubmittedJob(job_name=job_name, job_arn=response["AutoMLJobArn"])

    def poll_job(self, job_name: str) -> ForecastingJob:
        """Describe ``job_name``; completed jobs also report their best candidate."""
        try:
            response = self.sagemaker_client.describe_auto_ml_job(AutoMLJobName=job_name)
            status = JobStatus(response["AutoMLJobStatus"])
            best_candidate = None
            if status is JobStatus.COMPLETED:
                candidates = self._list_candidates(job_name)
                if candidates:
                    best_candidate = candidates[0].get("CandidateName")
        except AWS_ERRORS as e:
            logger.error("Error getting job status for %s: %s", job_name, e)
            raise JobStatusUnavailable(
                f"Failed to get job status: {e}", job_name=job_name, cause=e
            ) from e
        except (KeyError, ValueError) as e:
            raise JobStatusUnavailable(
                f"Unrecognised job description: {e}", job_name=job_name
            ) from e

        return ForecastingJob(
            job_name=job_name,
            status=status,
            secondary_status=response.get("AutoMLJobSecondaryStatus"),
            best_candidate=best_candidate,
            end_time=response.get("EndTime"),
            failure_reason=response.get("FailureReason"),
        )

    def _list_candidates(self, job_name: str) -> list[dict[str, Any]]:
        # Vendor order is kept; the first candidate is treated as the best.
        response = self.sagemaker_client.list_candidates_for_auto_ml_job(AutoMLJobName=job_name)
        return response.get("Candidates") or []

    # Hosting

    def deploy_best_model(self, job_name: str) -> ResourceNames:
        """Create model, endpoint config and endpoint for the best candidate.

        Returns as soon as the endpoint is accepted; it is still Creating.

        Raises:
            NoCandidateAvailable: job is not Completed or has no usable
                candidate. No resources are created.
            DeploymentFailed: a create call failed. Resources created by
                earlier steps are left in place and listed on the error.
        """
        try:
            description = self.sagemaker_client.describe_auto_ml_job(AutoMLJobName=job_name)
        except AWS_ERRORS as e:
            logger.error("Error describing job %s before deployment: %s", job_name, e)
            raise DeploymentFailed(
                f"Failed to describe job {job_name}: {e}", step="describe_job", cause=e
            ) from e

        status = description.get("AutoMLJobStatus")
        if status != JobStatus.COMPLETED.value:
            raise NoCandidateAvailable(
                f"Job {job_name} is {status}, not Completed", job_name=job_name, status=status
            )

        try:
            candidates = self._list_candidates(job_name)
        except AWS_ERRORS as e:
            logger.error("Error listing candidates for %s: %s", job_name, e)
            raise DeploymentFailed(
                f"Failed to list candidates for {job_name}: {e}", step="list_candidates", cause=e
            ) from e

        best = candidates[0] if candidates else None
        if not best or not best.get("CandidateName"):
            raise NoCandidateAvailable(
                "No candidates found for the job", job_name=job_name, status=status
            )
        containers = best.get("InferenceContainers") or []
        if not containers:
            raise NoCandidateAvailable(
                f"Candidate {best['CandidateName']} has no inference container",
                job_name=job_name,
                status=status,
            )

        config = self.config_provider.get_config()
        names = ResourceNames.from_job_name(job_name)
        container = containers[0]
        primary_container = {
            key: container[key] for key in ("Image", "ModelDataUrl", "Environment") if container.get(key)
        }

        steps: list[tuple[str, str, Callable[[], Any]]] = [
            (
                "model",
                names.model_name,
                lambda: self.sagemaker_client.create_model(
                    ModelName=names.model_name,
                    PrimaryContainer=primary_container,
                    ExecutionRoleArn=config.sagemaker_role_arn,
                ),
            ),
            (
                "endpoint_config",
                names.endpoint_config_name,
                lambda: self.sagemaker_client.create_endpoint_config(
                    EndpointConfigName=names.endpoint_config_name,
                    ProductionVariants=[
                        {
                            "VariantName": VARIANT_NAME,
                            "ModelName": names.model_name,
                            "InitialInstanceCount": self.settings.initial_instance_count,
                            "InstanceType": self.settings.instance_type,
                        }
                    ],
                ),
            ),
            (
                "endpoint",
                names.endpoint_name,
                lambda: self.sagemaker_client.create_endpoint(
                    EndpointName=names.endpoint_name,
                    EndpointConfigName=names.endpoint_config_name,
                ),
            ),
        ]

        logger.info("Deploying candidate %s from %s", best["CandidateName"], job_name)
        created: list[str] = []
        for step, name, create in steps:
            try:
                create()
            except AWS_ERRORS as e:
                logger.error("Error creating %s %s: %s", step, name, e)
                raise DeploymentFailed(
                    f"Failed to create {step} {name}: {e}", step=step, created=created, cause=e
                ) from e
            created.append(name)
            logger.info("Created %s %s", step, name)

        return names

    def get_endpoint_status(self, endpoint_name: str) -> EndpointSnapshot:
        try:
            response = self.sagemaker_client.describe_endpoint(EndpointName=endpoint_name)
        except ClientError as e:
            if _is_missing_endpoint(e):
                return EndpointSnapshot(endpoint_name=endpoint_name, status=EndpointStatus.DELETED)
            logger.error("Error getting endpoint status for %s: %s", endpoint_name, e)
            raise EndpointStatusUnavailable(
                f"Failed to get endpoint status: {e}", endpoint_name=endpoint_name, cause=e
            ) from e
        except BotoCoreError as e:
            logger.error("Error getting endpoint status for %s: %s", endpoint_name, e)
            raise EndpointStatusUnavailable(
                f"Failed to get endpoint status: {e}", endpoint_name=endpoint_name, cause=e
            ) from e

        try:
            status = EndpointStatus(response["EndpointStatus"])
        except (KeyError, ValueError) as e:
            raise EndpointStatusUnavailable(
                f"Unrecognised endpoint description: {e}", endpoint_name=endpoint_name
            ) from e

        return EndpointSnapshot(
            endpoint_name=endpoint_name,
            status=status,
            creation_time=response.get("CreationTime"),
            last_modified_time=response.get("LastModifiedTime"),
            failure_reason=response.get("FailureReason"),
        )

    # Inference

    def forecast(self, endpoint_name: str, history: Sequence[DataPoint], horizon: int) -> list[DataPoint]:
        """Forecast ``horizon`` monthly periods after the last history date."""
        if not history:
            raise InvalidRequest("History must contain at least one data point")
        if horizon < 1:
            raise InvalidRequest("Forecast horizon must be at least 1")

        ordered = _ordered(history)
        payload = build_invocation_payload(ordered, horizon)

        try:
            response = self.runtime_client.invoke_endpoint(
                EndpointName=endpoint_name,
                ContentType="application/json",
                Accept="application/json",
                Body=json.dumps(payload).encode("utf-8"),
            )
            raw = response["Body"].read()
        except AWS_ERRORS as e:
            logger.error("Error invoking endpoint %s: %s", endpoint_name, e)
            raise InvocationFailed(
                f"Failed to invoke endpoint {endpoint_name}: {e}", endpoint_name=endpoint_name, cause=e
            ) from e

        values = parse_forecast_response(raw, endpoint_name, horizon)
        dates = forecast_dates(ordered[-1].date, horizon)
        return [DataPoint(date=d, actual=None, forecast=v) for d, v in zip(dates, values)]

    # Teardown

    def cleanup(self, endpoint_name: str, endpoint_config_name: str, model_name: str) -> CleanupResult:
        """Delete endpoint, endpoint config and model, in that order.

        Stops at the first failing deletion; later steps are not attempted.
        Deletes are accepted asynchronously by SageMaker.

        Raises:
            CleanupPartiallyFailed: a deletion failed
        """
        steps: list[tuple[str, str, Callable[[], Any]]] = [
            ("endpoint", endpoint_name, lambda: self.sagemaker_client.delete_endpoint(EndpointName=endpoint_name)),
            (
                "endpoint_config",
                endpoint_config_name,
                lambda: self.sagemaker_client.delete_endpoint_config(EndpointConfigName=endpoint_config_name),
            ),
            ("model", model_name, lambda: self.sagemaker_client.delete_model(ModelName=model_name)),
        ]

        result = CleanupResult()
        for index, (step, name, delete) in enumerate(steps):
            try:
                delete()
            except AWS_ERRORS as e:
                logger.error("Error deleting %s %s: %s", step, name, e)
                error = CleanupPartiallyFailed(
                    f"Failed to delete {step} {name}: {e}",
                    failed_step=step,
                    deleted=result.deleted,
                    remaining=[remaining for _, remaining, _ in steps[index:]],
                    cause=e,
                )
                if step == "endpoint":
                    error.details["endpoint_status"] = EndpointStatus.DELETE_FAILED.value
                raise error from e
            result.deleted.append(name)
            logger.info("Deleted %s %s", step, name)

        return result
