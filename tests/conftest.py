"""Pytest configuration and shared fixtures for Retail Forecaster tests."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock

import boto3
import pytest
from botocore.exceptions import ClientError

from retail_forecaster.config import ConfigProvider, Settings
from retail_forecaster.models import DataPoint
from retail_forecaster.orchestrator import JobLifecycleOrchestrator
from retail_forecaster.staging import DatasetStager

ROLE_ARN = "arn:aws:iam::123456789012:role/SageMakerExecutionRole-test"
FIXED_EPOCH = 1700000000.0
JOB_NAME = "retail-forecast-1700000000000"

ENV_VARS = [
    "ENVIRONMENT",
    "AWS_REGION",
    "AWS_PROFILE",
    "CONFIG_PARAMETER_NAME",
    "CONFIG_TTL_SECONDS",
    "DATA_BUCKET",
    "SAGEMAKER_ROLE_ARN",
    "BEDROCK_MODEL_ID",
    "SAGEMAKER_INSTANCE_TYPE",
    "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def aws_environment(monkeypatch):
    """Fake credentials so no test can reach a real AWS account."""
    for var in ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_SESSION_TOKEN", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")


@pytest.fixture
def settings() -> Settings:
    """Development settings with explicit defaults."""
    return Settings(
        environment="dev",
        aws_region="us-east-1",
        data_bucket="test-data-bucket",
        sagemaker_role_arn=ROLE_ARN,
    )


@pytest.fixture
def prod_settings() -> Settings:
    return Settings(environment="prod", aws_region="us-east-1")


@pytest.fixture
def sagemaker_client():
    """Real SageMaker client for use with botocore Stubber."""
    return boto3.client("sagemaker", region_name="us-east-1")


@pytest.fixture
def mock_sagemaker():
    return MagicMock()


@pytest.fixture
def mock_runtime():
    return MagicMock()


@pytest.fixture
def mock_s3():
    return MagicMock()


@pytest.fixture
def make_orchestrator(settings, mock_s3):
    """Build an orchestrator with injected clients and a fixed clock."""

    def _make(sagemaker=None, runtime=None, s3=None, config_settings=None):
        active = config_settings or settings
        return JobLifecycleOrchestrator(
            active,
            config_provider=ConfigProvider(active),
            stager=DatasetStager(active, s3_client=s3 or mock_s3),
            sagemaker_client=sagemaker if sagemaker is not None else MagicMock(),
            runtime_client=runtime if runtime is not None else MagicMock(),
            clock=lambda: FIXED_EPOCH,
        )

    return _make


@pytest.fixture
def monthly_history() -> list[DataPoint]:
    return [
        DataPoint(date="2024-01-01", actual=10),
        DataPoint(date="2024-02-01", actual=12),
    ]


def client_error(code: str, message: str = "error", operation: str = "Operation") -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


def describe_job_response(status: str, **extra) -> dict:
    response = {
        "AutoMLJobName": JOB_NAME,
        "AutoMLJobStatus": status,
        "AutoMLJobSecondaryStatus": "Completed" if status == "Completed" else "Starting",
        "CreationTime": datetime(2024, 6, 1, tzinfo=timezone.utc),
    }
    response.update(extra)
    return response


def candidates_response(*names: str) -> dict:
    return {
        "Candidates": [
            {
                "CandidateName": name,
                "CandidateStatus": "Completed",
                "InferenceContainers": [
                    {
                        "Image": "123456789012.dkr.ecr.us-east-1.amazonaws.com/forecast:latest",
                        "ModelDataUrl": f"s3://test-data-bucket/output/{name}/model.tar.gz",
                        "Environment": {"SAGEMAKER_PROGRAM": "inference.py"},
                    }
                ],
            }
            for name in names
        ]
    }
