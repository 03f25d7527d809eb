"""Configuration management for Retail Forecaster.

Two layers:

* ``Settings``: process-level settings read from environment variables or a
  YAML file (region, environment, SageMaker sizing, Bedrock model).
* ``AppConfig``: the environment-specific values (data bucket, execution
  role) resolved by ``ConfigProvider`` from SSM Parameter Store in deployed
  environments, or from local defaults in development.
"""

from __future__ import annotations

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Callable

import yaml
from botocore.exceptions import BotoCoreError, ClientError
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .credentials import create_client
from .exceptions import ConfigurationUnavailable

logger = logging.getLogger(__name__)

ALLOWED_ENVIRONMENTS = ("dev", "staging", "prod")
DEFAULT_ROLE_ARN = "arn:aws:iam::123456789012:role/SageMakerExecutionRole-dev"


class AppConfig(BaseModel):
    """Environment-specific configuration shared by every request."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    data_bucket: str = Field(..., alias="dataBucket", min_length=3, description="S3 bucket for datasets and output")
    sagemaker_role_arn: str = Field(..., alias="sageMakerRoleArn", description="SageMaker execution role ARN")
    region: str = Field("us-east-1", description="AWS region")
    environment: str = Field("dev", description="Deployment environment")


class Settings(BaseModel):
    """Process settings for Retail Forecaster."""

    # Environment
    environment: str = Field("dev", description="Deployment environment")
    aws_region: str = Field("us-east-1", description="AWS region")
    aws_profile: str | None = Field(None, description="Named AWS profile for local development")

    # Remote configuration
    config_parameter_name: str | None = Field(None, description="SSM parameter holding AppConfig JSON")
    config_ttl_seconds: float | None = Field(
        None, gt=0, description="Expire the cached AppConfig after this many seconds"
    )

    # Local defaults for AppConfig
    data_bucket: str | None = Field(None, description="Default S3 data bucket")
    sagemaker_role_arn: str | None = Field(None, description="Default SageMaker execution role")

    # Autopilot job settings
    job_prefix: str = Field("retail-forecast-", description="Prefix for AutoML job names")
    default_target_field: str = Field("value", description="Default target column")
    max_candidates: int = Field(10, ge=1, description="Maximum Autopilot candidates")
    max_runtime_per_training_job_seconds: int = Field(
        3600, ge=1, description="Maximum runtime per candidate training job"
    )

    # Hosting settings
    instance_type: str = Field("ml.m5.large", description="Endpoint instance type")
    initial_instance_count: int = Field(1, ge=1, description="Endpoint instance count")

    # Storage
    upload_url_expiry_seconds: int = Field(3600, ge=1, description="Presigned URL lifetime")

    # Chat assistant
    bedrock_model_id: str = Field(
        "anthropic.claude-3-haiku-20240307-v1:0", description="Bedrock model for chat"
    )
    chat_max_tokens: int = Field(1024, ge=1, description="Maximum tokens per chat response")
    chat_temperature: float = Field(0.5, ge=0.0, le=1.0, description="Chat sampling temperature")

    # API settings
    api_host: str = Field("0.0.0.0", description="API host")
    api_port: int = Field(8000, description="API port")

    # Logging
    log_level: str = Field("INFO", description="Logging level")

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment values."""
        if v not in ALLOWED_ENVIRONMENTS:
            raise ValueError(f"Environment must be one of: {list(ALLOWED_ENVIRONMENTS)}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level values."""
        allowed_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in allowed_levels:
            raise ValueError(f"Log level must be one of: {allowed_levels}")
        return v.upper()

    @property
    def is_deployed(self) -> bool:
        """True outside local development; deployed environments read SSM."""
        return self.environment != "dev"

    @property
    def parameter_name(self) -> str:
        return self.config_parameter_name or f"/retail-forecasting/{self.environment}/config"

    @property
    def has_usable_defaults(self) -> bool:
        """Defaults count as usable in deployed environments only when set explicitly."""
        return bool(self.data_bucket and self.sagemaker_role_arn)

    def default_app_config(self) -> AppConfig:
        return AppConfig(
            data_bucket=self.data_bucket or f"retail-forecasting-data-{self.environment}",
            sagemaker_role_arn=self.sagemaker_role_arn or DEFAULT_ROLE_ARN,
            region=self.aws_region,
            environment=self.environment,
        )

    @classmethod
    def from_env(cls) -> "Settings":
        """Load settings from environment variables."""
        data: dict[str, Any] = {
            "environment": os.environ.get("ENVIRONMENT", "dev"),
            "aws_region": os.environ.get("AWS_REGION", "us-east-1"),
            "aws_profile": os.environ.get("AWS_PROFILE"),
            "config_parameter_name": os.environ.get("CONFIG_PARAMETER_NAME"),
            "data_bucket": os.environ.get("DATA_BUCKET"),
            "sagemaker_role_arn": os.environ.get("SAGEMAKER_ROLE_ARN"),
            "log_level": os.environ.get("LOG_LEVEL", "INFO"),
        }
        if os.environ.get("CONFIG_TTL_SECONDS"):
            data["config_ttl_seconds"] = float(os.environ["CONFIG_TTL_SECONDS"])
        if os.environ.get("BEDROCK_MODEL_ID"):
            data["bedrock_model_id"] = os.environ["BEDROCK_MODEL_ID"]
        if os.environ.get("SAGEMAKER_INSTANCE_TYPE"):
            data["instance_type"] = os.environ["SAGEMAKER_INSTANCE_TYPE"]

        return cls(**data)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file.

        Args:
            path: Path to the YAML settings file

        Returns:
            Settings instance loaded from the file
        """
        config_path = Path(path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        # Try to infer environment from filename if not provided
        if "environment" not in data:
            stem = config_path.stem.lower()
            if stem in ALLOWED_ENVIRONMENTS:
                data["environment"] = stem
            else:
                data["environment"] = os.environ.get("ENVIRONMENT", "dev")

        data.setdefault("aws_profile", os.getenv("AWS_PROFILE"))

        return cls(**data)


def load_settings(config_path: Path | None = None) -> Settings:
    """Load settings from ``config_path`` if given, else from the environment."""
    if config_path is not None:
        return Settings.from_yaml(config_path)
    return Settings.from_env()


class ConfigProvider:
    """Resolves and memoizes ``AppConfig``.

    The cached value lives as long as the provider (one per application) and
    is refreshed only when ``config_ttl_seconds`` is set and has elapsed, or
    after ``reset()``. Two requests racing to fill an empty cache both compute
    the same value.
    """

    def __init__(
        self,
        settings: Settings,
        ssm_client: Any | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings
        self._ssm_client = ssm_client
        self._clock = clock
        self._cached: AppConfig | None = None
        self._cached_at: float | None = None

    @property
    def ssm_client(self):
        """Lazy-loaded SSM client."""
        if self._ssm_client is None:
            self._ssm_client = create_client(self.settings, "ssm")
        return self._ssm_client

    def get_config(self) -> AppConfig:
        if self._cached is not None and not self._expired():
            return self._cached

        config, cacheable = self._resolve()
        # Fallback defaults are served uncached so the next call retries SSM.
        if cacheable:
            self._cached = config
            self._cached_at = self._clock()
        return config

    def reset(self) -> None:
        self._cached = None
        self._cached_at = None

    def _expired(self) -> bool:
        ttl = self.settings.config_ttl_seconds
        if ttl is None or self._cached_at is None:
            return False
        return self._clock() - self._cached_at >= ttl

    def _resolve(self) -> tuple[AppConfig, bool]:
        if not self.settings.is_deployed:
            logger.debug("Using local default configuration for %s", self.settings.environment)
            return self.settings.default_app_config(), True

        name = self.settings.parameter_name
        try:
            response = self.ssm_client.get_parameter(Name=name, WithDecryption=True)
        except (ClientError, BotoCoreError) as e:
            logger.error("Error fetching configuration from SSM parameter %s: %s", name, e)
            reason = f"Failed to read configuration parameter {name}: {e}"
            return self._fallback(name, reason, cause=e), False

        value = response.get("Parameter", {}).get("Value")
        if not value:
            return self._fallback(name, f"No configuration found in SSM for {name}"), False

        try:
            data = json.loads(value)
            if not isinstance(data, dict):
                raise ValueError("configuration must be a JSON object")
            base = {"region": self.settings.aws_region, "environment": self.settings.environment}
            config = AppConfig.model_validate({**base, **data})
        except (ValueError, ValidationError) as e:
            logger.error("Invalid configuration in SSM parameter %s: %s", name, e)
            return self._fallback(name, f"Invalid configuration in {name}: {e}", cause=e), False

        logger.info("Loaded configuration from SSM parameter %s", name)
        return config, True

    def _fallback(self, name: str, reason: str, cause: BaseException | None = None) -> AppConfig:
        if not self.settings.has_usable_defaults:
            raise ConfigurationUnavailable(reason, parameter_name=name, cause=cause)
        logger.warning("%s; using default config", reason)
        return self.settings.default_app_config()


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging for the CLI and API server."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    # botocore is chatty at DEBUG
    logging.getLogger("botocore").setLevel(logging.WARNING)
