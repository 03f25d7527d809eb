"""Retail Forecaster - demand forecasting glue for SageMaker Autopilot.

This package drives AutoML forecasting jobs on Amazon SageMaker, hosts the
best candidate, serves forecasts to the web front end and forwards chat
requests to Amazon Bedrock.
"""

__version__ = "0.1.0"

from .config import AppConfig, ConfigProvider, Settings
from .exceptions import ErrorKind, RetailForecastError
from .orchestrator import JobLifecycleOrchestrator

__all__ = [
    "AppConfig",
    "ConfigProvider",
    "ErrorKind",
    "JobLifecycleOrchestrator",
    "RetailForecastError",
    "Settings",
]
