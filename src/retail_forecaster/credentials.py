"""AWS credential selection.

Local development with ``AWS_PROFILE`` set uses that named profile, which is
how SSO logins are wired in ``~/.aws/config``. Everywhere else the default
provider chain applies (environment, container or instance role).
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING, Any

import boto3

if TYPE_CHECKING:
    from .config import Settings

logger = logging.getLogger(__name__)


def resolve_profile(settings: "Settings") -> str | None:
    """Return the profile to use, or None for the default provider chain."""
    if settings.is_deployed:
        return None
    return settings.aws_profile or os.environ.get("AWS_PROFILE") or None


def build_session(settings: "Settings") -> boto3.Session:
    profile = resolve_profile(settings)
    if profile:
        logger.debug("Using AWS profile %s", profile)
        return boto3.Session(profile_name=profile, region_name=settings.aws_region)
    logger.debug("Using default AWS credential provider chain")
    return boto3.Session(region_name=settings.aws_region)


def create_client(settings: "Settings", service: str, session: boto3.Session | None = None) -> Any:
    """Create a boto3 client for ``service`` in the configured region."""
    session = session or build_session(settings)
    return session.client(service, region_name=settings.aws_region)
