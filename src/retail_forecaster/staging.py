"""Dataset staging on S3.

Writes history as a CSV for Autopilot and issues presigned upload URLs for
files the browser sends directly to the data bucket.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

import pandas as pd
from botocore.exceptions import BotoCoreError, ClientError

from .config import Settings
from .credentials import create_client
from .exceptions import InvalidRequest, UploadUrlFailed
from .models import DataPoint

logger = logging.getLogger(__name__)

TIMESTAMP_COLUMN = "timestamp"
UPLOAD_PREFIX = "uploads/"


def history_to_frame(history: Sequence[DataPoint], target_field: str) -> pd.DataFrame:
    """Build the training frame; missing actuals become 0."""
    if target_field == TIMESTAMP_COLUMN:
        raise InvalidRequest(f"Target field cannot be named {TIMESTAMP_COLUMN!r}")
    frame = pd.DataFrame(
        {
            TIMESTAMP_COLUMN: [point.date.isoformat() for point in history],
            target_field: [point.actual if point.actual is not None else 0.0 for point in history],
        }
    )
    return frame.sort_values(TIMESTAMP_COLUMN, kind="stable").reset_index(drop=True)


class DatasetStager:
    """Uploads training data and hands out presigned URLs."""

    def __init__(self, settings: Settings, s3_client: Any | None = None):
        self.settings = settings
        self._s3_client = s3_client

    @property
    def s3_client(self):
        """Lazy-loaded S3 client."""
        if self._s3_client is None:
            self._s3_client = create_client(self.settings, "s3")
        return self._s3_client

    def upload(
        self,
        history: Sequence[DataPoint],
        bucket: str,
        key: str,
        target_field: str = "value",
    ) -> str:
        """Upload ``history`` as CSV and return its ``s3://`` URI.

        Raises:
            ClientError, BotoCoreError: propagated to the caller, which
                decides how to report them.
        """
        if not history:
            raise InvalidRequest("History must contain at least one data point")

        body = history_to_frame(history, target_field).to_csv(index=False)
        logger.info("Uploading %d rows to s3://%s/%s", len(history), bucket, key)
        self.s3_client.put_object(
            Bucket=bucket,
            Key=key,
            Body=body.encode("utf-8"),
            ContentType="text/csv",
        )
        return f"s3://{bucket}/{key}"

    def get_upload_url(self, filename: str, content_type: str, bucket: str) -> str:
        """Return a presigned PUT URL for ``uploads/<filename>``."""
        name = filename.strip().lstrip("/")
        if not name or ".." in name.split("/"):
            raise InvalidRequest(f"Invalid upload filename: {filename!r}")

        key = f"{UPLOAD_PREFIX}{name}"
        try:
            return self.s3_client.generate_presigned_url(
                "put_object",
                Params={"Bucket": bucket, "Key": key, "ContentType": content_type},
                ExpiresIn=self.settings.upload_url_expiry_seconds,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error("Error creating presigned URL for %s: %s", key, e)
            raise UploadUrlFailed(
                f"Failed to create upload URL for {name}: {e}",
                details={"bucket": bucket, "key": key},
                cause=e,
            ) from e
