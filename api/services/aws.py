from __future__ import annotations

from typing import Any, Optional

import boto3
from botocore.config import Config

from ..config import settings

DEFAULT_RETRIES: dict[str, Any] = {"max_attempts": 3}
# one HTTP attempt per call; callers that retry do it at a higher level
NO_RETRIES: dict[str, Any] = {"total_max_attempts": 1}


def boto3_client(
    service: str,
    *,
    timeout_seconds: float | None = None,
    retries: Optional[dict[str, Any]] = None,
) -> Any:
    config_kwargs: dict[str, Any] = {"retries": dict(retries if retries is not None else DEFAULT_RETRIES)}
    if timeout_seconds is not None:
        config_kwargs["connect_timeout"] = timeout_seconds
        config_kwargs["read_timeout"] = timeout_seconds

    kwargs: dict[str, Any] = {"region_name": settings.aws.region, "config": Config(**config_kwargs)}
    if settings.aws.access_key_id and settings.aws.secret_access_key:
        kwargs["aws_access_key_id"] = settings.aws.access_key_id
        kwargs["aws_secret_access_key"] = settings.aws.secret_access_key
    if settings.aws.s3_endpoint_url and service == "s3":
        kwargs["endpoint_url"] = settings.aws.s3_endpoint_url
    return boto3.client(service, **kwargs)
