"""boto3 session and client construction."""

from __future__ import annotations

from typing import Any, Optional

import boto3
from botocore.config import Config

from stackdeploy.aws.errors import translate_errors
from stackdeploy.config.settings import TimeoutConfig


def create_session(profile: Optional[str], region: str) -> boto3.session.Session:
    """
    Create a boto3 session for a named profile.

    Raises:
        InfraError: If the profile does not exist
    """
    with translate_errors("CreateSession"):
        return boto3.session.Session(profile_name=profile or None, region_name=region)


def client_config(timeouts: TimeoutConfig, max_attempts: int = 3) -> Config:
    """
    botocore client config with explicit timeouts.

    Args:
        timeouts: Connect/read timeouts in seconds
        max_attempts: Total attempts botocore makes itself (1 disables its retries)
    """
    return Config(
        connect_timeout=timeouts.connect,
        read_timeout=timeouts.read,
        retries={"max_attempts": max_attempts, "mode": "standard"},
    )


def create_client(
    session: boto3.session.Session,
    service: str,
    timeouts: TimeoutConfig,
    max_attempts: int = 3,
) -> Any:
    """Create a service client bound to the session's region."""
    with translate_errors("CreateClient"):
        return session.client(service, config=client_config(timeouts, max_attempts))
