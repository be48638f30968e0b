"""boto3 client factory.

Clients are created lazily so that constructing an orchestrator never
resolves credentials; the first control-plane call does.
"""

from __future__ import annotations

from functools import cached_property
from typing import TYPE_CHECKING

import boto3
from botocore.config import Config

if TYPE_CHECKING:
    from mypy_boto3_ec2 import EC2Client
    from mypy_boto3_ses import SESClient
    from mypy_boto3_ssm import SSMClient

# Retries inside botocore cover throttling only; the orchestrator never
# retries a failed control-plane call itself.
_BOTO_CONFIG = Config(retries={"max_attempts": 3, "mode": "standard"})


class AwsClients:
    """Per-region boto3 clients sharing one session."""

    def __init__(self, region: str, session: boto3.Session | None = None) -> None:
        self.region = region
        self._session = session

    @cached_property
    def session(self) -> boto3.Session:
        return self._session or boto3.Session(region_name=self.region)

    @cached_property
    def ec2(self) -> EC2Client:
        return self.session.client("ec2", region_name=self.region, config=_BOTO_CONFIG)

    @cached_property
    def ssm(self) -> SSMClient:
        return self.session.client("ssm", region_name=self.region, config=_BOTO_CONFIG)

    @cached_property
    def ses(self) -> SESClient:
        return self.session.client("ses", region_name=self.region, config=_BOTO_CONFIG)
