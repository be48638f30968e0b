"""AWS adapters for the compute plane, command channel, parameter store and email."""

from dormant.aws.clients import AwsClients
from dormant.aws.compute import Ec2ComputePlane
from dormant.aws.ses import SesNotifier
from dormant.aws.ssm import SsmCommandChannel, SsmParameterStore

__all__ = [
    "AwsClients",
    "Ec2ComputePlane",
    "SesNotifier",
    "SsmCommandChannel",
    "SsmParameterStore",
]
