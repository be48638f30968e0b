"""AWS Systems Manager (SSM) run-command channel and Parameter Store."""

from __future__ import annotations

from typing import TYPE_CHECKING

from botocore.exceptions import BotoCoreError, ClientError

from dormant.aws.errors import error_code, translate, upstream_errors
from dormant.constants import (
    SSM_DOCUMENT,
    SSM_FAILURE_STATUSES,
    SSM_SUCCESS_STATUS,
    CommandStatus,
)
from dormant.exceptions import NotFoundError, ParameterExistsError, UpstreamError
from dormant.model import CommandInvocation
from dormant.protocols import InvocationNotVisible

if TYPE_CHECKING:
    from mypy_boto3_ssm import SSMClient


# =============================================================================
# Run Command
# =============================================================================


class SsmCommandChannel:
    """CommandChannel that runs shell scripts through AWS-RunShellScript."""

    def __init__(self, ssm: SSMClient) -> None:
        self._ssm = ssm

    def send_command(self, instance_id: str, command: str) -> str:
        with upstream_errors(f"send command to {instance_id}"):
            response = self._ssm.send_command(
                InstanceIds=[instance_id],
                DocumentName=SSM_DOCUMENT,
                Parameters={"commands": [command]},
            )

        command_id = response.get("Command", {}).get("CommandId")
        if not command_id:
            raise UpstreamError("SSM send_command returned no command id")
        return command_id

    def get_invocation(self, command_id: str, instance_id: str) -> CommandInvocation:
        try:
            result = self._ssm.get_command_invocation(
                CommandId=command_id,
                InstanceId=instance_id,
            )
        except (ClientError, BotoCoreError) as e:
            if error_code(e) == "InvocationDoesNotExist":
                raise InvocationNotVisible(command_id) from e
            raise translate(e, f"get invocation {command_id}") from e

        raw_status = result.get("Status", "")
        if raw_status == SSM_SUCCESS_STATUS:
            status = CommandStatus.SUCCESS
        elif raw_status in SSM_FAILURE_STATUSES:
            status = CommandStatus.FAILED
        else:
            status = CommandStatus.PENDING

        stderr = result.get("StandardErrorContent", "")
        if status is CommandStatus.FAILED and not stderr:
            stderr = f"Command {raw_status}"

        return CommandInvocation(
            command_id=command_id,
            status=status,
            stdout=result.get("StandardOutputContent", ""),
            stderr=stderr,
        )


# =============================================================================
# Parameter Store
# =============================================================================


class SsmParameterStore:
    """ParameterStore backed by SSM String parameters."""

    def __init__(self, ssm: SSMClient) -> None:
        self._ssm = ssm

    def get(self, name: str) -> str | None:
        try:
            response = self._ssm.get_parameter(Name=name)
        except (ClientError, BotoCoreError) as e:
            if error_code(e) == "ParameterNotFound":
                return None
            raise translate(e, f"get parameter {name}") from e
        return response.get("Parameter", {}).get("Value") or None

    def put(self, name: str, value: str, *, overwrite: bool) -> None:
        try:
            self._ssm.put_parameter(Name=name, Value=value, Type="String", Overwrite=overwrite)
        except (ClientError, BotoCoreError) as e:
            if error_code(e) == "ParameterAlreadyExists":
                raise ParameterExistsError(name) from e
            raise translate(e, f"put parameter {name}") from e

    def delete(self, name: str) -> None:
        try:
            self._ssm.delete_parameter(Name=name)
        except (ClientError, BotoCoreError) as e:
            if error_code(e) == "ParameterNotFound":
                raise NotFoundError(f"Parameter {name} not found") from e
            raise translate(e, f"delete parameter {name}") from e
