"""CloudFormation adapter."""

from __future__ import annotations

from typing import Any, Optional, Sequence

from botocore.exceptions import BotoCoreError, ClientError

from stackdeploy.aws.base import (
    NoUpdatesError,
    ProvisioningService,
    TemplateRejection,
    TemplateSummary,
)
from stackdeploy.aws.errors import (
    classify_template_error,
    error_code,
    error_message,
    to_infra_error,
    translate_errors,
)
from stackdeploy.utils.logging import get_logger
from stackdeploy.utils.result import Err, Ok, Result

logger = get_logger("aws.cloudformation")

NO_UPDATES_MESSAGE = "No updates are to be performed"


def _is_missing_stack(exc: ClientError) -> bool:
    return error_code(exc) == "ValidationError" and "does not exist" in error_message(exc)


def _to_parameters(parameters: dict[str, str]) -> list[dict[str, str]]:
    return [
        {"ParameterKey": key, "ParameterValue": value}
        for key, value in parameters.items()
    ]


def _to_tags(tags: Optional[dict[str, str]]) -> list[dict[str, str]]:
    return [{"Key": key, "Value": value} for key, value in (tags or {}).items()]


class CloudFormationService(ProvisioningService):
    """ProvisioningService backed by a boto3 CloudFormation client."""

    def __init__(self, client: Any) -> None:
        """
        Initialize the service.

        Args:
            client: boto3 ``cloudformation`` client
        """
        self.client = client

    def validate_document(self, body: str) -> Result[TemplateSummary, TemplateRejection]:
        try:
            response = self.client.validate_template(TemplateBody=body)
        except ClientError as e:
            if error_code(e) == "ValidationError":
                message = error_message(e)
                return Err(TemplateRejection(kind=classify_template_error(message), message=message))
            raise to_infra_error(e, "ValidateTemplate") from e
        except BotoCoreError as e:
            raise to_infra_error(e, "ValidateTemplate") from e

        return Ok(TemplateSummary(
            description=response.get("Description"),
            parameters=tuple(p["ParameterKey"] for p in response.get("Parameters", [])),
            capabilities=tuple(response.get("Capabilities", [])),
        ))

    def get_stack_status(self, stack_name: str) -> Optional[str]:
        try:
            response = self.client.describe_stacks(StackName=stack_name)
        except ClientError as e:
            if _is_missing_stack(e):
                return None
            raise to_infra_error(e, "DescribeStacks") from e
        except BotoCoreError as e:
            raise to_infra_error(e, "DescribeStacks") from e

        stacks = response.get("Stacks", [])
        if not stacks:
            return None
        return stacks[0]["StackStatus"]

    def create_stack(
        self,
        stack_name: str,
        template_url: str,
        parameters: dict[str, str],
        capabilities: Sequence[str] = (),
        tags: Optional[dict[str, str]] = None,
    ) -> Optional[str]:
        logger.info("create_stack_requested", stack_name=stack_name, template_url=template_url)
        with translate_errors("CreateStack"):
            response = self.client.create_stack(
                StackName=stack_name,
                TemplateURL=template_url,
                Parameters=_to_parameters(parameters),
                Capabilities=list(capabilities),
                Tags=_to_tags(tags),
            )
        return response.get("StackId")

    def update_stack(
        self,
        stack_name: str,
        template_url: str,
        parameters: dict[str, str],
        capabilities: Sequence[str] = (),
        tags: Optional[dict[str, str]] = None,
    ) -> Optional[str]:
        logger.info("update_stack_requested", stack_name=stack_name, template_url=template_url)
        try:
            response = self.client.update_stack(
                StackName=stack_name,
                TemplateURL=template_url,
                Parameters=_to_parameters(parameters),
                Capabilities=list(capabilities),
                Tags=_to_tags(tags),
            )
        except ClientError as e:
            if error_code(e) == "ValidationError" and NO_UPDATES_MESSAGE in error_message(e):
                raise NoUpdatesError(error_message(e)) from e
            raise to_infra_error(e, "UpdateStack") from e
        except BotoCoreError as e:
            raise to_infra_error(e, "UpdateStack") from e
        return response.get("StackId")

    def delete_stack(self, stack_name: str) -> None:
        logger.info("delete_stack_requested", stack_name=stack_name)
        with translate_errors("DeleteStack"):
            self.client.delete_stack(StackName=stack_name)

    def describe_outputs(self, stack_name: str) -> dict[str, str]:
        with translate_errors("DescribeStacks"):
            response = self.client.describe_stacks(StackName=stack_name)

        stacks = response.get("Stacks", [])
        if not stacks:
            return {}
        return {
            output["OutputKey"]: output.get("OutputValue", "")
            for output in stacks[0].get("Outputs", [])
        }

    def last_failure_reason(self, stack_name: str) -> Optional[str]:
        with translate_errors("DescribeStackEvents"):
            response = self.client.describe_stack_events(StackName=stack_name)

        # Events are returned newest first
        for event in response.get("StackEvents", []):
            status = event.get("ResourceStatus", "")
            if status.endswith("_FAILED") and event.get("ResourceStatusReason"):
                return f"{event.get('LogicalResourceId', stack_name)}: {event['ResourceStatusReason']}"
        return None
