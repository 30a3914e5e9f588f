from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Optional

import aioboto3

from apigw_fargate.services.config import AwsConfig, CloudFormationConfig

logger = logging.getLogger(__name__)

_FAILED_SUFFIXES = ("_FAILED", "ROLLBACK_COMPLETE")
_TERMINAL_STATUSES = {
    "CREATE_COMPLETE",
    "UPDATE_COMPLETE",
    "DELETE_COMPLETE",
    "CREATE_FAILED",
    "DELETE_FAILED",
    "ROLLBACK_COMPLETE",
    "ROLLBACK_FAILED",
    "UPDATE_ROLLBACK_COMPLETE",
    "UPDATE_ROLLBACK_FAILED",
    "IMPORT_COMPLETE",
    "IMPORT_ROLLBACK_COMPLETE",
}


class CloudFormationServiceError(RuntimeError):
    pass


class StackOperationError(CloudFormationServiceError):
    def __init__(self, stack_name: str, status: str, reason: str = "") -> None:
        message = f"Stack {stack_name} ended in {status}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.stack_name = stack_name
        self.status = status


def is_failed_status(status: str) -> bool:
    return status.endswith(_FAILED_SUFFIXES)


class CloudFormationService:
    """Thin async wrapper over the CloudFormation control plane.

    CloudFormation is the provisioning engine: it evaluates the resource
    graph, orders independent creations in parallel and rolls back on
    failure. This class only submits templates and waits for the outcome.
    """

    def __init__(self, *, aws: AwsConfig, config: CloudFormationConfig) -> None:
        self._aws = aws
        self._config = config
        self._session = aioboto3.Session()

    def _client(self) -> Any:
        return self._session.client(
            "cloudformation",
            region_name=self._aws.region_name,
            endpoint_url=self._aws.endpoint_url,
        )

    async def describe_stack(self, stack_name: str) -> Optional[dict[str, Any]]:
        """Return the stack description, or None when the stack does not exist."""

        try:
            client: Any = self._client()
            async with client as cfn:
                response = await cfn.describe_stacks(StackName=stack_name)
        except Exception as exc:
            if _is_missing_stack(exc):
                return None
            logger.exception("CloudFormation describe_stacks failed")
            raise CloudFormationServiceError(f"Failed to describe stack {stack_name}") from exc

        stacks = response.get("Stacks") or []
        if not stacks or stacks[0].get("StackStatus") == "DELETE_COMPLETE":
            return None
        return stacks[0]

    async def deploy_stack(
        self,
        *,
        stack_name: str,
        template_body: str,
        parameters: Optional[dict[str, str]] = None,
    ) -> str:
        """Create the stack, or update it in place. Returns the final status."""

        existing = await self.describe_stack(stack_name)
        if existing is not None and existing.get("StackStatus") == "ROLLBACK_COMPLETE":
            # A stack that failed its first create cannot be updated.
            logger.warning("Stack %s is in ROLLBACK_COMPLETE; deleting before re-create", stack_name)
            await self.delete_stack(stack_name)
            existing = None

        kwargs: dict[str, Any] = {
            "StackName": stack_name,
            "TemplateBody": template_body,
            "Capabilities": ["CAPABILITY_IAM"],
            "Parameters": [
                {"ParameterKey": key, "ParameterValue": value} for key, value in (parameters or {}).items()
            ],
        }

        try:
            client: Any = self._client()
            async with client as cfn:
                if existing is None:
                    logger.info("Creating stack %s", stack_name)
                    await cfn.create_stack(**kwargs, OnFailure="ROLLBACK")
                else:
                    logger.info("Updating stack %s", stack_name)
                    await cfn.update_stack(**kwargs)
        except Exception as exc:
            if existing is not None and _is_no_op_update(exc):
                logger.info("Stack %s is already up to date", stack_name)
                return str(existing.get("StackStatus"))
            logger.exception("CloudFormation deploy failed")
            raise CloudFormationServiceError(f"Failed to submit stack {stack_name}") from exc

        return await self.wait_for_stack(stack_name)

    async def wait_for_stack(self, stack_name: str) -> str:
        deadline = time.monotonic() + self._config.wait_timeout_seconds
        while time.monotonic() < deadline:
            stack = await self.describe_stack(stack_name)
            if stack is None:
                return "DELETE_COMPLETE"

            status = str(stack.get("StackStatus") or "")
            if status in _TERMINAL_STATUSES:
                if is_failed_status(status) or "ROLLBACK" in status:
                    raise StackOperationError(stack_name, status, str(stack.get("StackStatusReason") or ""))
                logger.info("Stack %s reached %s", stack_name, status)
                return status

            logger.debug("Stack %s is %s; waiting", stack_name, status)
            await asyncio.sleep(self._config.poll_interval_seconds)

        raise StackOperationError(stack_name, "TIMEOUT", f"not settled after {self._config.wait_timeout_seconds}s")

    async def stack_outputs(self, stack_name: str) -> dict[str, str]:
        stack = await self.describe_stack(stack_name)
        if stack is None:
            raise CloudFormationServiceError(f"Stack {stack_name} does not exist")
        return {o["OutputKey"]: o["OutputValue"] for o in stack.get("Outputs") or []}

    async def describe_resource(self, stack_name: str, logical_id: str) -> dict[str, Any]:
        try:
            client: Any = self._client()
            async with client as cfn:
                response = await cfn.describe_stack_resource(StackName=stack_name, LogicalResourceId=logical_id)
        except Exception as exc:
            if _is_missing_stack(exc):
                # Never created, or already gone
                return {}
            logger.exception("CloudFormation describe_stack_resource failed")
            raise CloudFormationServiceError(f"Failed to resolve {logical_id} in stack {stack_name}") from exc
        return response.get("StackResourceDetail") or {}

    async def physical_resource_id(self, stack_name: str, logical_id: str) -> str:
        physical_id = (await self.describe_resource(stack_name, logical_id)).get("PhysicalResourceId")
        if not physical_id:
            raise CloudFormationServiceError(f"{logical_id} has no physical id yet in stack {stack_name}")
        return str(physical_id)

    async def delete_stack(self, stack_name: str) -> str:
        if await self.describe_stack(stack_name) is None:
            logger.info("Stack %s does not exist; nothing to delete", stack_name)
            return "DELETE_COMPLETE"

        try:
            client: Any = self._client()
            async with client as cfn:
                await cfn.delete_stack(StackName=stack_name)
        except Exception as exc:
            logger.exception("CloudFormation delete_stack failed")
            raise CloudFormationServiceError(f"Failed to delete stack {stack_name}") from exc

        logger.info("Deleting stack %s", stack_name)
        return await self.wait_for_stack(stack_name)


def _error_message(exc: Exception) -> str:
    response = getattr(exc, "response", None)
    if isinstance(response, dict):
        return str((response.get("Error") or {}).get("Message") or "")
    return str(exc)


def _is_missing_stack(exc: Exception) -> bool:
    return "does not exist" in _error_message(exc)


def _is_no_op_update(exc: Exception) -> bool:
    return "No updates are to be performed" in _error_message(exc)
