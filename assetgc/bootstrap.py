# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Asset GC Bootstrap Lookup - Resolve the bootstrapped asset stores.

The bootstrap stack exposes the asset bucket and image repository as
stack outputs and the qualifier as a stack parameter. Stacks bootstrapped
without a Qualifier parameter get no qualifier, and then no deployed stack
is excluded by qualifier.
"""

from dataclasses import dataclass
from typing import Any, Dict

import structlog
from botocore.exceptions import ClientError

from assetgc.errors import explain_missing_bootstrap_output, explain_missing_bootstrap_stack
from assetgc.exceptions import BootstrapNotFoundError

logger = structlog.get_logger()


@dataclass(frozen=True)
class BootstrapInfo:
    """Resources of one bootstrapped environment."""

    stack_name: str
    bucket_name: str | None
    repository_name: str | None
    qualifier: str | None  # None turns the qualifier filter off
    version: int | None = None

    def require_bucket(self) -> str:
        if not self.bucket_name:
            raise BootstrapNotFoundError(
                explain_missing_bootstrap_output(self.stack_name, "BucketName"),
                details={"stack_name": self.stack_name},
            )
        return self.bucket_name

    def require_repository(self) -> str:
        if not self.repository_name:
            raise BootstrapNotFoundError(
                explain_missing_bootstrap_output(self.stack_name, "ImageRepositoryName"),
                details={"stack_name": self.stack_name},
            )
        return self.repository_name


def _outputs(stack: Dict[str, Any]) -> Dict[str, str]:
    return {o["OutputKey"]: o.get("OutputValue", "") for o in stack.get("Outputs", [])}


def _parameters(stack: Dict[str, Any]) -> Dict[str, str]:
    return {
        p["ParameterKey"]: p.get("ParameterValue", "") for p in stack.get("Parameters", [])
    }


async def lookup_bootstrap_info(
    cfn_client: Any,
    stack_name: str,
    region: str = "us-east-1",
) -> BootstrapInfo:
    """
    Look up the bootstrap stack and read its asset stores.

    Args:
        cfn_client: aiobotocore CloudFormation client
        stack_name: Name of the bootstrap stack
        region: Region, used in error messages only

    Returns:
        BootstrapInfo for the environment

    Raises:
        BootstrapNotFoundError: If the stack does not exist
    """
    try:
        response = await cfn_client.describe_stacks(StackName=stack_name)
    except ClientError as e:
        if e.response.get("Error", {}).get("Code") == "ValidationError":
            raise BootstrapNotFoundError(
                explain_missing_bootstrap_stack(stack_name, region),
                details={"stack_name": stack_name, "region": region},
            ) from e
        raise

    stacks = response.get("Stacks", [])
    if not stacks:
        raise BootstrapNotFoundError(
            explain_missing_bootstrap_stack(stack_name, region),
            details={"stack_name": stack_name, "region": region},
        )

    stack = stacks[0]
    outputs = _outputs(stack)
    parameters = _parameters(stack)

    version = outputs.get("BootstrapVersion")
    info = BootstrapInfo(
        stack_name=stack_name,
        bucket_name=outputs.get("BucketName") or None,
        repository_name=outputs.get("ImageRepositoryName") or None,
        qualifier=parameters.get("Qualifier") or None,
        version=int(version) if version and version.isdigit() else None,
    )

    logger.debug(
        "bootstrap_stack_resolved",
        stack_name=stack_name,
        bucket=info.bucket_name,
        repository=info.repository_name,
        qualifier=info.qualifier,
    )
    return info
