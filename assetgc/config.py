# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Asset GC Configuration - Immutable configuration data structures.

All configuration is frozen (immutable) after creation to prevent
accidental modification while a collection is running.
"""

from dataclasses import dataclass
from enum import Enum
from typing import List
import re


class GCTarget(str, Enum):
    """Which bootstrapped asset stores to collect."""

    S3 = "s3"  # File assets in the bootstrap bucket
    ECR = "ecr"  # Image assets in the bootstrap repository
    ALL = "all"


class GCAction(str, Enum):
    """What the collector is allowed to do with unreferenced assets."""

    PRINT = "print"  # Report only, no mutations
    TAG = "tag"  # Tag/untag isolated assets, never delete
    DELETE_TAGGED = "delete-tagged"  # Delete assets tagged long enough ago, never tag
    FULL = "full"  # Tag, untag and delete


DEFAULT_BOOTSTRAP_STACK_NAME = "CDKToolkit"

# Batch limit of s3:DeleteObjects, and a reasonable listing page for ECR
MAX_LIST_BATCH_SIZE = 1000

_REGION_PATTERN = re.compile(r"^[a-z]{2}(-[a-z]+)+-\d+$")
_STACK_NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9-]{0,127}$")


def _validate_region(region: str) -> bool:
    """Validate an AWS region name such as 'us-east-1' or 'us-gov-west-1'."""
    return bool(region) and bool(_REGION_PATTERN.match(region))


def _validate_stack_name(name: str) -> bool:
    """
    Validate a CloudFormation stack name.

    Rules:
    - 1-128 characters
    - Letters, numbers and hyphens
    - Must start with a letter
    """
    return bool(name) and bool(_STACK_NAME_PATTERN.match(name))


def _coerce_enum(enum_cls, value):
    """Turn 'S3' or 'delete-tagged' into the enum member; leave anything else as is."""
    if isinstance(value, str) and not isinstance(value, enum_cls):
        try:
            return enum_cls(value.lower())
        except ValueError:
            return value
    return value


@dataclass(frozen=True)
class GCConfig:
    """
    Immutable configuration for asset garbage collection.

    The configuration is frozen after creation so the same values are used
    for every batch of a run, including the background refresh task.
    """

    # AWS region of the bootstrapped environment
    region: str = "us-east-1"

    # Name of the bootstrap stack holding the bucket/repository outputs
    bootstrap_stack_name: str = DEFAULT_BOOTSTRAP_STACK_NAME

    # Asset stores to collect
    target: GCTarget = GCTarget.ALL

    # Action (default: print for safety)
    action: GCAction = GCAction.PRINT

    # Days an asset must stay isolation-tagged before it may be deleted
    rollback_buffer_days: int = 0

    # Days since upload before an asset is considered at all
    created_buffer_days: int = 1

    # Ask before deleting each batch
    confirm: bool = True

    # Maximum in-flight tag/untag/read-tag calls
    max_concurrency: int = 50

    # Assets per classification batch
    list_batch_size: int = MAX_LIST_BATCH_SIZE

    # Oldest acceptable age of the active asset cache before acting on a batch
    freshness_bound_seconds: float = 600.0

    # Period of the background stack refresh
    refresh_interval_seconds: float = 300.0

    # Optional endpoint override (LocalStack, VPC endpoints)
    endpoint_url: str | None = None

    def __post_init__(self) -> None:
        """Validate configuration after creation."""
        # Plain strings are accepted for the enums
        object.__setattr__(self, "target", _coerce_enum(GCTarget, self.target))
        object.__setattr__(self, "action", _coerce_enum(GCAction, self.action))

        errors: List[str] = []

        if not _validate_region(self.region):
            errors.append(f"Invalid region: {self.region}")

        if not _validate_stack_name(self.bootstrap_stack_name):
            errors.append(f"Invalid bootstrap stack name: {self.bootstrap_stack_name}")

        if not isinstance(self.target, GCTarget):
            errors.append(f"Invalid target: {self.target!r}")

        if not isinstance(self.action, GCAction):
            errors.append(f"Invalid action: {self.action!r}")

        if self.rollback_buffer_days < 0:
            errors.append(
                f"rollback_buffer_days must be >= 0, got {self.rollback_buffer_days}"
            )

        if self.created_buffer_days < 0:
            errors.append(
                f"created_buffer_days must be >= 0, got {self.created_buffer_days}"
            )

        if self.max_concurrency < 1:
            errors.append(f"max_concurrency must be >= 1, got {self.max_concurrency}")

        if not 1 <= self.list_batch_size <= MAX_LIST_BATCH_SIZE:
            errors.append(
                f"list_batch_size must be 1-{MAX_LIST_BATCH_SIZE}, got {self.list_batch_size}"
            )

        if self.freshness_bound_seconds <= 0:
            errors.append(
                f"freshness_bound_seconds must be > 0, got {self.freshness_bound_seconds}"
            )

        if self.refresh_interval_seconds <= 0:
            errors.append(
                f"refresh_interval_seconds must be > 0, got {self.refresh_interval_seconds}"
            )

        # Raise all errors at once
        if errors:
            from assetgc.exceptions import ConfigurationError

            raise ConfigurationError(
                "Configuration validation failed",
                details={"errors": errors},
            )

        # Print warning for destructive actions
        if self.permission_to_delete:
            import sys

            print(
                f"⚠️  WARNING: action={self.action.value}. Deletions will occur.",
                file=sys.stderr,
            )

    @property
    def permission_to_delete(self) -> bool:
        return self.action in (GCAction.DELETE_TAGGED, GCAction.FULL)

    @property
    def permission_to_tag(self) -> bool:
        return self.action in (GCAction.TAG, GCAction.FULL)

    @property
    def collect_objects(self) -> bool:
        return self.target in (GCTarget.S3, GCTarget.ALL)

    @property
    def collect_images(self) -> bool:
        return self.target in (GCTarget.ECR, GCTarget.ALL)

    def with_updates(self, **kwargs) -> "GCConfig":
        """
        Create a new config with updated values.

        Since the config is frozen, this creates a new instance.
        """
        from dataclasses import asdict

        current = asdict(self)
        current.update(kwargs)
        return GCConfig(**current)
