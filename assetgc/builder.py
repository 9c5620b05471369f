# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Asset GC Builder - Functional builder pattern for configuration.

This module provides pure functions for building GCConfig objects.
Each function takes a config dict and returns a new dict with the
modification applied (immutable updates).
"""

from typing import Any, Callable, Dict

from assetgc.config import (
    DEFAULT_BOOTSTRAP_STACK_NAME,
    MAX_LIST_BATCH_SIZE,
    GCAction,
    GCConfig,
    GCTarget,
)


# Type alias for builder functions
ConfigDict = Dict[str, Any]
BuilderFunc = Callable[[ConfigDict], ConfigDict]


def create_empty_config() -> ConfigDict:
    """
    Create an initial configuration dictionary.

    Returns:
        Dict with default values for all configuration fields
    """
    return {
        "region": "us-east-1",
        "bootstrap_stack_name": DEFAULT_BOOTSTRAP_STACK_NAME,
        "target": GCTarget.ALL,
        "action": GCAction.PRINT,
        "rollback_buffer_days": 0,
        "created_buffer_days": 1,
        "confirm": True,
        "max_concurrency": 50,
        "list_batch_size": MAX_LIST_BATCH_SIZE,
        "freshness_bound_seconds": 600.0,
        "refresh_interval_seconds": 300.0,
        "endpoint_url": None,
    }


def with_region(config: ConfigDict, region: str) -> ConfigDict:
    """
    Set the AWS region.

    Args:
        config: Current configuration dictionary
        region: AWS region (e.g., 'us-east-1', 'eu-west-1')

    Returns:
        New configuration dictionary with region set
    """
    return {**config, "region": region}


def with_bootstrap_stack(config: ConfigDict, stack_name: str) -> ConfigDict:
    """Use a custom bootstrap stack name."""
    return {**config, "bootstrap_stack_name": stack_name}


def collect_target(config: ConfigDict, target: GCTarget | str) -> ConfigDict:
    """
    Choose the asset stores to collect.

    Args:
        config: Current configuration dictionary
        target: 's3', 'ecr' or 'all'

    Returns:
        New configuration dictionary with target set
    """
    if isinstance(target, str):
        target = GCTarget(target.lower())
    return {**config, "target": target}


def with_action(config: ConfigDict, action: GCAction | str) -> ConfigDict:
    """
    Set the collection action.

    WARNING: 'delete-tagged' and 'full' delete assets!

    Args:
        config: Current configuration dictionary
        action: 'print', 'tag', 'delete-tagged' or 'full'

    Returns:
        New configuration dictionary with action set
    """
    if isinstance(action, str):
        action = GCAction(action.lower())
    return {**config, "action": action}


def isolate_for_days(config: ConfigDict, days: int) -> ConfigDict:
    """
    Set the rollback buffer.

    Unreferenced assets are tagged first and only deleted once the tag is
    older than this many days. Zero deletes unreferenced assets right away.

    Args:
        config: Current configuration dictionary
        days: Grace period in days

    Returns:
        New configuration dictionary with rollback buffer set
    """
    if days < 0:
        raise ValueError(f"rollback buffer days must be >= 0, got {days}")
    return {**config, "rollback_buffer_days": days}


def skip_assets_younger_than(config: ConfigDict, days: int) -> ConfigDict:
    """
    Set the created buffer.

    Assets uploaded less than this many days ago are never considered.

    Args:
        config: Current configuration dictionary
        days: Minimum asset age in days

    Returns:
        New configuration dictionary with created buffer set
    """
    if days < 0:
        raise ValueError(f"created buffer days must be >= 0, got {days}")
    return {**config, "created_buffer_days": days}


def skip_confirmation(config: ConfigDict) -> ConfigDict:
    """
    Delete without asking for confirmation.

    Args:
        config: Current configuration dictionary

    Returns:
        New configuration dictionary with confirmation disabled
    """
    import sys

    print(
        "⚠️  WARNING: Deletion confirmation is disabled.",
        file=sys.stderr,
    )
    return {**config, "confirm": False}


def with_max_concurrency(config: ConfigDict, max_ops: int) -> ConfigDict:
    """
    Set the maximum number of concurrent tagging calls.

    Args:
        config: Current configuration dictionary
        max_ops: Maximum concurrent operations

    Returns:
        New configuration dictionary with max_concurrency set
    """
    if max_ops < 1:
        raise ValueError(f"max_concurrency must be >= 1, got {max_ops}")
    return {**config, "max_concurrency": max_ops}


def build_config(config_dict: ConfigDict) -> GCConfig:
    """
    Validate and build an immutable GCConfig from a configuration dictionary.

    Args:
        config_dict: Configuration dictionary built using builder functions

    Returns:
        Validated, immutable GCConfig instance

    Raises:
        ConfigurationError: If validation fails
    """
    return GCConfig(**config_dict)


def build_from_steps(*steps: BuilderFunc) -> GCConfig:
    """
    Build config by applying a sequence of builder functions.

    Example:
        config = build_from_steps(
            lambda c: collect_target(c, "s3"),
            lambda c: isolate_for_days(c, 3),
            lambda c: with_action(c, "full"),
        )

    Args:
        *steps: Builder functions to apply in sequence

    Returns:
        Validated, immutable GCConfig instance
    """
    config = create_empty_config()
    for step in steps:
        config = step(config)
    return build_config(config)


def create_config(
    *,
    region: str = "us-east-1",
    bootstrap_stack_name: str | None = None,
    target: str | GCTarget = "all",
    action: str | GCAction = "print",
    rollback_buffer_days: int = 0,
    created_buffer_days: int = 1,
    confirm: bool = True,
    **kwargs: Any,
) -> GCConfig:
    """
    Create garbage collection configuration from simple parameters.

    This is the recommended user-facing API for creating configurations.

    Args:
        region: AWS region (default: "us-east-1")
        bootstrap_stack_name: Bootstrap stack name (default: "CDKToolkit")
        target: "s3", "ecr" or "all" (default: "all")
        action: "print", "tag", "delete-tagged" or "full" (default: "print")
        rollback_buffer_days: Days an asset stays tagged before deletion
        created_buffer_days: Days since upload before an asset is considered
        confirm: Ask before deleting each batch (default: True)
        **kwargs: Additional configuration options

    Returns:
        Validated, immutable GCConfig instance

    Example:
        # Tag now, delete after a week of isolation
        config = create_config(
            target="s3",
            action="full",
            rollback_buffer_days=7,
        )
    """
    config_dict = create_empty_config()

    if region:
        config_dict = with_region(config_dict, region)

    if bootstrap_stack_name:
        config_dict = with_bootstrap_stack(config_dict, bootstrap_stack_name)

    config_dict = collect_target(config_dict, target)
    config_dict = with_action(config_dict, action)
    config_dict = isolate_for_days(config_dict, rollback_buffer_days)
    config_dict = skip_assets_younger_than(config_dict, created_buffer_days)

    if not confirm:
        config_dict = skip_confirmation(config_dict)

    # Apply any additional kwargs
    for key, value in kwargs.items():
        if key in config_dict:
            config_dict[key] = value

    return build_config(config_dict)
