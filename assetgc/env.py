# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Environment-based configuration helpers and safety profiles.

These helpers are small, convenient wrappers around create_config() and
GCConfig.with_updates(). They make it easy to:

- Build a configuration from environment variables
- Apply ready-made safety profiles
"""

from __future__ import annotations

import os

from assetgc.builder import create_config
from assetgc.config import GCAction, GCConfig, GCTarget
from assetgc.errors import (
    explain_invalid_action_env,
    explain_invalid_concurrency_env,
    explain_invalid_days_env,
    explain_invalid_type_env,
)
from assetgc.exceptions import ConfigurationError


def _parse_action(value: str | None) -> GCAction:
    if not value:
        return GCAction.PRINT
    try:
        return GCAction(value.lower())
    except ValueError as exc:
        raise ConfigurationError(explain_invalid_action_env(value)) from exc


def _parse_target(value: str | None) -> GCTarget:
    if not value:
        return GCTarget.ALL
    try:
        return GCTarget(value.lower())
    except ValueError as exc:
        raise ConfigurationError(explain_invalid_type_env(value)) from exc


def _parse_days(name: str, value: str | None, default: int) -> int:
    if not value:
        return default
    try:
        days = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_days_env(name, value)) from exc
    if days < 0:
        raise ConfigurationError(explain_invalid_days_env(name, value))
    return days


def _parse_concurrency(value: str | None) -> int:
    if not value:
        return 50
    try:
        limit = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_concurrency_env(value)) from exc
    if limit < 1:
        raise ConfigurationError(explain_invalid_concurrency_env(value))
    return limit


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.strip().lower() not in ("0", "false", "no", "off")


def create_config_from_env() -> GCConfig:
    """
    Create a GCConfig from environment variables.

    Optional environment variables:
        - AWS_REGION: AWS region (default: us-east-1)
        - ASSETGC_BOOTSTRAP_STACK: Bootstrap stack name (default: CDKToolkit)
        - ASSETGC_TYPE: 's3' | 'ecr' | 'all' (default: all)
        - ASSETGC_ACTION: 'print' | 'tag' | 'delete-tagged' | 'full' (default: print)
        - ASSETGC_ROLLBACK_BUFFER_DAYS: Non-negative integer (default: 0)
        - ASSETGC_CREATED_BUFFER_DAYS: Non-negative integer (default: 1)
        - ASSETGC_CONFIRM: 'false' to skip deletion prompts (default: true)
        - ASSETGC_MAX_CONCURRENCY: Positive integer (default: 50)
        - AWS_ENDPOINT_URL: Endpoint override, e.g. for LocalStack
    """

    return create_config(
        region=os.getenv("AWS_REGION", "us-east-1"),
        bootstrap_stack_name=os.getenv("ASSETGC_BOOTSTRAP_STACK"),
        target=_parse_target(os.getenv("ASSETGC_TYPE")),
        action=_parse_action(os.getenv("ASSETGC_ACTION")),
        rollback_buffer_days=_parse_days(
            "ASSETGC_ROLLBACK_BUFFER_DAYS",
            os.getenv("ASSETGC_ROLLBACK_BUFFER_DAYS"),
            0,
        ),
        created_buffer_days=_parse_days(
            "ASSETGC_CREATED_BUFFER_DAYS",
            os.getenv("ASSETGC_CREATED_BUFFER_DAYS"),
            1,
        ),
        confirm=_parse_bool(os.getenv("ASSETGC_CONFIRM"), True),
        max_concurrency=_parse_concurrency(os.getenv("ASSETGC_MAX_CONCURRENCY")),
        endpoint_url=os.getenv("AWS_ENDPOINT_URL") or None,
    )


# ============================================================================
# Profiles
# ============================================================================

def safe_defaults(config: GCConfig) -> GCConfig:
    """
    Apply conservative, safety-first defaults.

    - Always use PRINT action
    - Always confirm
    - Ensure at least 1 day of created buffer
    """

    return config.with_updates(
        action=GCAction.PRINT,
        confirm=True,
        created_buffer_days=max(config.created_buffer_days, 1),
    )


def tag_only(config: GCConfig) -> GCConfig:
    """
    Tag isolated assets without deleting anything.

    - TAG action
    - At least 1 rollback buffer day (with 0 nothing is ever tagged)
    """

    return config.with_updates(
        action=GCAction.TAG,
        rollback_buffer_days=max(config.rollback_buffer_days, 1),
    )


def aggressive_cleanup(config: GCConfig) -> GCConfig:
    """
    Apply a more aggressive cleanup profile.

    - FULL action (actual deletions)
    - No confirmation prompts
    - Shorter rollback buffer (at most 3 days)
    """

    return config.with_updates(
        action=GCAction.FULL,
        confirm=False,
        rollback_buffer_days=min(config.rollback_buffer_days, 3),
    )
