# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Human-friendly error message helpers for assetgc.

These helpers centralize wording for common configuration and lookup
errors so that all modules present consistent, actionable messages.
"""


def explain_invalid_days_env(name: str, value: str | None) -> str:
    """
    Explain that a buffer-days environment variable is invalid.
    """

    return (
        f"Invalid {name} value: {value!r}. "
        "It must be a non-negative integer number of days."
    )


def explain_invalid_action_env(value: str | None) -> str:
    """
    Explain that ASSETGC_ACTION is invalid.
    """

    return (
        f"Invalid ASSETGC_ACTION value: {value!r}. "
        "Expected one of: 'print', 'tag', 'delete-tagged', or 'full'."
    )


def explain_invalid_type_env(value: str | None) -> str:
    """
    Explain that ASSETGC_TYPE is invalid.
    """

    return (
        f"Invalid ASSETGC_TYPE value: {value!r}. "
        "Expected 's3', 'ecr', or 'all'."
    )


def explain_invalid_concurrency_env(value: str | None) -> str:
    """
    Explain that ASSETGC_MAX_CONCURRENCY is invalid.
    """

    return (
        f"Invalid ASSETGC_MAX_CONCURRENCY value: {value!r}. "
        "It must be a positive integer."
    )


def explain_missing_bootstrap_stack(stack_name: str, region: str) -> str:
    """
    Explain that the bootstrap stack could not be found.
    """

    return (
        f"Bootstrap stack {stack_name!r} was not found in {region}. "
        "Bootstrap the environment first, or pass bootstrap_stack_name=... "
        "if it was bootstrapped under a custom stack name."
    )


def explain_missing_bootstrap_output(stack_name: str, output: str) -> str:
    """
    Explain that the bootstrap stack lacks an output the pass needs.
    """

    return (
        f"Bootstrap stack {stack_name!r} has no {output} output. "
        "The environment may be bootstrapped with an old template; "
        "re-bootstrap it to garbage collect this asset type."
    )
