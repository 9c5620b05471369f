# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Asset GC - Garbage collection for bootstrapped deployment assets.

Reclaims file assets in the bootstrap S3 bucket and image assets in the
bootstrap ECR repository that no deployed CloudFormation stack references
any more. Unreferenced assets are tagged first and deleted only after a
configurable grace period. Package name: assetgc.
"""

__version__ = "0.1.0"

# Configuration creation (user-facing API)
from assetgc.builder import create_config

# Core functions
from assetgc.core import (
    GCResult,
    initialize_gc_state,
    run_gc_cycle,
)

# Environment-based configuration and profiles (additional helpers)
from assetgc.env import (
    create_config_from_env,
    safe_defaults,
    tag_only,
    aggressive_cleanup,
)

__all__ = [
    # Version
    "__version__",
    # Configuration creation (primary user-facing APIs)
    "create_config",
    "create_config_from_env",
    # Profiles
    "safe_defaults",
    "tag_only",
    "aggressive_cleanup",
    # Core orchestration functions
    "GCResult",
    "initialize_gc_state",
    "run_gc_cycle",
]
