# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Framework Integrations - FastAPI admin endpoints.
"""

from assetgc.integrations.fastapi import (
    assetgc_lifespan,
    get_assetgc_state,
    register_assetgc_routes,
    verify_api_key,
)

__all__ = [
    "assetgc_lifespan",
    "get_assetgc_state",
    "register_assetgc_routes",
    "verify_api_key",
]
