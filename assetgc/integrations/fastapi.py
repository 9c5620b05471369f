# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Asset GC FastAPI Integration - Admin endpoints for FastAPI applications.

This module provides:
- Lifespan management (state creation)
- Protected admin endpoints to trigger a run and inspect status
"""

import os
from contextlib import asynccontextmanager
from dataclasses import asdict

import structlog
from fastapi import Depends, FastAPI, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from assetgc.config import GCConfig
from assetgc.core import GCState, initialize_gc_state, run_gc_cycle
from assetgc.exceptions import AssetGCError

logger = structlog.get_logger()

# Security
security = HTTPBearer(auto_error=False)


async def verify_api_key(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> bool:
    """
    Verify API key from Authorization header.

    The API key is read from the ASSETGC_ADMIN_API_KEY environment variable.
    Requests must include: Authorization: Bearer <api_key>

    Raises:
        HTTPException: If API key is missing or invalid
    """
    api_key = os.getenv("ASSETGC_ADMIN_API_KEY")

    if not api_key:
        raise HTTPException(
            status_code=500,
            detail="ASSETGC_ADMIN_API_KEY environment variable not set",
        )

    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Authorization header required",
        )

    if credentials.credentials != api_key:
        raise HTTPException(
            status_code=403,
            detail="Invalid API key",
        )

    return True


def register_assetgc_routes(
    app: FastAPI,
    config: GCConfig,
    state: GCState,
    prefix: str = "/admin/assetgc",
) -> None:
    """
    Register asset GC admin endpoints on a FastAPI app.

    All endpoints require Bearer token authentication.

    Args:
        app: FastAPI application
        config: Garbage collection configuration
        state: Runtime state
        prefix: URL prefix for endpoints (default: /admin/assetgc)
    """

    @app.post(f"{prefix}/run", dependencies=[Depends(verify_api_key)])
    async def trigger_gc() -> dict:
        """
        Manually trigger a GC cycle.

        Deleting configurations must have confirm=False: there is no
        terminal to answer the prompt.
        """
        if config.permission_to_delete and config.confirm:
            raise HTTPException(
                status_code=409,
                detail="Deletion needs confirmation; configure confirm=False to run over HTTP",
            )
        try:
            result = await run_gc_cycle(config, state)
        except AssetGCError as e:
            raise HTTPException(status_code=500, detail=e.message)
        return asdict(result)

    @app.get(f"{prefix}/status", dependencies=[Depends(verify_api_key)])
    async def get_status() -> dict:
        """
        Get current GC status.

        Returns last run time, totals and the configured action.
        """
        return {
            "last_run_at": (
                state["last_run_at"].isoformat() if state["last_run_at"] else None
            ),
            "total_runs": state["total_runs"],
            "total_scanned": state["total_scanned"],
            "total_tagged": state["total_tagged"],
            "total_deleted": state["total_deleted"],
            "last_error": state["last_error"],
            "action": config.action.value,
            "target": config.target.value,
        }

    @app.get(f"{prefix}/config", dependencies=[Depends(verify_api_key)])
    async def get_config() -> dict:
        """
        Get current configuration.
        """
        return {
            "region": config.region,
            "bootstrap_stack_name": config.bootstrap_stack_name,
            "target": config.target.value,
            "action": config.action.value,
            "rollback_buffer_days": config.rollback_buffer_days,
            "created_buffer_days": config.created_buffer_days,
            "confirm": config.confirm,
            "max_concurrency": config.max_concurrency,
        }


@asynccontextmanager
async def assetgc_lifespan(app: FastAPI, config: GCConfig, prefix: str = "/admin/assetgc"):
    """
    Lifespan context manager for FastAPI.

        app = FastAPI(lifespan=lambda app: assetgc_lifespan(app, config))

    Args:
        app: FastAPI application
        config: Garbage collection configuration
        prefix: URL prefix for admin endpoints
    """
    logger.info(
        "assetgc_lifespan_starting",
        target=config.target.value,
        action=config.action.value,
    )

    state = await initialize_gc_state(config)
    app.state.assetgc_state = state
    app.state.assetgc_config = config
    register_assetgc_routes(app, config, state, prefix)

    try:
        yield
    finally:
        logger.info("assetgc_lifespan_stopped")


def get_assetgc_state(app: FastAPI) -> GCState:
    """
    Get asset GC state from a FastAPI app.

    Raises:
        RuntimeError: If the lifespan has not run
    """
    state = getattr(app.state, "assetgc_state", None)
    if not state:
        raise RuntimeError("assetgc not initialized. Use assetgc_lifespan first.")
    return state
