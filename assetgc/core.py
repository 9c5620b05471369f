# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Asset GC Core - Main orchestrator functions for garbage collection.

This module coordinates one garbage collection cycle: bootstrap lookup,
the active asset cache with its background refresh, and the S3 and ECR
store passes.
"""

from dataclasses import dataclass, field
from datetime import datetime, UTC
from itertools import count
from typing import Any, Dict, List, TypedDict

from assetgc.batch import StoreResult
from assetgc.config import GCConfig
from assetgc.confirm import PromptFunc


@dataclass
class GCResult:
    """Result of a garbage collection cycle."""

    operation_id: str  # ULID
    target: str
    action: str
    bootstrap_stack: str
    qualifier: str | None = None
    objects: StoreResult | None = None
    images: StoreResult | None = None
    errors: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def deleted_count(self) -> int:
        return sum(r.deleted for r in (self.objects, self.images) if r)

    @property
    def tagged_count(self) -> int:
        return sum(r.tagged for r in (self.objects, self.images) if r)


class GCState(TypedDict):
    """Runtime state for GC operations."""

    session: Any  # aiobotocore session
    confirm: bool  # Cleared by a 'delete-all' answer for the rest of a cycle
    prompt: PromptFunc
    image_tag_counter: count
    last_run_at: datetime | None
    total_runs: int
    total_scanned: int
    total_tagged: int
    total_deleted: int
    last_error: str | None


async def initialize_gc_state(
    config: GCConfig,
    *,
    session: Any = None,
    prompt: PromptFunc | None = None,
) -> GCState:
    """
    Initialize runtime state for GC operations.

    Args:
        config: Garbage collection configuration
        session: aiobotocore session (default: a new session)
        prompt: Async callable asking the user to confirm deletions

    Returns:
        Initialized GCState dictionary
    """
    from aiobotocore.session import get_session

    from assetgc.confirm import prompt_user

    return GCState(
        session=session if session is not None else get_session(),
        confirm=config.confirm,
        prompt=prompt or prompt_user,
        image_tag_counter=count(),
        last_run_at=None,
        total_runs=0,
        total_scanned=0,
        total_tagged=0,
        total_deleted=0,
        last_error=None,
    )


def _client_kwargs(config: GCConfig) -> Dict[str, Any]:
    kwargs: Dict[str, Any] = {"region_name": config.region}
    if config.endpoint_url:
        kwargs["endpoint_url"] = config.endpoint_url
    return kwargs


async def run_gc_cycle(config: GCConfig, state: GCState) -> GCResult:
    """
    Run a complete garbage collection cycle.

    This is the main entry point for GC operations. It:
    1. Resolves the bootstrap bucket, repository and qualifier
    2. Loads every live stack template into the active asset cache
    3. Starts the background refresh of that cache
    4. Runs the S3 and/or ECR pass
    5. Stops the background refresh, whatever the outcome

    The two passes are independent: a failure in the S3 pass is recorded
    and the ECR pass still runs. The first failure is re-raised once both
    passes are done. A declined confirmation fails only the pass it
    was asked in.

    Args:
        config: Garbage collection configuration
        state: Runtime state

    Returns:
        GCResult with operation details

    Raises:
        BootstrapNotFoundError: Before any pass if the bootstrap stack is missing
        AssetGCError: The first pass failure
    """
    import structlog
    from ulid import ULID

    from assetgc.bootstrap import lookup_bootstrap_info
    from assetgc.refresh import ActiveAssetCache, BackgroundStackRefresh, refresh_stacks
    from assetgc.stores import collect_images, collect_objects

    logger = structlog.get_logger()
    operation_id = str(ULID())
    start_time = datetime.now(UTC)

    logger.info(
        "gc_cycle_started",
        operation_id=operation_id,
        target=config.target.value,
        action=config.action.value,
    )

    result = GCResult(
        operation_id=operation_id,
        target=config.target.value,
        action=config.action.value,
        bootstrap_stack=config.bootstrap_stack_name,
    )
    state["confirm"] = config.confirm
    session = state["session"]
    client_kwargs = _client_kwargs(config)
    first_error: Exception | None = None

    try:
        async with session.create_client("cloudformation", **client_kwargs) as cfn:
            info = await lookup_bootstrap_info(
                cfn, config.bootstrap_stack_name, config.region
            )
            result.qualifier = info.qualifier

            active_assets = ActiveAssetCache()
            await refresh_stacks(cfn, active_assets, info.qualifier)
            logger.info("active_assets_loaded", stacks=len(active_assets))

            refresher = BackgroundStackRefresh(
                cfn,
                active_assets,
                info.qualifier,
                interval=config.refresh_interval_seconds,
            )
            refresher.start()

            try:
                if config.collect_objects:
                    result.objects = StoreResult(store="s3")
                    try:
                        bucket = info.require_bucket()
                        async with session.create_client("s3", **client_kwargs) as s3:
                            await collect_objects(
                                config, state, s3, bucket,
                                active_assets, refresher, result.objects,
                            )
                    except Exception as e:
                        result.errors.append(f"s3: {e}")
                        logger.error("gc_pass_failed", store="s3", error=str(e))
                        first_error = first_error or e

                if config.collect_images:
                    result.images = StoreResult(store="ecr")
                    try:
                        repository = info.require_repository()
                        async with session.create_client("ecr", **client_kwargs) as ecr:
                            await collect_images(
                                config, state, ecr, repository,
                                active_assets, refresher, result.images,
                            )
                    except Exception as e:
                        result.errors.append(f"ecr: {e}")
                        logger.error("gc_pass_failed", store="ecr", error=str(e))
                        first_error = first_error or e
            finally:
                refresher.stop()

        if first_error is not None:
            raise first_error

    except Exception as e:
        state["last_error"] = str(e)
        logger.error("gc_cycle_failed", operation_id=operation_id, error=str(e))
        raise

    finally:
        result.duration_seconds = (datetime.now(UTC) - start_time).total_seconds()
        state["total_runs"] += 1
        state["last_run_at"] = datetime.now(UTC)
        for store in (result.objects, result.images):
            if store is not None:
                state["total_scanned"] += store.scanned
                state["total_tagged"] += store.tagged
                state["total_deleted"] += store.deleted

    logger.info(
        "gc_cycle_completed",
        operation_id=operation_id,
        deleted=result.deleted_count,
        tagged=result.tagged_count,
        duration=result.duration_seconds,
    )
    return result
