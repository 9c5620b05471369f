# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Asset GC Stack Refresh - Active asset cache and its background refresh.

The active asset cache holds one blob per deployed stack (template body
followed by its parameters). An asset is considered referenced when its
identifier occurs anywhere in any blob. The test is a substring test on
purpose: it may keep an unreferenced asset alive, but it never lets a
referenced one be deleted.

While a collection runs, BackgroundStackRefresh re-reads the deployed
stacks every few minutes. Batches call no_older_than() before acting so
that no decision is made on a cache older than the configured bound.
"""

import asyncio
import json
import time
from enum import Enum
from typing import Any, List, Set

import structlog

from assetgc.exceptions import RefreshTimeoutError, StackRefreshError

logger = structlog.get_logger()

# Stacks in these states no longer keep their assets alive
IGNORED_STACK_STATUSES = frozenset(
    {
        "CREATE_FAILED",
        "DELETE_COMPLETE",
        "DELETE_IN_PROGRESS",
        "DELETE_FAILED",
        "REVIEW_IN_PROGRESS",
    }
)

DEFAULT_REFRESH_INTERVAL = 300.0  # 5 minutes


class ActiveAssetCache:
    """Rendered templates of every deployed stack seen during this run."""

    def __init__(self) -> None:
        self._stacks: Set[str] = set()

    def remember_stack(self, stack_template: str) -> None:
        self._stacks.add(stack_template)

    def contains(self, asset: str) -> bool:
        return any(asset in stack for stack in self._stacks)

    def __len__(self) -> int:
        return len(self._stacks)


def _render_template_body(body: Any) -> str:
    # botocore decodes JSON template bodies into dicts
    if body is None:
        return ""
    if isinstance(body, str):
        return body
    return json.dumps(body, default=str)


def uses_other_qualifier(parameters: List[dict] | None, qualifier: str | None) -> bool:
    """
    Return True only when a stack is known to be bootstrapped under a
    different qualifier than ours.

    The qualifier sits in the BootstrapVersion parameter's default value,
    e.g. "/cdk-bootstrap/hnb659fds/version". Stacks that do not expose it
    are kept: a stack kept by mistake only preserves assets longer.
    """
    if not qualifier:
        return False

    bootstrap_version = next(
        (p for p in parameters or [] if p.get("ParameterKey") == "BootstrapVersion"),
        None,
    )
    if bootstrap_version is None:
        return False

    parts = (bootstrap_version.get("DefaultValue") or "").split("/")
    return len(parts) == 4 and parts[2] != qualifier


async def fetch_all_stack_templates(cfn_client: Any, qualifier: str | None) -> List[str]:
    """
    Fetch the rendered template of every live stack in the environment.

    Ignores stacks in failed/deleting/review states and stacks that use a
    different bootstrap qualifier.

    Args:
        cfn_client: aiobotocore CloudFormation client
        qualifier: Bootstrap qualifier being collected

    Returns:
        One blob per stack: template body followed by JSON parameters
    """
    stack_names: List[str] = []
    paginator = cfn_client.get_paginator("list_stacks")

    async for page in paginator.paginate():
        for summary in page.get("StackSummaries", []):
            if summary.get("StackStatus") in IGNORED_STACK_STATUSES:
                continue
            stack_names.append(summary.get("StackId") or summary["StackName"])

    logger.debug("parsing_stacks", count=len(stack_names))

    templates: List[str] = []
    for stack_name in stack_names:
        summary = await cfn_client.get_template_summary(StackName=stack_name)
        parameters = summary.get("Parameters")

        if uses_other_qualifier(parameters, qualifier):
            logger.debug("stack_skipped_other_qualifier", stack=stack_name)
            continue

        template = await cfn_client.get_template(StackName=stack_name)
        templates.append(
            _render_template_body(template.get("TemplateBody"))
            + json.dumps(parameters, default=str)
        )

    logger.debug("stacks_parsed", templates=len(templates))
    return templates


async def refresh_stacks(
    cfn_client: Any,
    active_assets: ActiveAssetCache,
    qualifier: str | None,
) -> None:
    """
    Feed the templates of all live stacks into the active asset cache.

    Raises:
        StackRefreshError: If listing or reading stacks fails
    """
    try:
        stacks = await fetch_all_stack_templates(cfn_client, qualifier)
    except Exception as e:
        raise StackRefreshError(
            f"Error refreshing stacks: {e}",
            details={"qualifier": qualifier},
        ) from e

    for stack in stacks:
        active_assets.remember_stack(stack)


class RefreshState(str, Enum):
    """Lifecycle of the background refresh task."""

    IDLE = "idle"
    SCHEDULED = "scheduled"
    REFRESHING = "refreshing"
    STOPPED = "stopped"


class BackgroundStackRefresh:
    """
    Periodically refreshes the active asset cache while a collection runs.

    start() is expected right after a synchronous refresh_stacks() call, so
    the first background refresh happens one interval later. A refresh that
    takes longer than the interval triggers the next one immediately.

    A failed refresh ends the task. last_refresh_time then stops advancing
    and every later no_older_than() call times out, so collection cannot
    continue on data of unknown age.
    """

    def __init__(
        self,
        cfn_client: Any,
        active_assets: ActiveAssetCache,
        qualifier: str | None = None,
        interval: float = DEFAULT_REFRESH_INTERVAL,
    ) -> None:
        self.cfn_client = cfn_client
        self.active_assets = active_assets
        self.qualifier = qualifier
        self.interval = interval
        self.state = RefreshState.IDLE
        self.last_refresh_time = time.monotonic()
        self._waiters: List[asyncio.Future] = []
        self._task: asyncio.Task | None = None

    def start(self) -> None:
        if self.state is not RefreshState.IDLE:
            return
        self.state = RefreshState.SCHEDULED
        self._task = asyncio.get_running_loop().create_task(self._run())
        self._task.add_done_callback(self._on_task_done)

    async def _run(self) -> None:
        delay = self.interval
        while True:
            await asyncio.sleep(delay)
            if self.state is RefreshState.STOPPED:
                return

            self.state = RefreshState.REFRESHING
            started = time.monotonic()
            await refresh_stacks(self.cfn_client, self.active_assets, self.qualifier)
            self._just_refreshed()

            if self.state is RefreshState.STOPPED:
                return
            self.state = RefreshState.SCHEDULED
            delay = max(started + self.interval - time.monotonic(), 0.0)

    def _just_refreshed(self) -> None:
        self.last_refresh_time = time.monotonic()
        waiters, self._waiters = self._waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(None)
        logger.debug("active_assets_refreshed", stacks=len(self.active_assets))

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("background_refresh_failed", error=str(error))

    async def no_older_than(self, max_age: float) -> None:
        """
        Wait until the cache is at most max_age seconds old.

        Returns immediately when the last refresh is recent enough;
        otherwise waits for the next refresh to land.

        Raises:
            RefreshTimeoutError: If no refresh lands within max_age seconds
        """
        if time.monotonic() - self.last_refresh_time <= max_age:
            return

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await asyncio.wait_for(waiter, timeout=max_age)
        except TimeoutError as e:
            raise RefreshTimeoutError(
                "refresh_stacks took too long; the background refresh likely failed",
                details={"max_age_seconds": max_age},
            ) from e
        finally:
            if waiter in self._waiters:
                self._waiters.remove(waiter)

    def stop(self) -> None:
        """
        Stop scheduling refreshes.

        A refresh already in progress finishes but is not rescheduled.
        """
        previous = self.state
        self.state = RefreshState.STOPPED
        if self._task is not None and previous is RefreshState.SCHEDULED:
            self._task.cancel()
