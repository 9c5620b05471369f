# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Asset GC Batches - Classification and bounded execution helpers.

Every page of assets goes through classify_batch(), which splits it into
mutually exclusive action buckets:

- deletable: unreferenced and isolation-tagged before the cutoff
- taggable: unreferenced and not tagged yet
- untaggable: referenced again but still carrying an isolation tag

With a zero rollback buffer every unreferenced asset is deletable and
nothing is tagged or untagged.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Iterable, Iterator, List, Sequence, Tuple, TypeVar

T = TypeVar("T")


@dataclass
class BatchPlan:
    """Action buckets for one page of assets."""

    isolated: List = field(default_factory=list)
    not_isolated: List = field(default_factory=list)
    deletable: List = field(default_factory=list)
    taggable: List = field(default_factory=list)
    untaggable: List = field(default_factory=list)


@dataclass
class StoreResult:
    """Outcome of one store pass (S3 or ECR)."""

    store: str
    location: str | None = None
    scanned: int = 0
    tagged: int = 0
    untagged: int = 0
    deleted: int = 0
    deleted_bytes: int = 0
    failed: int = 0
    completed: bool = False


def partition(items: Iterable[T], predicate: Callable[[T], bool]) -> Tuple[List[T], List[T]]:
    """Split items into (matching, not matching), preserving order."""
    included: List[T] = []
    excluded: List[T] = []
    for item in items:
        (included if predicate(item) else excluded).append(item)
    return included, excluded


def classify_batch(
    batch: Sequence,
    is_isolated: Callable[[object], bool],
    rollback_buffer_days: int,
    cutoff: datetime,
) -> BatchPlan:
    """
    Classify a page of assets.

    Args:
        batch: Assets in listing order
        is_isolated: True when an asset is not referenced by any live stack
        rollback_buffer_days: Grace period; 0 deletes isolated assets at once
        cutoff: Isolation tags older than this make an asset deletable

    Returns:
        BatchPlan with disjoint deletable/taggable/untaggable lists
    """
    isolated, not_isolated = partition(batch, is_isolated)
    plan = BatchPlan(isolated=isolated, not_isolated=not_isolated)

    if rollback_buffer_days <= 0:
        plan.deletable = list(isolated)
        return plan

    plan.deletable = [a for a in isolated if a.isolated_tag_before(cutoff)]
    plan.taggable = [a for a in isolated if not a.has_isolated_tag()]
    plan.untaggable = [a for a in not_isolated if a.has_isolated_tag()]
    return plan


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of at most size items."""
    if size < 1:
        raise ValueError(f"chunk size must be >= 1, got {size}")
    for start in range(0, len(items), size):
        yield items[start:start + size]


async def bounded_gather(
    factories: Iterable[Callable[[], Awaitable[T]]],
    limit: int,
) -> List[T]:
    """
    Run coroutine factories with at most `limit` in flight.

    Results are returned in the order of the factories. On the first
    failure the remaining calls are cancelled and that exception is
    re-raised as is, so callers can keep catching ClientError.
    """
    semaphore = asyncio.Semaphore(limit)

    async def run(factory: Callable[[], Awaitable[T]]) -> T:
        async with semaphore:
            return await factory()

    try:
        async with asyncio.TaskGroup() as group:
            tasks = [group.create_task(run(f)) for f in factories]
    except ExceptionGroup as errors:
        raise errors.exceptions[0]

    return [task.result() for task in tasks]
