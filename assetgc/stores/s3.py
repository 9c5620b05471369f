# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Asset GC S3 Pass - Garbage collection of file assets in the bootstrap bucket.

Objects are read in batches of up to 1000, which is the batch limit of
DeleteObjects: the worst case of a first run on a long-lived bucket is
that nearly every object is isolated and has to be deleted.

Object tags cannot be modified individually, so tagging and untagging
rewrite the whole tag set of an object.
"""

from datetime import datetime, timedelta, UTC
from functools import partial
from typing import TYPE_CHECKING, Any, AsyncIterator, List, Sequence, Tuple

import structlog
from botocore.exceptions import ClientError

from assetgc.assets import S3_ISOLATED_TAG, ObjectAsset
from assetgc.batch import StoreResult, bounded_gather, chunked, classify_batch
from assetgc.config import GCConfig
from assetgc.confirm import confirmation_prompt
from assetgc.exceptions import S3OperationError
from assetgc.progress import ProgressReporter
from assetgc.refresh import ActiveAssetCache, BackgroundStackRefresh

if TYPE_CHECKING:
    from assetgc.core import GCState

logger = structlog.get_logger()

S3_DELETE_BATCH_SIZE = 1000


async def count_objects(s3_client: Any, bucket: str) -> int:
    """Count all objects in the bucket (for progress reporting)."""
    total = 0
    token = None
    while True:
        kwargs = {"Bucket": bucket}
        if token:
            kwargs["ContinuationToken"] = token
        response = await s3_client.list_objects_v2(**kwargs)
        total += response.get("KeyCount", len(response.get("Contents", [])))
        token = response.get("NextContinuationToken")
        if not token:
            return total


async def read_bucket_in_batches(
    s3_client: Any,
    bucket: str,
    batch_size: int,
    current_time: datetime,
    created_buffer_days: int,
) -> AsyncIterator[List[ObjectAsset]]:
    """
    Yield batches of objects last modified before the created buffer.

    Objects newer than created_buffer_days are skipped entirely; they may
    still be uploading or not yet referenced by a deploying stack.
    """
    created_cutoff = current_time - timedelta(days=created_buffer_days)
    token = None

    while True:
        batch: List[ObjectAsset] = []
        while len(batch) < batch_size:
            kwargs = {"Bucket": bucket, "MaxKeys": batch_size - len(batch)}
            if token:
                kwargs["ContinuationToken"] = token
            response = await s3_client.list_objects_v2(**kwargs)

            for obj in response.get("Contents", []):
                key = obj.get("Key")
                last_modified = obj.get("LastModified") or current_time
                if key and last_modified < created_cutoff:
                    batch.append(ObjectAsset(bucket, key, obj.get("Size", 0)))

            token = response.get("NextContinuationToken")
            if not token:
                break

        if batch:
            yield batch
        if not token:
            return


async def read_all_tags(s3_client: Any, objects: Sequence[ObjectAsset], limit: int) -> None:
    await bounded_gather([partial(obj.all_tags, s3_client) for obj in objects], limit)


async def delete_objects(
    s3_client: Any,
    bucket: str,
    deletables: Sequence[ObjectAsset],
    reporter: ProgressReporter,
) -> Tuple[List[ObjectAsset], int]:
    """
    Delete objects in batches of at most 1000 keys.

    Per-key failures reported by S3 are logged and left for the next run.

    Returns:
        Tuple of (deleted objects, number of failed keys)
    """
    deleted: List[ObjectAsset] = []
    failed = 0

    for chunk in chunked(deletables, S3_DELETE_BATCH_SIZE):
        response = await s3_client.delete_objects(
            Bucket=bucket,
            Delete={
                "Objects": [{"Key": obj.key} for obj in chunk],
                "Quiet": True,
            },
        )

        failed_keys = set()
        for error in response.get("Errors", []):
            failed_keys.add(error.get("Key"))
            logger.warning(
                "object_delete_failed",
                bucket=bucket,
                key=error.get("Key"),
                code=error.get("Code"),
                error=error.get("Message"),
            )

        removed = [obj for obj in chunk if obj.key not in failed_keys]
        failed += len(chunk) - len(removed)
        deleted.extend(removed)
        reporter.report_deleted(removed)
        logger.debug("objects_deleted", bucket=bucket, count=len(removed))

    return deleted, failed


async def tag_objects(
    s3_client: Any,
    bucket: str,
    taggables: Sequence[ObjectAsset],
    limit: int,
) -> List[ObjectAsset]:
    """
    Add the isolation tag to each object, keeping its other tags.

    PutObjectTagging has no batch form, so calls are fanned out with at
    most `limit` in flight. A failure on one object is logged and skipped;
    the object is tagged on the next run instead.
    """
    value = ObjectAsset.isolated_tag_value(datetime.now(UTC))

    async def tag(obj: ObjectAsset) -> ObjectAsset | None:
        tag_set = [t for t in obj.cached_tags or [] if t.get("Key") != S3_ISOLATED_TAG]
        tag_set.append({"Key": S3_ISOLATED_TAG, "Value": value})
        try:
            await s3_client.put_object_tagging(
                Bucket=bucket,
                Key=obj.key,
                Tagging={"TagSet": tag_set},
            )
        except ClientError as e:
            logger.warning("object_tag_failed", bucket=bucket, key=obj.key, error=str(e))
            return None
        obj.cached_tags = tag_set
        return obj

    results = await bounded_gather([partial(tag, obj) for obj in taggables], limit)
    tagged = [obj for obj in results if obj is not None]
    logger.debug("objects_tagged", bucket=bucket, count=len(tagged))
    return tagged


async def untag_objects(
    s3_client: Any,
    bucket: str,
    untaggables: Sequence[ObjectAsset],
    limit: int,
) -> List[ObjectAsset]:
    """
    Remove the isolation tag from objects that are referenced again.

    The remaining tags are written back; when none remain the tag set is
    deleted. Untagging is bookkeeping and is not reported as progress.
    """

    async def untag(obj: ObjectAsset) -> ObjectAsset | None:
        remaining = [
            t for t in await obj.all_tags(s3_client) if t.get("Key") != S3_ISOLATED_TAG
        ]
        try:
            if remaining:
                await s3_client.put_object_tagging(
                    Bucket=bucket,
                    Key=obj.key,
                    Tagging={"TagSet": remaining},
                )
            else:
                await s3_client.delete_object_tagging(Bucket=bucket, Key=obj.key)
        except ClientError as e:
            logger.warning("object_untag_failed", bucket=bucket, key=obj.key, error=str(e))
            return None
        obj.cached_tags = remaining
        return obj

    results = await bounded_gather([partial(untag, obj) for obj in untaggables], limit)
    untagged = [obj for obj in results if obj is not None]
    logger.debug("objects_untagged", bucket=bucket, count=len(untagged))
    return untagged


async def collect_objects(
    config: GCConfig,
    state: "GCState",
    s3_client: Any,
    bucket: str,
    active_assets: ActiveAssetCache,
    refresher: BackgroundStackRefresh,
    result: StoreResult,
) -> StoreResult:
    """
    Run one garbage collection pass over the bootstrap bucket.

    Counts are accumulated into `result` as batches complete, so a failed
    pass still reports what it did before failing.

    Raises:
        S3OperationError: If listing, tag reads or deletion fail
        RefreshTimeoutError: If the active asset cache goes stale
        DeletionAbortedError: If the user declines a deletion
    """
    result.location = bucket
    try:
        total = await count_objects(s3_client, bucket)
    except ClientError as e:
        raise S3OperationError(
            f"Failed to list bucket: {e}", details={"bucket": bucket}
        ) from e

    reporter = ProgressReporter(store="s3", total_assets=total)
    current_time = datetime.now(UTC)

    logger.info("gc_pass_started", store="s3", bucket=bucket, objects=total)

    try:
        async for batch in read_bucket_in_batches(
            s3_client,
            bucket,
            config.list_batch_size,
            current_time,
            config.created_buffer_days,
        ):
            await refresher.no_older_than(config.freshness_bound_seconds)
            reporter.start()
            cutoff = datetime.now(UTC) - timedelta(days=config.rollback_buffer_days)

            if config.rollback_buffer_days > 0:
                await read_all_tags(s3_client, batch, config.max_concurrency)

            plan = classify_batch(
                batch,
                lambda obj: not active_assets.contains(obj.file_name()),
                config.rollback_buffer_days,
                cutoff,
            )
            logger.debug(
                "batch_classified",
                store="s3",
                total=len(batch),
                isolated=len(plan.isolated),
                not_isolated=len(plan.not_isolated),
                deletable=len(plan.deletable),
                taggable=len(plan.taggable),
                untaggable=len(plan.untaggable),
            )

            if config.permission_to_delete and plan.deletable:
                await confirmation_prompt(config, state, reporter, plan.deletable)
                deleted, failed = await delete_objects(
                    s3_client, bucket, plan.deletable, reporter
                )
                result.deleted += len(deleted)
                result.deleted_bytes += sum(obj.size for obj in deleted)
                result.failed += failed

            if config.permission_to_tag and plan.taggable:
                tagged = await tag_objects(
                    s3_client, bucket, plan.taggable, config.max_concurrency
                )
                reporter.report_tagged(tagged)
                result.tagged += len(tagged)
                result.failed += len(plan.taggable) - len(tagged)

            if config.permission_to_tag and plan.untaggable:
                untagged = await untag_objects(
                    s3_client, bucket, plan.untaggable, config.max_concurrency
                )
                result.untagged += len(untagged)
                result.failed += len(plan.untaggable) - len(untagged)

            reporter.report_scanned(len(batch))
            result.scanned += len(batch)

    except ClientError as e:
        raise S3OperationError(
            f"S3 garbage collection failed: {e}", details={"bucket": bucket}
        ) from e
    finally:
        reporter.stop()

    result.completed = True
    logger.info(
        "gc_pass_completed",
        store="s3",
        bucket=bucket,
        scanned=result.scanned,
        tagged=result.tagged,
        untagged=result.untagged,
        deleted=result.deleted,
    )
    return result
