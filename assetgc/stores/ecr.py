# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Asset GC ECR Pass - Garbage collection of image assets in the bootstrap repository.

ListImages returns one row per tag, so rows are grouped by digest before
the images are described. DescribeImages, BatchGetImage and
BatchDeleteImage accept at most 100 image ids per call.

ECR tags are plain strings, so the isolation timestamp is embedded in the
tag itself (see ImageAsset.build_image_tag). Tagging re-publishes the
image manifest under the new tag.
"""

from datetime import datetime, timedelta, UTC
from functools import partial
from itertools import count
from typing import TYPE_CHECKING, Any, AsyncIterator, Dict, Iterator, List, Sequence, Set, Tuple

import structlog
from botocore.exceptions import ClientError

from assetgc.assets import ImageAsset
from assetgc.batch import StoreResult, bounded_gather, chunked, classify_batch
from assetgc.config import GCConfig
from assetgc.confirm import confirmation_prompt
from assetgc.exceptions import ECROperationError
from assetgc.progress import ProgressReporter
from assetgc.refresh import ActiveAssetCache, BackgroundStackRefresh

if TYPE_CHECKING:
    from assetgc.core import GCState

logger = structlog.get_logger()

ECR_BATCH_SIZE = 100
ECR_MAX_LIST_RESULTS = 1000


def image_map(image_ids: Sequence[Dict[str, str]]) -> Dict[str, List[str]]:
    """
    Group ListImages rows by digest.

    Rows without a tag are skipped: untagged images are never collected.
    """
    images: Dict[str, List[str]] = {}
    for image in image_ids:
        digest = image.get("imageDigest")
        tag = image.get("imageTag")
        if not digest or not tag:
            continue
        images.setdefault(digest, []).append(tag)
    return images


async def count_images(ecr_client: Any, repository: str) -> int:
    """Count all image rows in the repository (for progress reporting)."""
    total = 0
    token = None
    while True:
        kwargs = {"repositoryName": repository}
        if token:
            kwargs["nextToken"] = token
        response = await ecr_client.list_images(**kwargs)
        total += len(response.get("imageIds", []))
        token = response.get("nextToken")
        if not token:
            return total


async def describe_images(
    ecr_client: Any,
    repository: str,
    digests: Sequence[str],
) -> List[Dict[str, Any]]:
    """
    Describe images and attach their manifests.

    Returns:
        imageDetails entries, each with an extra "manifest" key
    """
    combined: List[Dict[str, Any]] = []

    for chunk in chunked(list(digests), ECR_BATCH_SIZE):
        image_ids = [{"imageDigest": digest} for digest in chunk]
        described = await ecr_client.describe_images(
            repositoryName=repository,
            imageIds=image_ids,
        )
        fetched = await ecr_client.batch_get_image(
            repositoryName=repository,
            imageIds=image_ids,
        )
        manifests = {
            image.get("imageId", {}).get("imageDigest"): image.get("imageManifest")
            for image in fetched.get("images", [])
        }
        for detail in described.get("imageDetails", []):
            combined.append({**detail, "manifest": manifests.get(detail.get("imageDigest"))})

    return combined


async def read_repo_in_batches(
    ecr_client: Any,
    repository: str,
    batch_size: int,
    current_time: datetime,
    created_buffer_days: int,
) -> AsyncIterator[List[ImageAsset]]:
    """
    Yield batches of images pushed before the created buffer.

    ListImages reports one row per tag, so the rows of one digest can be
    split across pages. Each digest is described and yielded once per pass;
    later rows of a digest already seen (possibly deleted by then) are
    skipped.
    """
    created_cutoff = current_time - timedelta(days=created_buffer_days)
    seen: Set[str] = set()
    token = None

    while True:
        batch: List[ImageAsset] = []
        while len(batch) < batch_size:
            kwargs = {
                "repositoryName": repository,
                "maxResults": min(batch_size - len(batch), ECR_MAX_LIST_RESULTS),
            }
            if token:
                kwargs["nextToken"] = token
            response = await ecr_client.list_images(**kwargs)
            token = response.get("nextToken")

            digests = [d for d in image_map(response.get("imageIds", [])) if d not in seen]
            seen.update(digests)
            if digests:
                for detail in await describe_images(ecr_client, repository, digests):
                    digest = detail.get("imageDigest")
                    pushed_at = detail.get("imagePushedAt") or current_time
                    if digest and pushed_at < created_cutoff:
                        batch.append(
                            ImageAsset(
                                digest=digest,
                                size=detail.get("imageSizeInBytes", 0),
                                tags=list(detail.get("imageTags", [])),
                                manifest=detail.get("manifest") or "",
                            )
                        )

            if not token:
                break

        if batch:
            yield batch
        if not token:
            return


def _failure_digests(response: Dict[str, Any]) -> Iterator[Tuple[str | None, Dict[str, Any]]]:
    for failure in response.get("failures", []):
        yield failure.get("imageId", {}).get("imageDigest"), failure


async def delete_images(
    ecr_client: Any,
    repository: str,
    deletables: Sequence[ImageAsset],
    reporter: ProgressReporter,
) -> Tuple[List[ImageAsset], int]:
    """
    Delete images by digest in batches of at most 100.

    Per-image failures reported by ECR are logged and left for the next run.

    Returns:
        Tuple of (deleted images, number of failed images)
    """
    deleted: List[ImageAsset] = []
    failed = 0

    for chunk in chunked(deletables, ECR_BATCH_SIZE):
        response = await ecr_client.batch_delete_image(
            repositoryName=repository,
            imageIds=[{"imageDigest": img.digest} for img in chunk],
        )

        failed_digests = set()
        for digest, failure in _failure_digests(response):
            failed_digests.add(digest)
            logger.warning(
                "image_delete_failed",
                repository=repository,
                digest=digest,
                code=failure.get("failureCode"),
                error=failure.get("failureReason"),
            )

        removed = [img for img in chunk if img.digest not in failed_digests]
        failed += len(chunk) - len(removed)
        deleted.extend(removed)
        reporter.report_deleted(removed)
        logger.debug("images_deleted", repository=repository, count=len(removed))

    return deleted, failed


async def tag_images(
    ecr_client: Any,
    repository: str,
    taggables: Sequence[ImageAsset],
    counter: count,
    limit: int,
) -> List[ImageAsset]:
    """
    Tag each image with a fresh isolation tag.

    The counter makes tags unique within a run even when many images are
    tagged in the same millisecond. A failure (usually a tag collision
    with another collector) is logged and the image is tagged next run.
    """

    async def tag(img: ImageAsset) -> ImageAsset | None:
        image_tag = img.build_image_tag(next(counter))
        try:
            await ecr_client.put_image(
                repositoryName=repository,
                imageDigest=img.digest,
                imageManifest=img.manifest,
                imageTag=image_tag,
            )
        except ClientError as e:
            logger.warning(
                "image_tag_failed",
                repository=repository,
                tags=img.tags,
                tag=image_tag,
                error=str(e),
            )
            return None
        img.tags.append(image_tag)
        return img

    results = await bounded_gather([partial(tag, img) for img in taggables], limit)
    tagged = [img for img in results if img is not None]
    logger.debug("images_tagged", repository=repository, count=len(tagged))
    return tagged


async def untag_images(
    ecr_client: Any,
    repository: str,
    untaggables: Sequence[ImageAsset],
    limit: int,
) -> List[ImageAsset]:
    """
    Remove the isolation tag from images that are referenced again.

    Deleting by tag only removes the tag; the image stays under its other
    tags. Untagging is bookkeeping and is not reported as progress.
    """

    async def untag(img: ImageAsset) -> ImageAsset | None:
        isolated_tag = img.get_isolated_tag()
        if isolated_tag is None:
            return img
        try:
            response = await ecr_client.batch_delete_image(
                repositoryName=repository,
                imageIds=[{"imageTag": isolated_tag}],
            )
        except ClientError as e:
            logger.warning(
                "image_untag_failed", repository=repository, tag=isolated_tag, error=str(e)
            )
            return None
        if response.get("failures"):
            logger.warning(
                "image_untag_failed",
                repository=repository,
                tag=isolated_tag,
                error=response["failures"][0].get("failureReason"),
            )
            return None
        img.tags.remove(isolated_tag)
        return img

    results = await bounded_gather([partial(untag, img) for img in untaggables], limit)
    untagged = [img for img in results if img is not None]
    logger.debug("images_untagged", repository=repository, count=len(untagged))
    return untagged


async def collect_images(
    config: GCConfig,
    state: "GCState",
    ecr_client: Any,
    repository: str,
    active_assets: ActiveAssetCache,
    refresher: BackgroundStackRefresh,
    result: StoreResult,
) -> StoreResult:
    """
    Run one garbage collection pass over the bootstrap repository.

    An image is referenced when any of its tags occurs in a live stack.

    Raises:
        ECROperationError: If listing, describing or deletion fail
        RefreshTimeoutError: If the active asset cache goes stale
        DeletionAbortedError: If the user declines a deletion
    """
    result.location = repository
    try:
        total = await count_images(ecr_client, repository)
    except ClientError as e:
        raise ECROperationError(
            f"Failed to list repository: {e}", details={"repository": repository}
        ) from e

    reporter = ProgressReporter(store="ecr", total_assets=total)
    current_time = datetime.now(UTC)

    logger.info("gc_pass_started", store="ecr", repository=repository, images=total)

    try:
        async for batch in read_repo_in_batches(
            ecr_client,
            repository,
            config.list_batch_size,
            current_time,
            config.created_buffer_days,
        ):
            await refresher.no_older_than(config.freshness_bound_seconds)
            reporter.start()
            cutoff = datetime.now(UTC) - timedelta(days=config.rollback_buffer_days)

            plan = classify_batch(
                batch,
                lambda img: not any(active_assets.contains(t) for t in img.tags),
                config.rollback_buffer_days,
                cutoff,
            )
            logger.debug(
                "batch_classified",
                store="ecr",
                total=len(batch),
                isolated=len(plan.isolated),
                not_isolated=len(plan.not_isolated),
                deletable=len(plan.deletable),
                taggable=len(plan.taggable),
                untaggable=len(plan.untaggable),
            )

            if config.permission_to_delete and plan.deletable:
                await confirmation_prompt(config, state, reporter, plan.deletable)
                deleted, failed = await delete_images(
                    ecr_client, repository, plan.deletable, reporter
                )
                result.deleted += len(deleted)
                result.deleted_bytes += sum(img.size for img in deleted)
                result.failed += failed

            if config.permission_to_tag and plan.taggable:
                tagged = await tag_images(
                    ecr_client,
                    repository,
                    plan.taggable,
                    state["image_tag_counter"],
                    config.max_concurrency,
                )
                reporter.report_tagged(tagged)
                result.tagged += len(tagged)
                result.failed += len(plan.taggable) - len(tagged)

            if config.permission_to_tag and plan.untaggable:
                untagged = await untag_images(
                    ecr_client, repository, plan.untaggable, config.max_concurrency
                )
                result.untagged += len(untagged)
                result.failed += len(plan.untaggable) - len(untagged)

            reporter.report_scanned(len(batch))
            result.scanned += len(batch)

    except ClientError as e:
        raise ECROperationError(
            f"ECR garbage collection failed: {e}", details={"repository": repository}
        ) from e
    finally:
        reporter.stop()

    result.completed = True
    logger.info(
        "gc_pass_completed",
        store="ecr",
        repository=repository,
        scanned=result.scanned,
        tagged=result.tagged,
        untagged=result.untagged,
        deleted=result.deleted,
    )
    return result
