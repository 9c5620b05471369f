# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Asset GC Assets - Value objects for bootstrapped assets.

An asset is either an image in the bootstrap ECR repository (identified by
digest, carrying any number of tag strings) or an object in the bootstrap
S3 bucket (identified by key, carrying a key/value tag set).

Both record isolation the same way: an isolation tag holding the time the
asset was first seen unreferenced. ECR tags cannot hold key/value pairs, so
the timestamp is embedded in the tag string itself:

    "<index>-aws-cdk.isolated-<milliseconds since epoch>"
"""

from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Any, Dict, List

from assetgc.exceptions import AssetStateError

S3_ISOLATED_TAG = "aws-cdk:isolated"
ECR_ISOLATED_TAG = "aws-cdk.isolated"  # ':' is not valid in ECR tags


def _now_ms() -> int:
    return int(datetime.now(UTC).timestamp() * 1000)


def _from_ms(value: str) -> datetime | None:
    try:
        return datetime.fromtimestamp(int(value) / 1000, UTC)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def parse_isolation_timestamp(value: str | None) -> datetime | None:
    """
    Parse an isolation tag value into an aware datetime.

    ISO-8601 is the format written by this package; plain epoch
    milliseconds are accepted as well.
    """
    if not value:
        return None
    if value.isdigit():
        return _from_ms(value)
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass
class ImageAsset:
    """An image asset that lives in the bootstrapped ECR repository."""

    digest: str
    size: int
    tags: List[str]
    manifest: str

    def get_tag(self, tag: str) -> str | None:
        return next((t for t in self.tags if tag in t), None)

    def has_tag(self, tag: str) -> bool:
        return any(tag in t for t in self.tags)

    def has_isolated_tag(self) -> bool:
        return self.has_tag(ECR_ISOLATED_TAG)

    def get_isolated_tag(self) -> str | None:
        return self.get_tag(ECR_ISOLATED_TAG)

    def date_isolated(self) -> datetime | None:
        tag = self.get_isolated_tag()
        if tag is None:
            return None
        parts = tag.split("-")
        if len(parts) < 4:
            return None
        return _from_ms(parts[3])

    def isolated_tag_before(self, cutoff: datetime) -> bool:
        isolated_at = self.date_isolated()
        if isolated_at is None:
            return False
        return isolated_at < cutoff

    def build_image_tag(self, index: int) -> str:
        return f"{index}-{ECR_ISOLATED_TAG}-{_now_ms()}"


@dataclass
class ObjectAsset:
    """
    An object asset that lives in the bootstrapped S3 bucket.

    The tag set is fetched lazily and at most once per instance; tag
    queries before all_tags() has completed raise AssetStateError.
    """

    bucket: str
    key: str
    size: int
    cached_tags: List[Dict[str, str]] | None = field(default=None, repr=False)

    def file_name(self) -> str:
        """The asset hash: the key without its extension(s)."""
        return self.key.split(".")[0]

    async def all_tags(self, s3_client: Any) -> List[Dict[str, str]]:
        if self.cached_tags is not None:
            return self.cached_tags

        response = await s3_client.get_object_tagging(Bucket=self.bucket, Key=self.key)
        self.cached_tags = list(response.get("TagSet", []))
        return self.cached_tags

    def _require_tags(self) -> List[Dict[str, str]]:
        if self.cached_tags is None:
            raise AssetStateError(
                "Tags have not been fetched for this object",
                details={"bucket": self.bucket, "key": self.key},
            )
        return self.cached_tags

    def get_tag(self, tag: str) -> str | None:
        return next(
            (t.get("Value") for t in self._require_tags() if t.get("Key") == tag),
            None,
        )

    def has_tag(self, tag: str) -> bool:
        return any(t.get("Key") == tag for t in self._require_tags())

    def has_isolated_tag(self) -> bool:
        return self.has_tag(S3_ISOLATED_TAG)

    def isolated_tag_before(self, cutoff: datetime) -> bool:
        isolated_at = parse_isolation_timestamp(self.get_tag(S3_ISOLATED_TAG))
        if isolated_at is None:
            return False
        return isolated_at < cutoff

    @staticmethod
    def isolated_tag_value(now: datetime) -> str:
        return now.astimezone(UTC).isoformat()
